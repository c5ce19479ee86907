# tests/cli/test_cli.py
"""Tests for the promptcascade CLI."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

from promptcascade.cli import app
from promptcascade.core.store import PromptDB, PromptRepository
from tests.fakes import ScriptedGenerationClient, fail, reply

# Stderr output is combined with stdout by default when using CliRunner.invoke()
runner = CliRunner()

TREE_YAML = """
prompts:
  - id: report
    name: Report
    is_assistant: true
    admin_prompt: You write reports.
    children:
      - id: intro
        name: Intro
        user_prompt: Write an intro about {{topic}}
        variables:
          topic: tides
      - id: outro
        name: Outro
        user_prompt: Close with {{cascade_previous_response}}
"""


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """The CLI callback reconfigures logging onto the runner's streams."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'prompts.db'}"


@pytest.fixture
def loaded_db(tmp_path: Path, db_url: str) -> str:
    tree_file = tmp_path / "tree.yaml"
    tree_file.write_text(TREE_YAML)
    result = runner.invoke(app, ["--no-dotenv", "load", str(tree_file), "--db", db_url])
    assert result.exit_code == 0, result.output
    return db_url


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> ScriptedGenerationClient:
    scripted = ScriptedGenerationClient()
    monkeypatch.setattr("promptcascade.cli._create_client", lambda config: scripted)
    return scripted


class TestCLIBasics:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "promptcascade version" in result.stdout

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("load", "tree", "run"):
            assert command in result.stdout

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "missing.env"), "tree", "x"])

        assert result.exit_code == 1
        assert ".env file not found" in result.output


class TestLoadAndTree:
    def test_load_prints_roots(self, tmp_path: Path, db_url: str) -> None:
        tree_file = tmp_path / "tree.yaml"
        tree_file.write_text(TREE_YAML)

        result = runner.invoke(app, ["--no-dotenv", "load", str(tree_file), "--db", db_url])

        assert result.exit_code == 0
        assert "report  Report" in result.stdout

    def test_load_invalid_tree(self, tmp_path: Path, db_url: str) -> None:
        tree_file = tmp_path / "tree.yaml"
        tree_file.write_text("prompts:\n  - name: X\n    colour: red\n")

        result = runner.invoke(app, ["--no-dotenv", "load", str(tree_file), "--db", db_url])

        assert result.exit_code == 1
        assert "Tree file errors:" in result.output
        assert "colour" in result.output

    def test_load_missing_file(self, tmp_path: Path, db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "load", str(tmp_path / "none.yaml"), "--db", db_url])

        assert result.exit_code == 1
        assert "Tree file not found" in result.output

    def test_tree(self, loaded_db: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "tree", "report", "--db", loaded_db])

        assert result.exit_code == 0
        assert result.stdout.splitlines() == [
            "Report (report) [context]",
            "  Intro (intro)",
            "  Outro (outro)",
        ]

    def test_tree_missing_root(self, db_url: str) -> None:
        result = runner.invoke(app, ["--no-dotenv", "tree", "nope", "--db", db_url])

        assert result.exit_code == 1
        assert "Prompt not found" in result.output


class TestRunCommand:
    def test_run_completes(self, loaded_db: str, client: ScriptedGenerationClient) -> None:
        result = runner.invoke(app, ["--no-dotenv", "run", "report", "--db", loaded_db, "--yes"])

        assert result.exit_code == 0, result.output
        assert "Cascade COMPLETED: 2 run | 1 skipped | 0 failed" in result.output
        assert client.called_node_ids == ["intro", "outro"]
        assert client.closed is True

        with PromptDB(loaded_db) as db:
            intro = PromptRepository(db).get_node("intro")
        assert intro is not None and intro.output_response == "out:intro"

    def test_stored_variables_reach_the_client(self, loaded_db: str, client: ScriptedGenerationClient) -> None:
        runner.invoke(app, ["--no-dotenv", "run", "report", "--db", loaded_db, "--user-email", "ada@example.com"])

        (intro_call,) = client.calls_for("intro")
        assert intro_call.variables["topic"] == "tides"
        assert intro_call.variables["q.user.name"] == "ada"

    def test_json_format(self, loaded_db: str, client: ScriptedGenerationClient) -> None:
        result = runner.invoke(app, ["--no-dotenv", "run", "report", "--db", loaded_db, "--format", "json"])

        assert result.exit_code == 0, result.output
        events = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
        assert events[0]["event"] == "cascade_started"
        assert events[-1]["event"] == "cascade_finished"
        assert events[-1]["state"] == "completed"

    def test_skip_on_error(self, tmp_path: Path, loaded_db: str, monkeypatch: pytest.MonkeyPatch) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("cascade:\n  max_retries: 1\n")
        scripted = ScriptedGenerationClient({"intro": [fail("upstream returned 502")]})
        monkeypatch.setattr("promptcascade.cli._create_client", lambda config: scripted)

        result = runner.invoke(
            app,
            ["--no-dotenv", "run", "report", "--db", loaded_db, "--settings", str(settings), "--on-error", "skip"],
        )

        assert result.exit_code == 0, result.output
        assert "Intro skipped (user_skipped)" in result.output
        assert "Cascade COMPLETED" in result.output

    def test_stop_on_error_exits_cancelled(self, tmp_path: Path, loaded_db: str, monkeypatch: pytest.MonkeyPatch) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("cascade:\n  max_retries: 1\n")
        scripted = ScriptedGenerationClient({"intro": [fail("upstream returned 502")]})
        monkeypatch.setattr("promptcascade.cli._create_client", lambda config: scripted)

        result = runner.invoke(
            app,
            ["--no-dotenv", "run", "report", "--db", loaded_db, "--settings", str(settings), "--on-error", "stop"],
        )

        assert result.exit_code == 2
        assert "Cascade CANCELLED" in result.output
        assert "Cascade stopped by user at 'Intro'" in result.output

    def test_retry_on_error_gives_up_after_limit(self, tmp_path: Path, loaded_db: str, monkeypatch: pytest.MonkeyPatch) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("cascade:\n  max_retries: 1\n")
        scripted = ScriptedGenerationClient(
            default=lambda node_id, message: fail("upstream returned 502") if node_id == "intro" else reply(f"out:{node_id}")
        )
        monkeypatch.setattr("promptcascade.cli._create_client", lambda config: scripted)

        result = runner.invoke(
            app,
            [
                "--no-dotenv",
                "run",
                "report",
                "--db",
                loaded_db,
                "--settings",
                str(settings),
                "--on-error",
                "retry",
                "--max-auto-retries",
                "1",
            ],
        )

        assert result.exit_code == 2, result.output
        assert "Cascade stopped by user at 'Intro'" in result.output
        assert scripted.called_node_ids == ["intro", "intro"]

    def test_missing_root_is_fatal(self, db_url: str, client: ScriptedGenerationClient) -> None:
        result = runner.invoke(app, ["--no-dotenv", "run", "nope", "--db", db_url])

        assert result.exit_code == 1
        assert "Cascade FATAL" in result.output

    def test_missing_settings_file(self, tmp_path: Path, client: ScriptedGenerationClient) -> None:
        result = runner.invoke(app, ["--no-dotenv", "run", "report", "--settings", str(tmp_path / "none.yaml")])

        assert result.exit_code == 1
        assert "Settings file not found" in result.output

    def test_invalid_settings(self, tmp_path: Path, client: ScriptedGenerationClient) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("cascade:\n  max_retries: 0\n")

        result = runner.invoke(app, ["--no-dotenv", "run", "report", "--settings", str(settings)])

        assert result.exit_code == 1
        assert "Configuration errors:" in result.output
        assert "cascade.max_retries" in result.output

    def test_logging_section_configures_logs(self, tmp_path: Path, loaded_db: str, client: ScriptedGenerationClient) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("logging:\n  level: info\n  json_output: true\n")

        result = runner.invoke(app, ["--no-dotenv", "run", "report", "--db", loaded_db, "--settings", str(settings)])

        assert result.exit_code == 0, result.output
        records = [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]
        logged = {record["event"] for record in records if record.get("level") == "info"}
        assert "Cascade started" in logged
