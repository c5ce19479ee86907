# src/promptcascade/cli.py
"""promptcascade Command Line Interface.

Entry point for the promptcascade CLI tool.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from contextlib import closing
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Any, Literal

import typer
import yaml
from pydantic import ValidationError

from promptcascade import __version__
from promptcascade.contracts.enums import CascadeState, RecoveryDecision
from promptcascade.contracts.nodes import PromptNode, UserIdentity
from promptcascade.contracts.protocols import ActionPreviewPrompt, RecoveryPrompt
from promptcascade.core.config import PromptCascadeSettings, StoreSettings, load_settings
from promptcascade.plugins.clients import HTTPGenerationClient

__all__ = ["app"]

app = typer.Typer(
    name="promptcascade",
    help="promptcascade: run prompt trees level by level.",
    no_args_is_help=True,
)

_EXIT_CODES = {
    CascadeState.COMPLETED: 0,
    CascadeState.FATAL: 1,
    CascadeState.CANCELLED: 2,
}

_PREVIEW_LIMIT = 2000


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"promptcascade version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """promptcascade: run prompt trees level by level."""
    from promptcascade.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")
    ctx.obj = {"log_flags": verbose or json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


# === Interactive prompts ===


class ConsoleRecoveryPrompt:
    """Asks on the terminal what to do with a node that ran out of retries."""

    def ask_recovery_decision(self, node: PromptNode, error_message: str) -> RecoveryDecision:
        typer.secho(f"\n✗ '{node.display_name}' failed: {error_message}", fg=typer.colors.RED, err=True)
        while True:
            answer = typer.prompt("Stop, skip or retry?", default=RecoveryDecision.STOP.value).strip().lower()
            try:
                return RecoveryDecision(answer)
            except ValueError:
                typer.echo(f"Please answer one of: {', '.join(d.value for d in RecoveryDecision)}", err=True)


class ConsolePreviewPrompt:
    """Shows extracted data before an action creates anything."""

    def confirm_action(self, extracted_data: Any, config: Mapping[str, Any], node_name: str) -> bool:
        preview = json.dumps(extracted_data, indent=2, default=str)
        if len(preview) > _PREVIEW_LIMIT:
            preview = preview[:_PREVIEW_LIMIT] + "\n..."
        typer.echo(f"\nAction preview for '{node_name}':\n{preview}")
        return typer.confirm("Create these prompts?", default=True)


# === Helpers ===


def _load_config(ctx: typer.Context, settings: Path | None, db: str | None) -> PromptCascadeSettings:
    """Load settings, or defaults when no file is given, and apply ``--db``.

    A ``logging`` section in the settings file reconfigures logging unless
    ``--verbose`` or ``--json-logs`` was given.
    """
    try:
        config = load_settings(settings.expanduser()) if settings is not None else PromptCascadeSettings()
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None
    if "logging" in config.model_fields_set and not (ctx.obj or {}).get("log_flags"):
        from promptcascade.core.logging import configure_logging

        configure_logging(json_output=config.logging.json_output, level=config.logging.level)
    if db is not None:
        config = config.model_copy(update={"store": StoreSettings(url=db)})
    return config


def _create_client(config: PromptCascadeSettings) -> HTTPGenerationClient:
    if not config.generation.base_url:
        typer.echo("Error: generation.base_url is not configured", err=True)
        raise typer.Exit(1)
    return HTTPGenerationClient(config.generation)


def _recovery_prompt(on_error: str, max_auto_retries: int) -> RecoveryPrompt:
    from promptcascade.plugins.prompts import AutoRecoveryPrompt

    if on_error == "ask":
        return ConsoleRecoveryPrompt()
    return AutoRecoveryPrompt(RecoveryDecision(on_error), max_auto_retries=max_auto_retries)


def _preview_prompt(yes: bool) -> ActionPreviewPrompt:
    from promptcascade.plugins.prompts import AutoConfirmPrompt

    return AutoConfirmPrompt(True) if yes else ConsolePreviewPrompt()


_SettingsOption = typer.Option(None, "--settings", "-s", help="Path to settings YAML file.")
_DbOption = typer.Option(None, "--db", help="Store URL, overrides store.url from settings.")


# === Commands ===


@app.command()
def load(
    ctx: typer.Context,
    tree_file: Path = typer.Argument(..., help="YAML tree file to insert."),
    settings: Path | None = _SettingsOption,
    db: str | None = _DbOption,
) -> None:
    """Insert a prompt tree from a YAML file."""
    from promptcascade.core.store import PromptDB, PromptRepository
    from promptcascade.core.tree_file import insert_tree, read_tree_file

    config = _load_config(ctx, settings, db)
    try:
        tree = read_tree_file(tree_file)
    except FileNotFoundError:
        typer.echo(f"Error: Tree file not found: {tree_file}", err=True)
        raise typer.Exit(1) from None
    except yaml.YAMLError as e:
        typer.echo(f"YAML syntax error in {tree_file}: {e}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Tree file errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None

    with PromptDB(config.store.url) as prompt_db:
        roots = insert_tree(PromptRepository(prompt_db), tree)
    for root in roots:
        typer.echo(f"{root.node_id}  {root.display_name}")


@app.command()
def tree(
    ctx: typer.Context,
    root_id: str = typer.Argument(..., help="Root prompt id."),
    settings: Path | None = _SettingsOption,
    db: str | None = _DbOption,
) -> None:
    """Print a prompt tree with each node's type and last response size."""
    from promptcascade.core.store import PromptDB, PromptRepository

    config = _load_config(ctx, settings, db)
    with PromptDB(config.store.url) as prompt_db:
        repository = PromptRepository(prompt_db)
        root = repository.get_node(root_id)
        if root is None:
            typer.echo(f"Error: Prompt not found: {root_id}", err=True)
            raise typer.Exit(1)
        _print_node(repository, root, indent=0)


def _print_node(repository: Any, node: PromptNode, *, indent: int) -> None:
    flags = []
    if node.is_action_node:
        flags.append(f"action:{node.post_action}")
    if node.exclude_from_cascade:
        flags.append("excluded")
    if node.is_assistant and node.parent_id is None:
        flags.append("context")
    if node.output_response is not None:
        flags.append(f"{len(node.output_response)} chars")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    typer.echo(f"{'  ' * indent}{node.display_name} ({node.node_id}){suffix}")
    for child in repository.get_children(node.node_id):
        _print_node(repository, child, indent=indent + 1)


@app.command()
def run(
    ctx: typer.Context,
    root_id: str = typer.Argument(..., help="Root prompt id."),
    settings: Path | None = _SettingsOption,
    db: str | None = _DbOption,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Confirm every action preview without asking.",
    ),
    on_error: Literal["ask", "stop", "skip", "retry"] = typer.Option(
        "ask",
        "--on-error",
        help="Decision when a prompt runs out of retries: ask, stop, skip or retry.",
    ),
    max_auto_retries: int = typer.Option(
        3,
        "--max-auto-retries",
        min=0,
        help="With --on-error retry, fresh budgets per prompt before the run stops.",
    ),
    context_id: str | None = typer.Option(
        None,
        "--context-id",
        help="Conversation context forwarded to the generation service.",
    ),
    user_email: str | None = typer.Option(
        None,
        "--user-email",
        help="Identity exposed to prompts as q.user.* variables.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run every eligible prompt under ROOT_ID.

    Ctrl-C cancels the run after the in-flight request is aborted. Exit code
    is 0 when the cascade completes, 1 when it fails and 2 when it is
    cancelled.
    """
    from promptcascade.cli_formatters import create_console_formatters, create_json_formatters, subscribe_formatters
    from promptcascade.core.events import EventBus
    from promptcascade.core.store import PromptDB, PromptRepository, SQLTraceRecorder
    from promptcascade.engine import CascadeOrchestrator, RunControl

    config = _load_config(ctx, settings, db)
    client = _create_client(config)

    event_bus = EventBus()
    formatters = create_json_formatters() if output_format == "json" else create_console_formatters()
    subscribe_formatters(event_bus, formatters)

    user = UserIdentity(user_id=user_email, email=user_email) if user_email else None
    control = RunControl()

    with PromptDB(config.store.url) as prompt_db, closing(client):
        orchestrator = CascadeOrchestrator(
            PromptRepository(prompt_db),
            client,
            recovery=_recovery_prompt(on_error, max_auto_retries),
            preview=_preview_prompt(yes),
            recorder=SQLTraceRecorder(prompt_db),
            settings=config,
            event_bus=event_bus,
        )
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="cascade") as pool:
            future = pool.submit(orchestrator.execute_cascade, root_id, context_id, control=control, user=user)
            while True:
                try:
                    result = future.result(timeout=0.5)
                    break
                except FutureTimeout:
                    continue
                except KeyboardInterrupt:
                    typer.echo("\nCancelling...", err=True)
                    control.cancel()

    raise typer.Exit(_EXIT_CODES.get(result.state, 1))
