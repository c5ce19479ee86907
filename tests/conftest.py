# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/

Stores are real PromptRepository instances over in-memory SQLite; the
generation service, prompts and recorders are fakes from tests/fakes.py.
"""

import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from promptcascade.core.store import PromptDB, PromptRepository, SQLTraceRecorder
from promptcascade.engine.clock import MockClock
from tests.fakes import EventRecorder

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db() -> Iterator[PromptDB]:
    prompt_db = PromptDB.in_memory()
    yield prompt_db
    prompt_db.close()


@pytest.fixture
def repository(db: PromptDB) -> PromptRepository:
    return PromptRepository(db)


@pytest.fixture
def recorder(db: PromptDB) -> SQLTraceRecorder:
    return SQLTraceRecorder(db)


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()
