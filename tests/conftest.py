# tests/conftest.py
"""Shared test fixtures and helpers.

Doubles:
- FakeLibrary (tests/fixtures/fake_client.py): a client library whose
  entry points record every call and whose socket layer is in-memory
- FakeLauncher (tests/fixtures/fake_launcher.py): a Launcher that never
  spawns mongod and can be scripted to report busy ports or fatal errors

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from mockmongo import context as context_module
from mockmongo.config import InterceptionSettings
from tests.fixtures.fake_client import FakeLibrary
from tests.fixtures.fake_launcher import FakeLauncher

MOCK_PORT = 27027


@pytest.fixture(autouse=True)
def _drop_active_context() -> Iterator[None]:
    """Forget the process-wide context after every test.

    A failing test may leave interception installed; without this the
    next test's install() would be rejected for mismatched settings.
    """
    yield
    context_module._active = None


@pytest.fixture
def interception_settings(tmp_path: Path) -> InterceptionSettings:
    return InterceptionSettings(port=MOCK_PORT, storage_directory=tmp_path / "mockmongo")


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def library() -> FakeLibrary:
    return FakeLibrary()


settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
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
