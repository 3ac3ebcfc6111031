# tests/fixtures/__init__.py
"""Test doubles for mockmongo tests.

- FakeLibrary: in-memory client library with swappable entry points
- FakeLauncher: scriptable Launcher that never spawns mongod
"""

from tests.fixtures.fake_client import (
    CallbackOnlyEntryPoints,
    FakeCollection,
    FakeConnection,
    FakeLibrary,
    LegacyCollection,
)
from tests.fixtures.fake_launcher import FakeHandle, FakeLauncher

__all__ = [
    "CallbackOnlyEntryPoints",
    "FakeCollection",
    "FakeConnection",
    "FakeHandle",
    "FakeLauncher",
    "FakeLibrary",
    "LegacyCollection",
]
