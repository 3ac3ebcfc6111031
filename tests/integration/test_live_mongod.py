# tests/integration/test_live_mongod.py
"""Tests against a real mongod binary.

Skipped unless MOCKMONGO_LIVE is set and a mongod can be found via
MOCKMONGO_* settings or PATH.
"""

import asyncio
import os
from pathlib import Path

import pytest

import mockmongo
from mockmongo.config import InterceptionSettings
from mockmongo.mongod import MongodLauncher, find_mongod_binary, port_is_free
from mockmongo.service import Phase, ServiceController
from tests.fixtures.fake_client import FakeLibrary

pytestmark = pytest.mark.live


@pytest.fixture
def live_settings(tmp_path: Path) -> InterceptionSettings:
    if not os.environ.get("MOCKMONGO_LIVE"):
        pytest.skip("Set MOCKMONGO_LIVE=1 to run against a real mongod.")
    settings = InterceptionSettings.from_env(port=27217, storage_directory=tmp_path / "live")
    if find_mongod_binary(settings) is None:
        pytest.skip("mongod not found.")
    return settings


@pytest.mark.asyncio
async def test_starts_and_stops_real_mongod(live_settings: InterceptionSettings) -> None:
    launcher = MongodLauncher.from_settings(live_settings)
    controller = ServiceController(live_settings, launcher)
    stopped = asyncio.Event()
    controller.stopped.once(stopped.set)

    address = await asyncio.wait_for(controller.ensure_running(), timeout=30)

    assert controller.phase is Phase.RUNNING
    assert not port_is_free(address.host, address.port)
    assert (live_settings.storage_directory / str(address.port) / "mongod.log").exists()

    controller.signal_idle()
    await asyncio.wait_for(stopped.wait(), timeout=30)
    assert controller.phase is Phase.IDLE
    await asyncio.wait_for(launcher.wait_stopped(), timeout=30)
    assert port_is_free(address.host, address.port)


@pytest.mark.asyncio
async def test_intercepted_open_reaches_real_mongod(live_settings: InterceptionSettings) -> None:
    library = FakeLibrary()

    async with mockmongo.intercepted(library, live_settings) as context:
        await asyncio.wait_for(library.connection().open("db.example.com", "DB", 27017), timeout=30)
        address = context.controller.address
        assert address is not None
        _, writer = await asyncio.open_connection(address.host, address.port)
        writer.close()
        await writer.wait_closed()

    assert context.controller.phase is Phase.IDLE
