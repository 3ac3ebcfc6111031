# tests/property/test_lifecycle_properties.py
"""Property tests for launch coalescing, port negotiation and replay order.

Each example drives its own event loop with asyncio.run so hypothesis can
generate inputs freely.
"""

import asyncio
from pathlib import Path
from tempfile import TemporaryDirectory

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

import mockmongo
from mockmongo import context as context_module
from mockmongo.config import InterceptionSettings
from mockmongo.service import Phase, ServiceController
from tests.fixtures.fake_client import FakeLibrary
from tests.fixtures.fake_launcher import FakeLauncher

BASE_PORT = 30000

# Each example runs a fresh event loop; the autouse context cleanup is per test, not per example.
LIFECYCLE_SETTINGS = settings(suppress_health_check=[HealthCheck.function_scoped_fixture])


def _settings(directory: str) -> InterceptionSettings:
    return InterceptionSettings(port=BASE_PORT, storage_directory=Path(directory))


@LIFECYCLE_SETTINGS
@given(callers=st.integers(min_value=1, max_value=12), yields=st.integers(min_value=0, max_value=4))
def test_concurrent_opens_share_exactly_one_launch(callers: int, yields: int) -> None:
    """However many opens race the launch, mongod starts once and nobody resumes early."""

    async def scenario(directory: str) -> None:
        library = FakeLibrary()
        launcher = FakeLauncher()
        launcher.gate = asyncio.Event()
        context = mockmongo.install(library, _settings(directory), launcher=launcher)
        try:
            pending = []
            for index in range(callers):
                pending.append(library.connection().open("db.example.com", f"DB{index}", 27017))
                for _ in range(yields):
                    await asyncio.sleep(0)
            for _ in range(3):
                await asyncio.sleep(0)

            assert context.controller.phase is Phase.PREPARING
            assert library.calls.open_calls == []

            launcher.gate.set()
            await asyncio.gather(*pending)

            assert len(launcher.launches) == 1
            assert len(library.calls.open_calls) == callers
            assert {call.port for call in library.calls.internal_calls} == {BASE_PORT}
            await context.restore()
        finally:
            context_module._active = None

    with TemporaryDirectory() as directory:
        asyncio.run(scenario(directory))


@LIFECYCLE_SETTINGS
@given(busy=st.integers(min_value=0, max_value=10))
def test_running_port_skips_every_busy_port(busy: int) -> None:
    """Contention on ports P..P+k-1 ends up running on P+k, never on a busy port."""

    async def scenario(directory: str) -> None:
        launcher = FakeLauncher(busy_ports={BASE_PORT + offset for offset in range(busy)})
        controller = ServiceController(_settings(directory), launcher)

        address = await controller.ensure_running()

        assert address.port == BASE_PORT + busy
        assert [config.port for config in launcher.launches] == list(range(BASE_PORT, BASE_PORT + busy + 1))

    with TemporaryDirectory() as directory:
        asyncio.run(scenario(directory))


@LIFECYCLE_SETTINGS
@given(databases=st.lists(st.text(alphabet="abcdefghij", min_size=1, max_size=6), min_size=1, max_size=8))
def test_reconnect_preserves_submission_order(databases: list[str]) -> None:
    """Replayed opens arrive at the restored entry point in the original order with the original args."""

    async def scenario(directory: str) -> None:
        library = FakeLibrary()
        mockmongo.install(library, _settings(directory), launcher=FakeLauncher())
        try:
            for database in databases:
                await library.connection().open("db.example.com", database, 27017)

            await mockmongo.reconnect_all()

            originals = library.calls.open_calls[: len(databases)]
            replays = library.calls.open_calls[len(databases) :]
            assert replays == originals
            assert [call[1] for call in replays] == databases
        finally:
            context_module._active = None

    with TemporaryDirectory() as directory:
        asyncio.run(scenario(directory))
