# src/mockmongo/service.py
"""Ephemeral mongod lifecycle: one controller, one process, shared by every intercepted caller.

State machine:

    IDLE --ensure_running--> PREPARING --launch ok--> RUNNING
      ^                          |                       |
      +------- fatal error ------+                  signal_idle
      |                                                  v
      +----------------- shutdown requested ------- STOPPING

The launch runs in a task owned by the controller, so every waiter
(including the call that triggered it) observes the same outcome through
the ``running`` latch. Port contention is retried on the next port via
tenacity; any other failure is fatal for that launch and drops the
controller back to IDLE.

All transitions happen without an intervening ``await``, which makes each
of them atomic under the event loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
)

from mockmongo.broadcast import Broadcaster, Latch
from mockmongo.config import InterceptionSettings
from mockmongo.errors import (
    FatalLaunchError,
    InterceptionStateError,
    MockMongoError,
    PortContentionError,
)
from mockmongo.logging import get_logger

logger = get_logger(__name__)

MAX_PORT = 65535


class Phase(StrEnum):
    """Lifecycle phase of the ephemeral mongod."""

    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True, slots=True)
class ServiceAddress:
    """Where intercepted callers are redirected to."""

    host: str
    port: int

    @property
    def uri(self) -> str:
        return f"mongodb://{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class LaunchConfig:
    """Everything a launcher needs for one start attempt."""

    bind_address: str
    port: int
    storage_directory: Path
    storage_engine: str


@runtime_checkable
class Launcher(Protocol):
    """Starts and stops the backing mongod process.

    Error contract:
        launch() MUST raise PortContentionError when the port is taken, so
        the controller can retry. Any other exception is treated as fatal.
        request_shutdown() is fire-and-forget; it MUST NOT wait for exit.
    """

    async def launch(self, config: LaunchConfig) -> Any:
        """Start mongod and return once it accepts connections. Returns an opaque handle."""
        ...

    def request_shutdown(self, handle: Any) -> None: ...

    async def active_version(self) -> str:
        """Version string of the mongod that launch() would start."""
        ...


class ServiceController:
    """Owns the single ephemeral mongod for a process.

    Example:
        controller = ServiceController(InterceptionSettings(), MongodLauncher())
        address = await controller.ensure_running()
        ...
        controller.signal_idle()
    """

    def __init__(self, settings: InterceptionSettings, launcher: Launcher) -> None:
        self._settings = settings
        self._launcher = launcher
        self.phase = Phase.IDLE
        self.address: ServiceAddress | None = None
        self.stopped = Broadcaster("stopped")
        self._running: Latch[ServiceAddress] = Latch("running")
        self._handle: Any = None
        self._launch_task: asyncio.Task[None] | None = None
        # Bumped by reset(); a launch from an older generation must not revive us.
        self._generation = 0

    @property
    def settings(self) -> InterceptionSettings:
        return self._settings

    @property
    def is_running(self) -> bool:
        return self.phase is Phase.RUNNING

    def on_running(self, callback: Any) -> None:
        """Subscribe to the next (or current) Preparing -> Running transition.

        ``callback(address, error)`` runs immediately if the service is
        already running.
        """
        self._running.subscribe(callback)

    async def ensure_running(self) -> ServiceAddress:
        """Return the service address, launching mongod first if needed.

        Raises:
            FatalLaunchError: If the launch this call waited on failed
            InterceptionStateError: If the controller was reset while waiting
        """
        if self.phase is Phase.RUNNING and self.address is not None:
            return self.address
        if self.phase is not Phase.PREPARING:
            self._begin_launch()
        return await self._running.wait()

    def signal_idle(self) -> None:
        """Request shutdown because no caller is connected any more.

        Emits ``stopped`` once shutdown has been requested; process exit is
        not awaited. A no-op unless the service is running.
        """
        if self.phase is not Phase.RUNNING:
            logger.debug("Idle signal ignored", phase=str(self.phase))
            return

        self.phase = Phase.STOPPING
        handle, self._handle = self._handle, None
        port = self.address.port if self.address is not None else None
        try:
            self._launcher.request_shutdown(handle)
        except Exception:
            logger.exception("Ephemeral mongod shutdown request failed", port=port)
        self.address = None
        self._running = Latch("running")
        self.phase = Phase.IDLE
        logger.info("Ephemeral mongod shutdown requested", port=port)
        self.stopped.emit()

    def reset(self) -> None:
        """Tear down all controller state unconditionally."""
        self._generation += 1
        pending, self._running = self._running, Latch("running")
        if not pending.settled:
            pending.fail(InterceptionStateError("Interception was restored while waiting for the ephemeral mongod"))
        if self._handle is not None:
            try:
                self._launcher.request_shutdown(self._handle)
            except Exception:
                logger.exception("Ephemeral mongod shutdown request failed during reset")
        self._handle = None
        self._launch_task = None
        self.address = None
        self.phase = Phase.IDLE
        self.stopped.clear()

    def _begin_launch(self) -> None:
        self.phase = Phase.PREPARING
        if self._running.settled:
            self._running = Latch("running")
        latch = self._running
        generation = self._generation
        self._launch_task = asyncio.get_running_loop().create_task(self._launch(latch, generation))

    async def _launch(self, latch: Latch[ServiceAddress], generation: int) -> None:
        try:
            address, handle = await self._negotiate()
        except MockMongoError as exc:
            self._launch_failed(latch, generation, exc)
            return

        if generation != self._generation:
            logger.info("Discarding ephemeral mongod started before restore", port=address.port)
            try:
                self._launcher.request_shutdown(handle)
            except Exception:
                logger.exception("Ephemeral mongod shutdown request failed", port=address.port)
            return

        self._handle = handle
        self._launch_task = None
        self.address = address
        self.phase = Phase.RUNNING
        logger.info("Ephemeral mongod running", host=address.host, port=address.port)
        latch.fire(address)

    def _launch_failed(self, latch: Latch[ServiceAddress], generation: int, error: MockMongoError) -> None:
        logger.error("Ephemeral mongod failed to start", error=str(error))
        if generation != self._generation:
            return
        self._launch_task = None
        self.phase = Phase.IDLE
        latch.fail(error)

    async def _negotiate(self) -> tuple[ServiceAddress, Any]:
        """Resolve the engine, then launch on successive ports until one binds."""
        settings = self._settings
        port = settings.port
        try:
            version = settings.version
            if settings.storage_engine is None and version is None:
                version = await self._launcher.active_version()
            engine = settings.resolve_storage_engine(version or "")

            stop = stop_never if settings.max_port_attempts is None else stop_after_attempt(settings.max_port_attempts)
            handle: Any = None
            async for attempt in AsyncRetrying(
                stop=stop,
                retry=retry_if_exception_type(PortContentionError),
                before_sleep=_log_contention,
                reraise=True,
            ):
                with attempt:
                    port = settings.port + attempt.retry_state.attempt_number - 1
                    if port > MAX_PORT:
                        raise FatalLaunchError(port, "ran out of ports to try")
                    config = LaunchConfig(
                        bind_address=settings.bind_address,
                        port=port,
                        storage_directory=settings.storage_directory_for(port),
                        storage_engine=engine,
                    )
                    logger.debug("Attempting to start ephemeral mongod", port=port, storage_engine=engine)
                    handle = await self._launcher.launch(config)
        except PortContentionError as exc:
            raise FatalLaunchError(exc.port, f"no free port after {settings.max_port_attempts} attempt(s)") from exc
        except MockMongoError:
            raise
        except Exception as exc:
            raise FatalLaunchError(port, f"{type(exc).__name__}: {exc}") from exc

        return ServiceAddress(settings.bind_address, port), handle


def _log_contention(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome is not None else None
    logger.info("Port in use, retrying on the next one", port=getattr(error, "port", None))
