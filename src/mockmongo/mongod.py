# src/mockmongo/mongod.py
"""Launcher for a real, disposable mongod process.

Binary resolution order:
    1. ``local_build`` (MOCKMONGO_LOCAL_BUILD): a locally built mongod,
       either the binary itself or a build directory containing
       ``bin/mongod`` or ``mongod``
    2. ``binary`` (MOCKMONGO_BINARY)
    3. ``mongod`` on PATH

mongod's output goes to ``<dbpath>/mongod.log``; the log is read back only
to classify a failed start.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import re
import shutil
import socket
from dataclasses import dataclass
from pathlib import Path

from mockmongo.config import InterceptionSettings
from mockmongo.errors import FatalLaunchError, PortContentionError
from mockmongo.logging import get_logger
from mockmongo.service import LaunchConfig

logger = get_logger(__name__)

# Substrings mongod logs when its listen socket cannot be bound.
ADDRESS_IN_USE_MARKERS: tuple[str, ...] = (
    "Address already in use",
    "addr already in use",
    "EADDRINUSE",
)

_VERSION_PATTERN = re.compile(r"db version v?(\d+\.\d+(?:\.\d+)?)")
_LOG_TAIL_LINES = 20
_DEFAULT_SHUTDOWN_GRACE = 5.0


@dataclass(frozen=True, slots=True)
class MongodHandle:
    """A started mongod."""

    process: asyncio.subprocess.Process
    config: LaunchConfig
    log_path: Path


def find_mongod_binary(settings: InterceptionSettings) -> Path | None:
    """Locate the mongod binary the settings ask for, or None."""
    if settings.local_build is not None:
        build = settings.local_build
        if build.is_dir():
            for candidate in (build / "bin" / "mongod", build / "mongod"):
                if candidate.exists():
                    return candidate
            return None
        return build if build.exists() else None
    if settings.binary is not None:
        return settings.binary if settings.binary.exists() else None
    found = shutil.which("mongod")
    return Path(found) if found is not None else None


def port_is_free(host: str, port: int) -> bool:
    """True if ``host:port`` can be bound right now.

    Raises:
        OSError: For bind failures other than address-in-use
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                return False
            raise
    return True


async def wait_for_port(
    process: asyncio.subprocess.Process,
    host: str,
    port: int,
    timeout_seconds: float,
) -> bool:
    """Wait until the port accepts connections; give up early if the process exits."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    while loop.time() < deadline:
        if process.returncode is not None:
            return False
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=0.2)
        except (OSError, asyncio.TimeoutError):
            await asyncio.sleep(0.05)
            continue
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True
    return False


def terminate_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.terminate()


async def reap_process(process: asyncio.subprocess.Process, grace_seconds: float) -> None:
    """Wait for a terminated process, killing it if it outlives the grace period.

    Returns once the child has been reaped.
    """
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning("mongod ignored SIGTERM, killing it", pid=process.pid, grace_seconds=grace_seconds)
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def _log_tail(log_path: Path) -> str:
    try:
        lines = log_path.read_text(errors="replace").splitlines()
    except FileNotFoundError:
        return ""
    return "\n".join(lines[-_LOG_TAIL_LINES:])


class MongodLauncher:
    """Launcher implementation that spawns mongod as a subprocess.

    The binary is resolved on first use, so constructing a launcher never
    fails on machines without mongod.

    Shutdown sends SIGTERM synchronously; a tracked background task waits
    for the process to exit, kills it after the grace period and reaps it.
    ``wait_stopped()`` waits for all of those tasks.
    """

    def __init__(
        self,
        binary: Path | None = None,
        *,
        startup_timeout: float = 10.0,
        shutdown_grace: float = _DEFAULT_SHUTDOWN_GRACE,
    ) -> None:
        self._binary = binary
        self._startup_timeout = startup_timeout
        self._shutdown_grace = shutdown_grace
        self._stopping: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: InterceptionSettings) -> MongodLauncher:
        return cls(
            find_mongod_binary(settings),
            startup_timeout=settings.startup_timeout,
            shutdown_grace=settings.shutdown_grace,
        )

    @property
    def binary(self) -> Path:
        if self._binary is None:
            raise FatalLaunchError(None, "mongod binary not found; install MongoDB or set MOCKMONGO_BINARY")
        return self._binary

    async def active_version(self) -> str:
        process = await asyncio.create_subprocess_exec(
            str(self.binary),
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output, _ = await process.communicate()
        text = output.decode(errors="replace")
        match = _VERSION_PATTERN.search(text)
        if match is None:
            raise FatalLaunchError(None, f"could not read a version from '{self.binary} --version'")
        return match.group(1)

    async def launch(self, config: LaunchConfig) -> MongodHandle:
        binary = self.binary
        if not port_is_free(config.bind_address, config.port):
            raise PortContentionError(config.port)

        log_path = config.storage_directory / "mongod.log"
        with log_path.open("wb") as log_file:
            process = await asyncio.create_subprocess_exec(
                str(binary),
                "--bind_ip",
                config.bind_address,
                "--port",
                str(config.port),
                "--dbpath",
                str(config.storage_directory),
                "--storageEngine",
                config.storage_engine,
                stdout=log_file,
                stderr=asyncio.subprocess.STDOUT,
            )

        if await wait_for_port(process, config.bind_address, config.port, self._startup_timeout):
            logger.debug("mongod accepting connections", pid=process.pid, port=config.port)
            return MongodHandle(process=process, config=config, log_path=log_path)

        if process.returncode is None:
            terminate_process(process)
            await reap_process(process, self._shutdown_grace)
            raise FatalLaunchError(
                config.port,
                f"mongod did not accept connections within {self._startup_timeout}s",
            )

        tail = _log_tail(log_path)
        if any(marker in tail for marker in ADDRESS_IN_USE_MARKERS):
            raise PortContentionError(config.port, detail="mongod could not bind")
        raise FatalLaunchError(config.port, f"mongod exited with status {process.returncode}\n{tail}")

    def request_shutdown(self, handle: MongodHandle) -> None:
        process = handle.process
        if process.returncode is not None:
            return
        terminate_process(process)
        task = asyncio.get_running_loop().create_task(reap_process(process, self._shutdown_grace))
        self._stopping.add(task)
        task.add_done_callback(self._stopped)
        logger.debug("Stopping mongod", pid=process.pid, port=handle.config.port)

    async def wait_stopped(self) -> None:
        """Wait until every mongod this launcher was asked to stop has exited."""
        while self._stopping:
            await asyncio.gather(*self._stopping, return_exceptions=True)

    def _stopped(self, task: asyncio.Task[None]) -> None:
        self._stopping.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Stopping mongod failed", error=str(task.exception()))
