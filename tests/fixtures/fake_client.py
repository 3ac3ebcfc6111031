# tests/fixtures/fake_client.py
"""In-memory stand-in for a MongoDB client library.

Behaves like a callback-or-awaitable driver: ``open``/``open_set`` record
their arguments, set the connection target and hand the socket-level
connect to ``library.entry_points.internal_open``, which is where the
interception layer substitutes the ephemeral address.

Every call is recorded so tests can assert on arguments, order and the
host/port that actually reached the socket layer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

CONNECTED = "connected"
DISCONNECTED = "disconnected"


@dataclass
class InternalOpenCall:
    """What reached the socket layer."""

    host: str | None
    database: str | None
    port: int | None
    replica: bool


class FakeCollection:
    """Collection handle with an awaitable delete_many."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.filters: list[Any] = []
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    @property
    def delete_calls(self) -> int:
        return len(self.filters)

    async def delete_many(self, filter: Any) -> int:
        self.filters.append(filter)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        removed = len(self.documents)
        self.documents.clear()
        return removed


class LegacyCollection:
    """Collection handle from an older driver: only remove(), callback-free and synchronous."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = [{"legacy": True}]
        self.filters: list[Any] = []

    def remove(self, filter: Any) -> None:
        self.filters.append(filter)
        self.documents.clear()


class FakeConnection:
    """One logical connection."""

    def __init__(self, library: FakeLibrary) -> None:
        self.library = library
        self.host: str | None = None
        self.name: str | None = None
        self.port: int | None = None
        self.replica = False
        self.hosts: list[tuple[str, int]] = []
        self.state = DISCONNECTED
        self.collections: dict[str, Any] = {}
        self.close_calls = 0
        self._handlers: dict[str, list[Callable[..., None]]] = {}

    def on(self, event: str, handler: Callable[..., None]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable[..., None]) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler()

    def collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def open(self, *args: Any) -> Any:
        return self.library.entry_points.open(self, *args)

    def open_set(self, *args: Any) -> Any:
        return self.library.entry_points.open_set(self, *args)

    def close(self) -> asyncio.Future[None]:
        self.close_calls += 1
        return asyncio.ensure_future(self._close())

    async def _close(self) -> None:
        await asyncio.sleep(0)
        if self.state == CONNECTED:
            self.state = DISCONNECTED
            self.emit(DISCONNECTED)


@dataclass
class FakeEntryPoints:
    """The library's own (un-intercepted) entry points."""

    library: FakeLibrary
    open_calls: list[tuple[Any, ...]] = field(default_factory=list)
    open_set_calls: list[tuple[Any, ...]] = field(default_factory=list)
    internal_calls: list[InternalOpenCall] = field(default_factory=list)

    def open(
        self,
        connection: FakeConnection,
        host: str,
        database: str,
        port: int,
        callback: Callable[..., None] | None = None,
    ) -> asyncio.Future[FakeConnection]:
        self.open_calls.append((host, database, port) if callback is None else (host, database, port, callback))
        connection.host, connection.name, connection.port = host, database, port
        connection.replica = False
        return asyncio.ensure_future(self._connect(connection, callback))

    def open_set(
        self,
        connection: FakeConnection,
        uri: str,
        options: dict[str, Any] | None = None,
        callback: Callable[..., None] | None = None,
    ) -> asyncio.Future[FakeConnection]:
        self.open_set_calls.append((uri, options) if callback is None else (uri, options, callback))
        hosts_part, _, database = uri.removeprefix("mongodb://").partition("/")
        hosts = []
        for entry in hosts_part.split(","):
            host, _, port = entry.partition(":")
            hosts.append((host, int(port or 27017)))
        connection.hosts = hosts
        connection.host, connection.port = hosts[0]
        connection.name = database or "test"
        connection.replica = True
        return asyncio.ensure_future(self._connect(connection, callback))

    async def internal_open(self, connection: FakeConnection) -> None:
        self.internal_calls.append(
            InternalOpenCall(connection.host, connection.name, connection.port, connection.replica)
        )
        await asyncio.sleep(0)
        if (connection.host, connection.port) in self.library.unreachable:
            raise ConnectionRefusedError(f"{connection.host}:{connection.port} refused the connection")
        connection.state = CONNECTED
        connection.emit(CONNECTED)

    async def _connect(self, connection: FakeConnection, callback: Callable[..., None] | None) -> FakeConnection:
        # Dispatch through the library so an installed wrapper is reached.
        try:
            await self.library.entry_points.internal_open(connection)
        except Exception as exc:
            if callback is not None:
                callback(exc)
            raise
        if callback is not None:
            callback(None)
        return connection


class CallbackOnlyEntryPoints(FakeEntryPoints):
    """Entry points of a driver that reports completion only through the callback."""

    def open(  # type: ignore[override]
        self,
        connection: FakeConnection,
        host: str,
        database: str,
        port: int,
        callback: Callable[..., None] | None = None,
    ) -> None:
        super().open(connection, host, database, port, callback).add_done_callback(_consume)


def _consume(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


class FakeLibrary:
    """Client library with a swappable entry_points attribute."""

    def __init__(self, entry_points: type[FakeEntryPoints] = FakeEntryPoints) -> None:
        self.entry_points: Any = entry_points(self)
        self.original_entry_points = self.entry_points
        self.unreachable: set[tuple[str, int]] = set()

    @property
    def calls(self) -> FakeEntryPoints:
        return self.original_entry_points

    def connection(self) -> FakeConnection:
        return FakeConnection(self)
