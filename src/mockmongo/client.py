# src/mockmongo/client.py
"""Protocol definitions for the client library being intercepted.

mockmongo never imports a driver. A client library takes part by exposing
its connection entry points as one swappable object (``entry_points``),
and by routing its own socket-level connect through
``library.entry_points.internal_open`` so that the intercepted version is
reached while interception is installed.

Return values:
    Entry points and collection operations may return an awaitable or a
    plain value. Awaitables are awaited; plain values are taken as the
    result. A trailing callable argument is the caller's completion
    callback, called as ``callback(error_or_None, *extra)``. Intercepted
    opens pass it through untouched; replays wrap it so the completion is
    observed, then forward every call to it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

CONNECTED = "connected"
DISCONNECTED = "disconnected"


@runtime_checkable
class Collection(Protocol):
    """A lazily resolved handle on one named collection."""

    name: str

    def delete_many(self, filter: Mapping[str, Any]) -> Any:
        """Delete every document matching ``filter``.

        Libraries without ``delete_many`` may provide ``remove(filter)``
        instead; the reset coordinator falls back to it.
        """
        ...


@runtime_checkable
class Connection(Protocol):
    """One logical connection owned by the client library.

    Events:
        "connected": emitted once the handshake completed
        "disconnected": emitted once the connection closed
    """

    host: str | None
    port: int | None
    replica: bool
    collections: Mapping[str, Collection]

    def on(self, event: str, handler: Callable[..., None]) -> None: ...

    def off(self, event: str, handler: Callable[..., None]) -> None: ...

    def close(self) -> Any: ...


@runtime_checkable
class EntryPoints(Protocol):
    """The connection-establishing capability of a client library."""

    def open(self, connection: Connection, *args: Any) -> Any:
        """Open a connection to a single host."""
        ...

    def open_set(self, connection: Connection, *args: Any) -> Any:
        """Open a connection to a host set (replica set or mongos list)."""
        ...

    def internal_open(self, connection: Connection, *args: Any) -> Any:
        """Socket-level connect to ``connection.host``/``connection.port``."""
        ...


@runtime_checkable
class ClientLibrary(Protocol):
    """A client library whose entry points can be swapped."""

    entry_points: EntryPoints
