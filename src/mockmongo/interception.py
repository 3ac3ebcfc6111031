# src/mockmongo/interception.py
"""Redirecting wrapper around a client library's connection entry points.

``open`` / ``open_set``:
    Register the call before anything can suspend, wait for the ephemeral
    mongod, then invoke the original entry point with the caller's own
    arguments. The returned task carries the original call's result.

``internal_open``:
    Where the target is actually substituted. While the service is not
    running it is a pure pass-through.

Host-set connections are collapsed to the single ephemeral node; cluster
topologies are not emulated.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

from mockmongo.client import CONNECTED, DISCONNECTED, ClientLibrary, Connection, EntryPoints
from mockmongo.errors import MockMongoError
from mockmongo.logging import get_logger
from mockmongo.registry import CallRecord, CallRegistry, MethodKind
from mockmongo.service import ServiceController

logger = get_logger(__name__)


class InterceptingEntryPoints:
    """EntryPoints implementation that routes connections to the ephemeral mongod.

    Attributes the wrapper does not define are looked up on the original
    entry points, so library extras keep working while intercepted.
    """

    def __init__(
        self,
        library: ClientLibrary,
        original: EntryPoints,
        registry: CallRegistry,
        controller: ServiceController,
    ) -> None:
        self._library = library
        self._original = original
        self._registry = registry
        self._controller = controller

    @property
    def original(self) -> EntryPoints:
        return self._original

    def open(self, connection: Connection, *args: Any) -> asyncio.Task[Any]:
        return self._intercept(connection, MethodKind.SINGLE_HOST, args)

    def open_set(self, connection: Connection, *args: Any) -> asyncio.Task[Any]:
        return self._intercept(connection, MethodKind.HOST_SET, args)

    def internal_open(self, connection: Connection, *args: Any) -> Any:
        address = self._controller.address
        if not self._controller.is_running or address is None:
            return self._original.internal_open(connection, *args)

        connection.host = address.host
        connection.port = address.port
        if getattr(connection, "replica", False):
            connection.replica = False
            for record in reversed(self._registry.records_for(connection)):
                if record.method_kind is MethodKind.HOST_SET:
                    record.coerced = True
                    break
            logger.info("Collapsed host-set connection to the ephemeral mongod", port=address.port)
        return self._original.internal_open(connection, *args)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._original, name)

    def _intercept(self, connection: Connection, kind: MethodKind, args: tuple[Any, ...]) -> asyncio.Task[Any]:
        record = self._registry.register(connection, kind, args, self._library)
        watch(record, self._registry)
        logger.debug("Intercepted connection attempt", record_index=record.index, method=kind.value)

        task = asyncio.get_running_loop().create_task(self._resume(record))
        if completion_callback(args) is not None:
            # The callback is the caller's completion channel; nobody is
            # obliged to await the task as well.
            task.add_done_callback(consume_exception)
        return task

    async def _resume(self, record: CallRecord) -> Any:
        callback = completion_callback(record.args)
        try:
            await self._controller.ensure_running()
        except MockMongoError as exc:
            if callback is not None:
                callback(exc)
            raise

        method = getattr(self._original, record.method_kind.value)
        result = method(record.caller, *record.args)
        if inspect.isawaitable(result):
            result = await result
        return result


def watch(record: CallRecord, registry: CallRegistry) -> None:
    """Drive the record's connected flag from the caller's own events."""

    def on_connected(*_: Any) -> None:
        registry.mark_connected(record)

    def on_disconnected(*_: Any) -> None:
        registry.mark_disconnected(record)

    for event, handler in ((CONNECTED, on_connected), (DISCONNECTED, on_disconnected)):
        record.caller.on(event, handler)
        record.listeners.append((event, handler))


def unwatch(record: CallRecord) -> None:
    for event, handler in record.listeners:
        record.caller.off(event, handler)
    record.listeners.clear()


def is_mocked(library: ClientLibrary) -> bool:
    """True while the library's entry points are intercepted."""
    return isinstance(library.entry_points, InterceptingEntryPoints)


def completion_callback(args: tuple[Any, ...]) -> Any:
    if args and callable(args[-1]):
        return args[-1]
    return None


def consume_exception(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()
