# src/mockmongo/context.py
"""The process-wide interception context and its public operations.

``install()`` creates the one MockContext of the process (one controller,
one registry) on first use and wraps a client library's entry points.
Further installs reuse it. A completed ``restore()`` tears the context
down; the next install starts fresh.

Restore paths:
    Fast: nothing is connected. Entry points are un-wrapped, the registry
    cleared and the controller reset before ``restore()`` returns.

    Slow: callers are connected. A one-shot ``stopped`` subscription is
    installed FIRST, then every connected caller is closed. The last
    disconnect makes the registry signal idle, the controller emits
    ``stopped``, and that completes the restore. Individual closes are
    never awaited.

Every operation returns an ``asyncio.Future`` and accepts an optional
``callback(error_or_None)``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from mockmongo.client import ClientLibrary, Connection, EntryPoints
from mockmongo.config import InterceptionSettings
from mockmongo.errors import InterceptionStateError
from mockmongo.interception import InterceptingEntryPoints, completion_callback, consume_exception, is_mocked, unwatch
from mockmongo.logging import get_logger
from mockmongo.mongod import MongodLauncher
from mockmongo.registry import CallRecord, CallRegistry
from mockmongo.reset import clear_collections
from mockmongo.service import Launcher, ServiceController

logger = get_logger(__name__)

Callback = Callable[[BaseException | None], None]

_active: MockContext | None = None


class MockContext:
    """Settings, controller and registry shared by every intercepted library."""

    def __init__(self, settings: InterceptionSettings, launcher: Launcher) -> None:
        self.settings = settings
        self.launcher = launcher
        self.controller = ServiceController(settings, launcher)
        self.registry = CallRegistry(on_idle=self.controller.signal_idle)
        self._installed: list[tuple[ClientLibrary, EntryPoints]] = []
        self._closing: set[asyncio.Future[Any]] = set()

    @property
    def installed(self) -> bool:
        return bool(self._installed)

    @property
    def libraries(self) -> list[ClientLibrary]:
        return [library for library, _ in self._installed]

    def intercept(self, library: ClientLibrary) -> None:
        """Wrap the library's entry points. Already wrapped libraries are left alone."""
        if is_mocked(library):
            if any(existing is library for existing in self.libraries):
                return
            raise InterceptionStateError("Library is intercepted by a context that is no longer active")
        original = library.entry_points
        library.entry_points = InterceptingEntryPoints(library, original, self.registry, self.controller)
        self._installed.append((library, original))
        logger.info("Interception installed", libraries=len(self._installed))

    def reset(self, callback: Callback | None = None) -> asyncio.Future[None]:
        """Delete every document of every collection known to a registered caller."""
        loop = asyncio.get_running_loop()
        if not self.installed:
            return _completed(loop, callback)
        collections = self.registry.collect_collections()
        if not collections:
            return _completed(loop, callback)
        return _notify(loop.create_task(clear_collections(collections)), callback)

    def restore(self, callback: Callback | None = None) -> asyncio.Future[None]:
        """Put the original entry points back, closing connected callers first."""
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = _notify(loop.create_future(), callback)

        if not self.installed or not self.registry.any_connected():
            self._restore_now()
            done.set_result(None)
            return done

        def finish() -> None:
            self._restore_now()
            if not done.done():
                done.set_result(None)

        # Subscribe before closing anything: the last close may stop the
        # service synchronously.
        self.controller.stopped.once(finish)
        callers = self.registry.connected_callers()
        logger.info("Closing intercepted connections before restore", count=len(callers))
        for caller in callers:
            self._close(caller)
        return done

    def reconnect_all(self, callback: Callback | None = None) -> asyncio.Future[None]:
        """Restore, then replay every intercepted call against its real target.

        Replays are submitted in original order and run concurrently. The
        returned future completes once all of them have; it fails with the
        first error encountered.
        """
        loop = asyncio.get_running_loop()
        records = self.registry.records
        restored = self.restore()
        return _notify(loop.create_task(_replay(restored, records)), callback)

    def _close(self, caller: Connection) -> None:
        try:
            result = caller.close()
        except Exception:
            logger.exception("Closing intercepted connection failed")
            return
        if inspect.isawaitable(result):
            pending = asyncio.ensure_future(result)
            self._closing.add(pending)
            pending.add_done_callback(self._close_finished)

    def _close_finished(self, pending: asyncio.Future[Any]) -> None:
        self._closing.discard(pending)
        if not pending.cancelled() and pending.exception() is not None:
            logger.error("Closing intercepted connection failed", error=str(pending.exception()))

    def _restore_now(self) -> None:
        global _active
        for library, original in reversed(self._installed):
            library.entry_points = original
        self._installed.clear()
        for record in self.registry:
            unwatch(record)
        self.registry.clear()
        self.controller.reset()
        if _active is self:
            _active = None
        logger.info("Interception restored")


async def _replay(restored: asyncio.Future[None], records: Sequence[CallRecord]) -> None:
    await restored
    if not records:
        return

    loop = asyncio.get_running_loop()
    errors: list[BaseException] = []

    async def settle(record: CallRecord, outcome: asyncio.Future[Any]) -> None:
        try:
            await outcome
        except Exception as exc:
            errors.append(exc)
            logger.warning("Reconnect failed", record_index=record.index, error=str(exc))
        else:
            logger.debug("Reconnected", record_index=record.index)

    submitted: list[tuple[CallRecord, asyncio.Future[Any]]] = []
    for record in records:
        if record.coerced:
            record.caller.replica = True
        method = getattr(record.library.entry_points, record.method_kind.value)
        args, hooked = _hook_completion(loop, record.args)
        try:
            result = method(record.caller, *args)
        except Exception as exc:
            if hooked is not None:
                hooked.add_done_callback(consume_exception)
            errors.append(exc)
            logger.warning("Reconnect failed", record_index=record.index, error=str(exc))
            continue
        submitted.append((record, _replay_outcome(loop, result, hooked)))

    await asyncio.gather(*(settle(record, outcome) for record, outcome in submitted))
    if errors:
        raise errors[0]


def _hook_completion(
    loop: asyncio.AbstractEventLoop,
    args: tuple[Any, ...],
) -> tuple[tuple[Any, ...], asyncio.Future[None] | None]:
    """Swap a trailing completion callback for one that also resolves a future.

    The caller's callback still receives every invocation unchanged.
    """
    callback = completion_callback(args)
    if callback is None:
        return args, None
    hooked: asyncio.Future[None] = loop.create_future()

    def hook(*results: Any) -> None:
        if not hooked.done():
            error = results[0] if results else None
            if isinstance(error, BaseException):
                hooked.set_exception(error)
            else:
                hooked.set_result(None)
        callback(*results)

    return (*args[:-1], hook), hooked


def _replay_outcome(
    loop: asyncio.AbstractEventLoop,
    result: Any,
    hooked: asyncio.Future[None] | None,
) -> asyncio.Future[Any]:
    """The future that settles when one replayed call has completed.

    A hooked callback is authoritative; an awaitable returned alongside it
    only settles the outcome if it fails before the callback fires. Without
    a callback the awaitable is the outcome, and a plain return value counts
    as done.
    """
    if hooked is not None:
        if inspect.isawaitable(result):

            def relay_failure(finished: asyncio.Future[Any]) -> None:
                if finished.cancelled() or finished.exception() is None or hooked.done():
                    return
                hooked.set_exception(finished.exception())  # type: ignore[arg-type]

            asyncio.ensure_future(result).add_done_callback(relay_failure)
        return hooked
    if inspect.isawaitable(result):
        return asyncio.ensure_future(result)
    done: asyncio.Future[Any] = loop.create_future()
    done.set_result(result)
    return done


def install(
    library: ClientLibrary,
    settings: InterceptionSettings | None = None,
    *,
    launcher: Launcher | None = None,
) -> MockContext:
    """Intercept ``library``'s connections, creating the process-wide context if needed.

    Raises:
        InterceptionStateError: If a context with different settings or a
            different launcher is already active
    """
    global _active
    if _active is None:
        resolved = settings if settings is not None else InterceptionSettings.from_env()
        _active = MockContext(resolved, launcher if launcher is not None else MongodLauncher.from_settings(resolved))
    else:
        if settings is not None and settings != _active.settings:
            raise InterceptionStateError("Interception is already active with different settings; restore it first")
        if launcher is not None and launcher is not _active.launcher:
            raise InterceptionStateError("Interception is already active with a different launcher; restore it first")
    _active.intercept(library)
    return _active


def active_context() -> MockContext | None:
    return _active


def reset(callback: Callback | None = None) -> asyncio.Future[None]:
    """Clear all collections of intercepted callers; a no-op when nothing is intercepted."""
    if _active is None:
        return _completed(asyncio.get_running_loop(), callback)
    return _active.reset(callback)


def restore(callback: Callback | None = None) -> asyncio.Future[None]:
    if _active is None:
        return _completed(asyncio.get_running_loop(), callback)
    return _active.restore(callback)


def reconnect_all(callback: Callback | None = None) -> asyncio.Future[None]:
    if _active is None:
        return _completed(asyncio.get_running_loop(), callback)
    return _active.reconnect_all(callback)


@asynccontextmanager
async def intercepted(
    library: ClientLibrary,
    settings: InterceptionSettings | None = None,
    *,
    launcher: Launcher | None = None,
) -> AsyncIterator[MockContext]:
    """Install on enter, restore on exit.

    Example:
        async with intercepted(driver) as context:
            await Connection(driver).open("db.example.com", "app", 27017)
            ...
            await context.reset()
    """
    context = install(library, settings, launcher=launcher)
    try:
        yield context
    finally:
        await context.restore()


def _completed(loop: asyncio.AbstractEventLoop, callback: Callback | None) -> asyncio.Future[None]:
    future: asyncio.Future[None] = _notify(loop.create_future(), callback)
    future.set_result(None)
    return future


def _notify(future: asyncio.Future[Any], callback: Callback | None) -> asyncio.Future[Any]:
    if callback is None:
        return future

    def relay(finished: asyncio.Future[Any]) -> None:
        if finished.cancelled():
            callback(asyncio.CancelledError())
            return
        callback(finished.exception())

    future.add_done_callback(relay)
    return future
