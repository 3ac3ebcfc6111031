# src/mockmongo/broadcast.py
"""Small synchronous pub/sub primitives.

Broadcaster:
    Ordinary multi-fire subscriptions. ``emit`` calls subscribers in
    subscription order on the caller's stack.

Latch:
    One-shot notification that remembers it fired. Subscribers added
    after the latch fired are called immediately, so a waiter can never
    miss the wake-up regardless of when it registers.

Neither primitive schedules anything on the event loop; dispatch is
synchronous so state changes and notifications happen in one step.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Broadcaster:
    """Multi-fire notification with explicit subscriber list."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[tuple[Callable[..., None], bool]] = []

    def subscribe(self, callback: Callable[..., None]) -> Unsubscribe:
        """Call ``callback`` on every emit until unsubscribed."""
        return self._add(callback, once=False)

    def once(self, callback: Callable[..., None]) -> Unsubscribe:
        """Call ``callback`` on the next emit only."""
        return self._add(callback, once=True)

    def emit(self, *args: Any) -> None:
        # Snapshot: callbacks may subscribe or unsubscribe while we iterate.
        current = list(self._subscribers)
        self._subscribers = [entry for entry in self._subscribers if not entry[1]]
        for callback, _ in current:
            callback(*args)

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)

    def _add(self, callback: Callable[..., None], *, once: bool) -> Unsubscribe:
        entry = (callback, once)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe


class Latch(Generic[T]):
    """One-shot outcome notification.

    Subscribers receive ``(value, error)``; exactly one of them is set.
    The latch settles at most once; a second settle raises RuntimeError.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._settled = False
        self._value: T | None = None
        self._error: BaseException | None = None
        self._subscribers: list[Callable[[T | None, BaseException | None], None]] = []

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def fired(self) -> bool:
        """True once the latch settled with a value."""
        return self._settled and self._error is None

    def subscribe(self, callback: Callable[[T | None, BaseException | None], None]) -> None:
        if self._settled:
            callback(self._value, self._error)
            return
        self._subscribers.append(callback)

    def fire(self, value: T) -> None:
        self._settle(value, None)

    def fail(self, error: BaseException) -> None:
        self._settle(None, error)

    def clear(self) -> None:
        """Drop pending subscribers without notifying them."""
        self._subscribers.clear()

    def wait(self) -> asyncio.Future[T]:
        """Future resolved (or rejected) when the latch settles."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        def resolve(value: T | None, error: BaseException | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)  # type: ignore[arg-type]

        self.subscribe(resolve)
        return future

    def _settle(self, value: T | None, error: BaseException | None) -> None:
        if self._settled:
            raise RuntimeError(f"Latch {self.name!r} already settled")
        self._settled = True
        self._value = value
        self._error = error
        subscribers, self._subscribers = self._subscribers, []
        for callback in subscribers:
            callback(value, error)
