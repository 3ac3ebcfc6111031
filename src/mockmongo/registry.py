# src/mockmongo/registry.py
"""Call registry: one record per intercepted connection attempt.

The registry is the source of truth for "is anybody still connected?".
A connected -> disconnected transition evaluates that predicate in the
same synchronous step as the mutation and calls the idle hook when it
turns false, so two interleaved disconnects can never both miss (or both
observe) the last-one-out condition.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from mockmongo.client import ClientLibrary, Collection, Connection
from mockmongo.logging import get_logger

logger = get_logger(__name__)


class MethodKind(StrEnum):
    """Which entry point a call came through. Value is the entry point name."""

    SINGLE_HOST = "open"
    HOST_SET = "open_set"


@dataclass(eq=False)
class CallRecord:
    """One intercepted connection attempt.

    Identity semantics (eq=False): two calls with identical arguments are
    still two records.
    """

    index: int
    caller: Connection
    method_kind: MethodKind
    args: tuple[Any, ...]
    library: ClientLibrary
    connected: bool = False
    # Set when internal_open collapsed a host-set request to one host.
    coerced: bool = False
    listeners: list[tuple[str, Callable[..., None]]] = field(default_factory=list)


class CallRegistry:
    """Ordered collection of CallRecords with idle detection.

    Args:
        on_idle: Called when the last connected record disconnects
    """

    def __init__(self, on_idle: Callable[[], None]) -> None:
        self._on_idle = on_idle
        self._records: list[CallRecord] = []
        self._next_index = 0

    def register(
        self,
        caller: Connection,
        method_kind: MethodKind,
        args: tuple[Any, ...],
        library: ClientLibrary,
    ) -> CallRecord:
        record = CallRecord(
            index=self._next_index,
            caller=caller,
            method_kind=method_kind,
            args=tuple(args),
            library=library,
        )
        self._next_index += 1
        self._records.append(record)
        return record

    def mark_connected(self, record: CallRecord) -> None:
        record.connected = True
        logger.debug("Caller connected", record_index=record.index)

    def mark_disconnected(self, record: CallRecord) -> None:
        was_connected = record.connected
        record.connected = False
        logger.debug("Caller disconnected", record_index=record.index)
        # Only the connected -> disconnected edge can make us idle. A failed
        # handshake must not stop a service other callers are still joining.
        if was_connected and not self.any_connected():
            self._on_idle()

    def any_connected(self) -> bool:
        return any(record.connected for record in self._records)

    def connected_callers(self) -> list[Connection]:
        """Distinct connected callers in registration order."""
        callers: list[Connection] = []
        for record in self._records:
            if record.connected and not any(existing is record.caller for existing in callers):
                callers.append(record.caller)
        return callers

    def records_for(self, caller: Connection) -> list[CallRecord]:
        return [record for record in self._records if record.caller is caller]

    def collect_collections(self) -> list[Collection]:
        """Every collection of every registered caller. Not deduplicated."""
        collections: list[Collection] = []
        for record in self._records:
            collections.extend(record.caller.collections.values())
        return collections

    @property
    def records(self) -> tuple[CallRecord, ...]:
        """Snapshot in submission order."""
        return tuple(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CallRecord]:
        return iter(tuple(self._records))
