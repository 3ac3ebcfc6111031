# src/mockmongo/errors.py
"""Exceptions raised by the interception machinery.

Errors raised by the client library itself (a failed handshake, a bad
URI) are never wrapped: they reach the caller exactly as they would
without interception.
"""

from __future__ import annotations


class MockMongoError(Exception):
    """Base class for interception and ephemeral-service errors."""


class PortContentionError(MockMongoError):
    """Raised by a launcher when the candidate port is already bound.

    Recovered locally: the controller retries on the next port.

    Attributes:
        port: The port that could not be bound
    """

    def __init__(self, port: int, detail: str | None = None) -> None:
        self.port = port
        self.detail = detail
        message = f"Port {port} is already in use"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class FatalLaunchError(MockMongoError):
    """Raised when the ephemeral mongod cannot be started for a reason other than port contention.

    Never retried. Delivered to every caller waiting on the failed launch.

    Attributes:
        port: Port of the failed attempt, if one was made
        message: Human-readable error description
    """

    def __init__(self, port: int | None, message: str) -> None:
        self.port = port
        self.message = message
        where = f" on port {port}" if port is not None else ""
        super().__init__(f"Ephemeral mongod failed to start{where}: {message}")


class ResetDeletionError(MockMongoError):
    """Raised after a reset when one or more collections could not be cleared.

    Raised only once every deletion has completed.

    Attributes:
        failures: (collection, exception) pairs, in submission order
    """

    def __init__(self, failures: list[tuple[object, BaseException]]) -> None:
        self.failures = failures
        names = ", ".join(_collection_name(collection) for collection, _ in failures)
        super().__init__(f"Failed to clear {len(failures)} collection(s): {names}")


class InterceptionStateError(MockMongoError):
    """Raised when the interception layer is used in a way its current state does not allow."""


def _collection_name(collection: object) -> str:
    name = getattr(collection, "name", None)
    return str(name) if name is not None else repr(collection)
