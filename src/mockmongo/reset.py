# src/mockmongo/reset.py
"""Clearing every known collection between tests."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Sequence
from typing import Any

from mockmongo.client import Collection
from mockmongo.errors import ResetDeletionError
from mockmongo.logging import get_logger

logger = get_logger(__name__)


async def delete_all(collection: Collection) -> Any:
    """Delete every document, via ``delete_many`` or the older ``remove``."""
    delete = getattr(collection, "delete_many", None)
    if delete is None:
        delete = collection.remove  # type: ignore[attr-defined]
    result = delete({})
    if inspect.isawaitable(result):
        result = await result
    return result


async def clear_collections(collections: Sequence[Collection]) -> None:
    """Clear all collections concurrently.

    Every deletion is awaited before returning, failed or not.

    Raises:
        ResetDeletionError: If any deletion failed
    """
    if not collections:
        return

    outcomes = await asyncio.gather(*(delete_all(collection) for collection in collections), return_exceptions=True)
    failures = [
        (collection, outcome)
        for collection, outcome in zip(collections, outcomes, strict=True)
        if isinstance(outcome, BaseException)
    ]
    logger.debug("Cleared collections", count=len(collections), failed=len(failures))
    if failures:
        raise ResetDeletionError(failures)
