"""Bounded retry with backoff for transient storage failures.

Business rejections (``LedgerError``) are never retried. Ledger writes
re-check their preconditions inside the lock on every attempt, so repeating
one is safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from taskbuddy.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Lock timeouts, serialization failures and sequence-guard collisions."""
    if isinstance(exc, (OperationalError, IntegrityError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """Run ``operation`` until it succeeds or ``attempts`` transient failures occur."""
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.ledger_retry_attempts
    delay = base_delay if base_delay is not None else settings.ledger_retry_base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc) or attempt == attempts:
                raise
            logger.warning(
                "Transient ledger failure (attempt %d/%d), retrying in %.3fs: %s",
                attempt, attempts, delay, exc.__class__.__name__,
            )
            await asyncio.sleep(delay)
            delay *= 2

    msg = "retry_on_conflict requires at least one attempt"
    raise ValueError(msg)
