"""Bounded retry for transient upstream faults."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from storyforge.cancel import CancelToken, SleepFn, cancellable_sleep
from storyforge.errors import ErrorKind, RetryExhausted, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry configuration
_BACKOFF_STEP = 2.0
_TRANSIENT_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.RATE_LIMITED})

# Only consulted for exceptions that did not come through the HTTP adapter.
_TRANSIENT_SIGNATURES = ("Rpc failed", "xhr error", "fetch failed", "503")


def is_transient(exc: BaseException) -> bool:
    """Return True if ``exc`` is worth retrying."""
    if isinstance(exc, UpstreamError):
        return exc.kind in _TRANSIENT_KINDS
    message = str(exc)
    return any(sig in message for sig in _TRANSIENT_SIGNATURES)


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return _BACKOFF_STEP * attempt


async def retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int,
    label: str = "Operation",
    *,
    sleep: SleepFn = asyncio.sleep,
    cancel: CancelToken | None = None,
) -> T:
    """Run ``fn`` up to ``max_attempts`` times, retrying transient failures.

    Fatal errors propagate unchanged on the attempt that raised them.
    Transient ones are followed by a linear backoff of 2s, 4s, 6s, ...

    Raises:
        RetryExhausted: If every attempt failed transiently.
        OperationCancelled: If ``cancel`` fires during a backoff.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_exc: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_exc = exc
            if attempt == max_attempts:
                break
            wait = backoff_delay(attempt)
            logger.warning(
                "%s retry %d/%d in %.1fs: %s",
                label, attempt, max_attempts, wait, exc,
            )
            await cancellable_sleep(wait, cancel, sleep)

    raise RetryExhausted(label, last_exc) from last_exc
