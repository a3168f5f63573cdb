"""Credential rotation: try each API key in turn until one succeeds."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from storyforge.auth import CredentialStore, mask_key
from storyforge.cancel import CancelToken, SleepFn
from storyforge.errors import (
    CredentialExhausted,
    ErrorKind,
    RetryExhausted,
    TerminalError,
    UpstreamError,
)
from storyforge.retry import retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ATTEMPTS_PER_KEY = 2


def is_rejected_credential(exc: BaseException | None) -> bool:
    """Whether ``exc`` (or the error it wraps) is an invalid-key signal."""
    if isinstance(exc, RetryExhausted):
        exc = exc.last_error
    if isinstance(exc, UpstreamError):
        return exc.kind is ErrorKind.REJECTED_CREDENTIAL
    return exc is not None and "API key not valid" in str(exc)


async def execute_with_rotation(
    store: CredentialStore,
    operation: Callable[[str], Awaitable[T]],
    *,
    attempts: int = _ATTEMPTS_PER_KEY,
    label: str = "API call",
    sleep: SleepFn = asyncio.sleep,
    cancel: CancelToken | None = None,
) -> T:
    """Run ``operation`` with each candidate key until one succeeds.

    Each key gets its own retry budget of ``attempts``. A key that fails
    (fatally or after exhausting its retries) is skipped for the next one.

    Args:
        store: Source of candidate keys; snapshotted once, never mutated.
        operation: Coroutine function taking the key to use.
        attempts: Retry budget per key.
        label: Name used in log lines and ``RetryExhausted``.

    Returns:
        The first successful result.

    Raises:
        CredentialExhausted: If there are no keys, or all of them failed.
        TerminalError: Re-raised as soon as any key produces one (job
            failures, poll timeouts, cancellation).
    """
    candidates = store.candidates()
    last_error: BaseException | None = None
    tried = 0

    for key in candidates:
        if not key:
            continue
        if cancel is not None:
            cancel.raise_if_cancelled()
        tried += 1
        try:
            return await retry(
                lambda key=key: operation(key),
                attempts,
                label,
                sleep=sleep,
                cancel=cancel,
            )
        except TerminalError:
            raise
        except Exception as exc:
            logger.warning("API key %s failed: %s", mask_key(key), exc)
            last_error = exc

    if tried == 0:
        raise CredentialExhausted()
    if is_rejected_credential(last_error):
        raise CredentialExhausted(last_error=last_error) from last_error
    raise CredentialExhausted(
        f"All {tried} API key(s) failed.", last_error=last_error
    ) from last_error
