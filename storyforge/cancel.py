"""Cooperative cancellation for long-running loops."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from storyforge.errors import OperationCancelled

SleepFn = Callable[[float], Awaitable[None]]


class CancelToken:
    """A flag checked at every suspension point of a loop.

    Usage::

        token = CancelToken()
        task = asyncio.create_task(image_to_video(ctx, image, cancel=token))
        ...
        token.cancel()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def cancellable_sleep(
    seconds: float,
    cancel: CancelToken | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Suspend for ``seconds`` unless ``cancel`` fires first.

    Raises:
        OperationCancelled: If the token is (or becomes) cancelled.
    """
    if cancel is None:
        await sleep(seconds)
        return

    cancel.raise_if_cancelled()
    sleeper = asyncio.ensure_future(sleep(seconds))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for fut in (sleeper, waiter):
            if not fut.done():
                fut.cancel()
    cancel.raise_if_cancelled()
    sleeper.result()
