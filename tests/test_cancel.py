"""Tests for storyforge.cancel."""

import asyncio

import pytest

from fakes import SleepRecorder
from storyforge.cancel import CancelToken, cancellable_sleep
from storyforge.errors import OperationCancelled


def test_token_flags():
    token = CancelToken()
    assert not token.cancelled
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(OperationCancelled):
        token.raise_if_cancelled()


def test_sleep_without_token_uses_given_sleep():
    sleeper = SleepRecorder()
    asyncio.run(cancellable_sleep(3.0, None, sleeper))
    assert sleeper.calls == [3.0]


def test_already_cancelled_token_skips_sleep():
    sleeper = SleepRecorder()
    token = CancelToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        asyncio.run(cancellable_sleep(3.0, token, sleeper))
    assert sleeper.calls == []


def test_cancel_interrupts_a_long_sleep():
    async def _go():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await asyncio.wait_for(cancellable_sleep(60, token), timeout=5)

    with pytest.raises(OperationCancelled):
        asyncio.run(_go())


def test_uncancelled_sleep_completes():
    async def _go():
        await asyncio.wait_for(cancellable_sleep(0.01, CancelToken()), timeout=5)
        return "done"

    assert asyncio.run(_go()) == "done"
