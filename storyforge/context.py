"""The explicit context every studio operation receives."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx

from storyforge.auth import CredentialStore, Settings, get_api_keys, load_config
from storyforge.cancel import CancelToken, SleepFn
from storyforge.client import GeminiClient
from storyforge.rotation import execute_with_rotation

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StudioContext:
    """Credentials, settings and I/O hooks shared by one session.

    Attributes:
        credentials: Store the rotation executor draws keys from.
        settings: Models, pacing and polling values.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        sleep: Coroutine used for every backoff, pacing and poll delay.
    """
    credentials: CredentialStore = field(default_factory=CredentialStore)
    settings: Settings = field(default_factory=Settings)
    transport: httpx.AsyncBaseTransport | None = None
    sleep: SleepFn = asyncio.sleep

    @classmethod
    def configure(
        cls,
        credentials: Sequence[str] = (),
        settings: Settings | None = None,
        **kwargs,
    ) -> StudioContext:
        """Create a context for an ordered list of user keys."""
        return cls(
            credentials=CredentialStore.configure(credentials),
            settings=settings or Settings(),
            **kwargs,
        )

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None = None,
        extra_keys: Sequence[str] = (),
    ) -> StudioContext:
        """Create a context from ``config.yaml`` plus keys given on the command line."""
        config = load_config(config_path)
        keys = list(extra_keys) + get_api_keys(config)
        return cls.configure(keys, settings=Settings.from_config(config))

    def client(self, api_key: str) -> GeminiClient:
        return GeminiClient(
            api_key=api_key,
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            transport=self.transport,
        )

    async def call(
        self,
        operation: Callable[[GeminiClient], Awaitable[T]],
        label: str = "API call",
        cancel: CancelToken | None = None,
    ) -> T:
        """Run ``operation`` with a client for each candidate key in turn."""

        async def with_key(key: str) -> T:
            async with self.client(key) as client:
                return await operation(client)

        return await execute_with_rotation(
            self.credentials,
            with_key,
            attempts=self.settings.retry_attempts,
            label=label,
            sleep=self.sleep,
            cancel=cancel,
        )
