"""Credentials and configuration for the Gemini API.

Gemini uses plain API keys. Users may supply several keys; they are tried
in order, and a key from the environment is used only when none were
supplied.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path("config.yaml")

# Checked in order; the first non-empty value wins.
ENV_KEY_NAMES = (
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "API_KEY",
    "VITE_API_KEY",
    "REACT_APP_API_KEY",
)

_PLACEHOLDER_KEYS = {"YOUR_GEMINI_API_KEY", ""}


def mask_key(key: str) -> str:
    """Return a loggable form of a key showing only its last 4 characters."""
    return f"...{key[-4:]}" if key else "<empty>"


def get_system_api_key(environ: Mapping[str, str] | None = None) -> str:
    """Return the fallback API key from the environment, or ``""``."""
    env = os.environ if environ is None else environ
    for name in ENV_KEY_NAMES:
        value = env.get(name, "").strip()
        if value:
            return value
    return ""


class CredentialStore:
    """Holds user-supplied keys plus the environment fallback.

    The user key list is replaced wholesale by :meth:`configure`; callers
    take a snapshot with :meth:`candidates` at the start of each call, so
    reconfiguring while calls are in flight does not affect them.
    """

    def __init__(
        self,
        credentials: Sequence[str] = (),
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._credentials: tuple[str, ...] = tuple(credentials)
        self._environ = environ

    @classmethod
    def configure(
        cls,
        credentials: Sequence[str],
        environ: Mapping[str, str] | None = None,
    ) -> CredentialStore:
        """Build a store from an ordered list of user keys."""
        return cls(credentials, environ=environ)

    def replace(self, credentials: Sequence[str]) -> None:
        """Swap the user key list for a new one."""
        self._credentials = tuple(credentials)
        logger.info("Credential list replaced (%d key(s))", len(self._credentials))

    @property
    def credentials(self) -> tuple[str, ...]:
        return self._credentials

    def system_key(self) -> str:
        return get_system_api_key(self._environ)

    def candidates(self) -> list[str]:
        """Return the ordered keys to try for one call.

        User keys are used exactly when any exist; otherwise the environment
        key alone; otherwise nothing.
        """
        if self._credentials:
            return list(self._credentials)
        system_key = self.system_key()
        return [system_key] if system_key else []


def load_config(config_path: str | Path | None = None) -> dict:
    """Load and return the configuration dictionary.

    Args:
        config_path: Path to a YAML config file. When omitted, ``config.yaml``
            in the working directory is used if present.

    Returns:
        The parsed config dictionary (empty when no default file exists).

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    path = Path(config_path) if config_path else _CONFIG_PATH
    if not path.exists():
        if config_path:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_api_keys(config: dict) -> list[str]:
    """Return user keys listed under ``api.api_keys`` (placeholders dropped)."""
    raw = config.get("api", {}).get("api_keys") or []
    if isinstance(raw, str):
        raw = [raw]
    return [str(k).strip() for k in raw if str(k).strip() not in _PLACEHOLDER_KEYS]


def _optional_float(value: object) -> float | None:
    return None if value is None else float(value)


@dataclass
class Settings:
    """Tunable values read from ``config.yaml``; defaults match the provider."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    video_model: str = "veo-3.1-fast-generate-preview"
    aspect_ratio: str = "16:9"
    scene_count: int = 10
    voice: str = "Kore"
    retry_attempts: int = 2
    scene_delay_seconds: float = 1.0
    poll_interval_seconds: float = 5.0
    max_wait_seconds: float | None = None
    timeout_seconds: float = 120.0
    output_dir: Path = field(default_factory=lambda: Path("output"))

    @classmethod
    def from_config(cls, config: dict) -> Settings:
        api = config.get("api", {})
        models = config.get("models", {})
        generation = config.get("generation", {})
        polling = config.get("polling", {})
        output = config.get("output", {})
        defaults = cls()
        return cls(
            base_url=api.get("base_url", defaults.base_url),
            text_model=models.get("text", defaults.text_model),
            image_model=models.get("image", defaults.image_model),
            tts_model=models.get("tts", defaults.tts_model),
            video_model=models.get("video", defaults.video_model),
            aspect_ratio=generation.get("aspect_ratio", defaults.aspect_ratio),
            scene_count=int(generation.get("scene_count", defaults.scene_count)),
            voice=generation.get("voice", defaults.voice),
            retry_attempts=int(api.get("retry_attempts", defaults.retry_attempts)),
            scene_delay_seconds=float(generation.get("scene_delay_seconds", defaults.scene_delay_seconds)),
            poll_interval_seconds=float(polling.get("interval_seconds", defaults.poll_interval_seconds)),
            max_wait_seconds=_optional_float(polling.get("max_wait_seconds")),
            timeout_seconds=float(api.get("timeout_seconds", defaults.timeout_seconds)),
            output_dir=Path(output.get("base_dir", defaults.output_dir)),
        )
