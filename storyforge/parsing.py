"""Lenient JSON extraction from model text output."""

from __future__ import annotations

import json
import logging
from typing import Any, TypeVar

from storyforge.errors import MalformedResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    for fence in ("```json", "```JSON", "```"):
        cleaned = cleaned.replace(fence, "")
    return cleaned.strip()


def parse_json_strict(text: str) -> Any:
    """Parse JSON from a model response, handling markdown code blocks.

    When the text contains a ``[...]`` span, only the outermost span is
    parsed, so chatter around a JSON array is tolerated.

    Raises:
        MalformedResponse: If no valid JSON can be extracted.
    """
    cleaned = _strip_fences(text)
    first = cleaned.find("[")
    last = cleaned.rfind("]")
    candidate = cleaned[first:last + 1] if first != -1 and last > first else cleaned
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"Model returned invalid JSON: {text[:200]}") from exc


def parse_json_lenient(text: str, fallback: T) -> Any | T:
    """Like :func:`parse_json_strict` but return ``fallback`` on failure."""
    try:
        return parse_json_strict(text)
    except MalformedResponse as exc:
        logger.warning("%s; using fallback", exc)
        return fallback


def parse_json_list(text: str) -> list:
    """Parse a JSON array leniently; anything else becomes ``[]``."""
    value = parse_json_lenient(text or "[]", [])
    if not isinstance(value, list):
        logger.warning("Expected a JSON array, got %s; using []", type(value).__name__)
        return []
    return value
