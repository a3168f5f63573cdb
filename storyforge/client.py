"""Async HTTP client for the Gemini REST API.

Handles content generation (text, image, speech), long-running video
operations, and authenticated file downloads. Every HTTP failure is mapped
to an :class:`UpstreamError` with a structured :class:`ErrorKind`; retrying
is left to :mod:`storyforge.retry`.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import httpx

from storyforge.auth import mask_key
from storyforge.errors import (
    ErrorKind,
    TransientUpstreamError,
    UpstreamError,
    VideoDownloadFailed,
)
from storyforge.models import JobStatus, LyricSource

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_DEFAULT_TIMEOUT = 120.0
_DOWNLOAD_TIMEOUT = 300.0

_REJECTED_MARKERS = ("API key not valid", "API_KEY_INVALID", "PERMISSION_DENIED")


def classify_status(status_code: int, body: str) -> ErrorKind:
    """Map an HTTP error status (and its body) to an :class:`ErrorKind`."""
    if status_code in (401, 403) or any(m in body for m in _REJECTED_MARKERS):
        return ErrorKind.REJECTED_CREDENTIAL
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def _error_message(response: httpx.Response) -> str:
    """Extract the provider's error message from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return err.get("message") or str(err)
    return response.text[:500]


class GeminiClient:
    """Async client bound to a single API key.

    Usage::

        async with GeminiClient(api_key="...") as client:
            data = await client.generate_content("gemini-2.5-flash", [{"text": "Hi"}])
            print(GeminiClient.text_of(data))
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        """Execute a request and return its JSON body, mapping failures."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"fetch failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            kind = classify_status(response.status_code, response.text)
            logger.debug(
                "%s %s -> %d (%s) with key %s",
                method, url, response.status_code, kind.value, mask_key(self.api_key),
            )
            raise UpstreamError(
                f"HTTP {response.status_code}: {message}",
                kind=kind,
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Invalid JSON from {url}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parts_of(data: dict) -> list[dict]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return content.get("parts") or []

    @staticmethod
    def text_of(data: dict) -> str:
        """Concatenate the text parts of the first candidate."""
        return "".join(
            part.get("text", "") for part in GeminiClient._parts_of(data) if "text" in part
        )

    @staticmethod
    def inline_data_of(data: dict) -> str | None:
        """Return the base64 payload of the first inline-data part, if any."""
        for part in GeminiClient._parts_of(data):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return inline["data"]
        return None

    @staticmethod
    def grounding_sources_of(data: dict) -> list[LyricSource]:
        """Return the web sources a search-grounded answer cited."""
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        metadata = candidates[0].get("groundingMetadata") or {}
        sources = []
        for chunk in metadata.get("groundingChunks") or []:
            web = chunk.get("web") or {}
            sources.append(LyricSource(title=web.get("title") or "Source", uri=web.get("uri") or "#"))
        return sources

    @staticmethod
    def _parse_operation(data: dict) -> JobStatus:
        """Parse a long-running operation into a :class:`JobStatus`."""
        error: str | None = None
        err = data.get("error")
        if isinstance(err, dict):
            error = str(err.get("message") or err)
        elif err:
            error = str(err)

        video_uri: str | None = None
        response = data.get("response") or {}
        samples = (
            (response.get("generateVideoResponse") or {}).get("generatedSamples")
            or response.get("generatedVideos")
            or []
        )
        if samples:
            video = samples[0].get("video") or {}
            video_uri = video.get("uri")

        return JobStatus(
            name=data.get("name", ""),
            done=bool(data.get("done", False)),
            video_uri=video_uri,
            error=error,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_content(
        self,
        model: str,
        parts: list[dict],
        generation_config: dict | None = None,
        tools: list[dict] | None = None,
    ) -> dict:
        """Call ``models/{model}:generateContent`` and return the raw JSON.

        Args:
            model: Model name, e.g. ``gemini-2.5-flash``.
            parts: Content parts (``{"text": ...}`` / ``{"inlineData": ...}``).
            generation_config: Optional ``generationConfig`` block.
            tools: Optional tool declarations (e.g. Google Search grounding).

        Raises:
            UpstreamError: On API errors.
        """
        body: dict[str, Any] = {"contents": [{"parts": parts}]}
        if generation_config:
            body["generationConfig"] = generation_config
        if tools:
            body["tools"] = tools

        logger.debug("generateContent model=%s parts=%d", model, len(parts))
        return await self._request("POST", f"/models/{model}:generateContent", json=body)

    async def create_video_job(
        self,
        model: str,
        prompt: str,
        image_base64: str,
        mime_type: str = "image/jpeg",
    ) -> JobStatus:
        """Submit an image-to-video job.

        Returns:
            The initial :class:`JobStatus`; poll it with :meth:`get_operation`.

        Raises:
            UpstreamError: On API errors or a response without an operation name.
        """
        body = {
            "instances": [
                {
                    "prompt": prompt,
                    "image": {"bytesBase64Encoded": image_base64, "mimeType": mime_type},
                }
            ],
        }
        logger.info("Creating video job: model=%s prompt=%r", model, prompt[:80])
        data = await self._request("POST", f"/models/{model}:predictLongRunning", json=body)
        status = self._parse_operation(data)
        if not status.name:
            raise UpstreamError(f"Could not extract operation name from response: {data}", body=data)
        logger.info("Video job created: %s", status.name)
        return status

    async def get_operation(self, name: str) -> JobStatus:
        """Fetch the current state of a long-running operation."""
        data = await self._request("GET", f"/{name.lstrip('/')}")
        return self._parse_operation(data)

    async def download_file(self, uri: str, output_path: str | Path | None = None) -> Path:
        """Download a generated file, authenticating with the bound key.

        The key is added to the locator's existing query as a ``key``
        parameter and never returned. The body is streamed into a temporary
        file that only replaces ``output_path`` once the download completed.

        Args:
            uri: Remote locator reported by the finished operation.
            output_path: Where to write; a temporary ``.mp4`` file when omitted.

        Returns:
            Path of the written file.

        Raises:
            VideoDownloadFailed: On a non-success status or transport error.
        """
        if output_path is None:
            output = None
            fd, tmp_name = tempfile.mkstemp(prefix="storyforge-", suffix=".mp4")
        else:
            output = Path(output_path)
            output.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{output.name}.", suffix=".part", dir=output.parent
            )
        tmp_path = Path(tmp_name)
        url = httpx.URL(uri).copy_merge_params({"key": self.api_key})

        logger.info("Downloading video -> %s", output or tmp_path)
        completed = False
        try:
            with os.fdopen(fd, "wb") as f:
                async with httpx.AsyncClient(
                    timeout=_DOWNLOAD_TIMEOUT,
                    follow_redirects=True,
                    transport=self._transport,
                ) as dl_client:
                    async with dl_client.stream("GET", url) as response:
                        if response.is_error:
                            raise VideoDownloadFailed(
                                f"Failed to download video (HTTP {response.status_code})",
                                status_code=response.status_code,
                            )
                        async for chunk in response.aiter_bytes(chunk_size=8192):
                            f.write(chunk)
            if output is not None:
                os.replace(tmp_path, output)
            else:
                output = tmp_path
            completed = True
        except httpx.HTTPError as exc:
            raise VideoDownloadFailed(f"Failed to download video: {exc}") from exc
        finally:
            if not completed:
                tmp_path.unlink(missing_ok=True)

        logger.info("Downloaded: %s (%.1f KB)", output, output.stat().st_size / 1024)
        return output
