"""Error taxonomy for the studio orchestration layer.

Every failure surfaced to callers derives from :class:`StudioError`.
Upstream failures carry a machine-checkable :class:`ErrorKind` assigned by
the HTTP adapter, so retry and rotation branch on the kind instead of on
message text.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    """Classification of an upstream failure."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    REJECTED_CREDENTIAL = "rejected_credential"
    FATAL = "fatal"


class StudioError(Exception):
    """Base class for all errors raised by storyforge."""


class TerminalError(StudioError):
    """The unit of work itself failed; another API key would not help.

    Credential rotation re-raises these instead of moving to the next key.
    """


class UpstreamError(StudioError):
    """Raised when the generative API returns an error."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.FATAL,
        status_code: int | None = None,
        body: Any = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TransientUpstreamError(UpstreamError):
    """Network or server-side failure that is worth retrying."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message, kind=ErrorKind.TRANSIENT, status_code=status_code, body=body)


class RetryExhausted(StudioError):
    """Every attempt of a retried unit of work failed transiently."""

    def __init__(self, label: str, last_error: BaseException | None):
        self.label = label
        self.last_error = last_error
        super().__init__(f"{label} failed after retries: {last_error}")


class CredentialExhausted(StudioError):
    """No credential was available, or every candidate failed."""

    DEFAULT_HINT = "No valid API credential; supply one."

    def __init__(self, hint: str = DEFAULT_HINT, last_error: BaseException | None = None):
        self.hint = hint
        self.last_error = last_error
        message = hint if last_error is None else f"{hint} (last error: {last_error})"
        super().__init__(message)


class MalformedResponse(StudioError):
    """The upstream text was not the expected structured payload."""


class NoAudioData(MalformedResponse):
    """Narration assembly produced zero audio chunks."""

    def __init__(self, message: str = "No audio data"):
        super().__init__(message)


class SafetyOrEmptyGeneration(StudioError):
    """An image or speech call returned no payload (e.g. safety filter)."""


class JobFailed(TerminalError):
    """A long-running job reported an embedded failure."""


class VideoDownloadFailed(TerminalError):
    """Fetching the finished artifact of a completed job failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PollTimeout(TerminalError):
    """A long-running job did not finish within its wall-clock budget."""


class OperationCancelled(TerminalError):
    """The caller cancelled an in-flight operation through its token."""
