"""Data models for the storyforge generation layer."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoryIdea:
    """A short story premise suggested for a genre.

    Attributes:
        id: Identifier of the form ``<millis>-<index>``.
        text: The premise itself.
    """
    id: str
    text: str


@dataclass(frozen=True)
class Scene:
    """One narrative beat of a story.

    Attributes:
        visual_prompt: Prompt used to generate the scene's image.
        narration: Voice-over line spoken for the scene.
    """
    visual_prompt: str
    narration: str


@dataclass(frozen=True)
class UGCScene:
    """One 8-second beat of a user-generated-content style video.

    Attributes:
        visual_prompt: English prompt for the video generator.
        spoken_script: Voice-over script for the beat.
    """
    visual_prompt: str
    spoken_script: str


@dataclass
class SceneImage:
    """One slot of the progressively filled image collection.

    Attributes:
        index: Position of the scene (0-based).
        prompt: Visual prompt the image is generated from.
        data_url: ``data:image/png;base64,...`` once generated.
        is_loading: True until the slot's request has finished.
        error: Failure message when generation failed.
    """
    index: int
    prompt: str
    data_url: str | None = None
    is_loading: bool = True
    error: str | None = None

    @property
    def failed(self) -> bool:
        return not self.is_loading and self.data_url is None


@dataclass(frozen=True)
class LyricSource:
    """A web page the lyrics search was grounded on."""
    title: str
    uri: str


@dataclass
class LyricsResult:
    """Lyrics found for a query plus the sources used."""
    lyrics: str
    sources: list[LyricSource] = field(default_factory=list)


@dataclass(frozen=True)
class LyricLine:
    """A lyric line paired with its translation."""
    original: str
    translated: str


class JobState(str, enum.Enum):
    """States of a long-running video generation job."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass
class JobStatus:
    """Status of a long-running generation operation.

    Attributes:
        name: Operation name used to poll, e.g. ``models/veo/operations/abc``.
        done: Whether the provider reports the operation finished.
        video_uri: Remote locator of the finished video, if any.
        error: Embedded job-level error message, if any.
    """
    name: str
    done: bool = False
    video_uri: str | None = None
    error: str | None = None

    @property
    def is_success(self) -> bool:
        """Whether the job completed with a downloadable video."""
        return self.done and self.error is None and self.video_uri is not None


@dataclass
class VideoHandle:
    """A finished video materialized as a local temporary file.

    The caller owns the file and must call :meth:`release` once it is no
    longer displayed. The handle can also be used as a context manager.
    """
    path: Path
    mime_type: str = "video/mp4"

    @property
    def size(self) -> int:
        return self.path.stat().st_size if self.path.exists() else 0

    def release(self) -> None:
        """Delete the underlying temporary file."""
        if self.path.exists():
            self.path.unlink()
            logger.debug("Released video handle %s", self.path)

    def __enter__(self) -> VideoHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


@dataclass
class NarrationAudio:
    """Merged narration audio wrapped in a WAV container.

    Attributes:
        wav: Complete WAV file bytes.
        filename: Suggested download filename.
        pcm_length: Length in bytes of the PCM payload (header excluded).
    """
    wav: bytes
    filename: str
    pcm_length: int

    def save(self, directory: str | Path) -> Path:
        """Write the WAV file into ``directory`` and return its path."""
        target = Path(directory) / self.filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.wav)
        return target
