"""storyforge: orchestration layer for a generative creative studio."""

from storyforge.auth import CredentialStore, Settings
from storyforge.cancel import CancelToken
from storyforge.context import StudioContext
from storyforge.errors import (
    CredentialExhausted,
    JobFailed,
    NoAudioData,
    PollTimeout,
    StudioError,
    VideoDownloadFailed,
)
from storyforge.story import ImageBoard, StoryPipeline

__all__ = [
    "CancelToken",
    "CredentialExhausted",
    "CredentialStore",
    "ImageBoard",
    "JobFailed",
    "NoAudioData",
    "PollTimeout",
    "Settings",
    "StoryPipeline",
    "StudioContext",
    "StudioError",
    "VideoDownloadFailed",
]
