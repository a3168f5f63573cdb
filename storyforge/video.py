"""Image-to-video generation via a long-running job.

The job is submitted, polled at a fixed interval until the provider reports
it done, and the finished video is downloaded to a local temporary file.
The whole sequence runs under one API key, because only the key that
created the job can download its result.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from storyforge.cancel import CancelToken, cancellable_sleep
from storyforge.client import GeminiClient
from storyforge.context import StudioContext
from storyforge.errors import JobFailed, OperationCancelled, PollTimeout
from storyforge.generation import split_data_url
from storyforge.models import JobState, JobStatus, VideoHandle

logger = logging.getLogger(__name__)

DEFAULT_MOTION_PROMPT = "Cinematic movement"


async def wait_for_job(
    ctx: StudioContext,
    client: GeminiClient,
    status: JobStatus,
    cancel: CancelToken | None = None,
    max_wait: float | None = None,
) -> JobStatus:
    """Poll ``status`` until the provider reports it done.

    Each check first waits ``poll_interval_seconds``. Polling is unbounded
    unless ``max_wait`` is given. A poll that raises propagates.

    Raises:
        JobFailed: If the operation reports an embedded error.
        PollTimeout: If ``max_wait`` seconds elapse first.
        OperationCancelled: If ``cancel`` fires.
    """
    interval = ctx.settings.poll_interval_seconds
    name = status.name
    elapsed = 0.0
    polls = 0

    while not status.done:
        if max_wait is not None and elapsed >= max_wait:
            logger.warning("Job %s: %s after %d poll(s)", name, JobState.TIMED_OUT.value, polls)
            raise PollTimeout(f"Job {name} did not complete within {max_wait}s")
        try:
            await cancellable_sleep(interval, cancel, ctx.sleep)
        except OperationCancelled:
            logger.warning("Job %s: %s after %d poll(s)", name, JobState.CANCELLED.value, polls)
            raise
        elapsed += interval
        status = await client.get_operation(name)
        polls += 1
        logger.debug("Job %s: %s (%.0fs elapsed)", name, JobState.POLLING.value, elapsed)
        if status.error:
            break

    if status.error:
        logger.warning("Job %s: %s: %s", name, JobState.FAILED.value, status.error)
        raise JobFailed(status.error)
    logger.info("Job %s: %s after %d poll(s)", name, JobState.DONE.value, polls)
    return status


async def image_to_video(
    ctx: StudioContext,
    image: str,
    prompt: str = "",
    cancel: CancelToken | None = None,
    max_wait: float | None = None,
    output_path: str | Path | None = None,
) -> VideoHandle:
    """Animate a still image and return a local handle to the video.

    Args:
        ctx: Studio context.
        image: Data URL (``data:image/png;base64,...``) or bare base64 JPEG.
        prompt: Motion description; defaults to a generic camera move.
        cancel: Token checked at every poll interval.
        max_wait: Optional wall-clock budget for polling, in seconds.
        output_path: Where to store the video; a temporary file otherwise.

    Returns:
        A :class:`VideoHandle` the caller must release.

    Raises:
        JobFailed: The job reported an error or finished without a video.
        VideoDownloadFailed: The finished video could not be fetched.
        PollTimeout: ``max_wait`` elapsed.
        CredentialExhausted: No key could run the job.
    """
    mime_type, payload = split_data_url(image)
    motion = prompt.strip() or DEFAULT_MOTION_PROMPT
    if max_wait is None:
        max_wait = ctx.settings.max_wait_seconds

    async def op(client: GeminiClient) -> VideoHandle:
        started = time.monotonic()
        status = await client.create_video_job(ctx.settings.video_model, motion, payload, mime_type)
        logger.info("Job %s: %s", status.name, JobState.SUBMITTED.value)
        status = await wait_for_job(ctx, client, status, cancel=cancel, max_wait=max_wait)
        if not status.video_uri:
            raise JobFailed("No video URI returned")
        path = await client.download_file(status.video_uri, output_path)
        logger.info("Video ready in %.1fs: %s", time.monotonic() - started, path)
        return VideoHandle(path=path)

    return await ctx.call(op, "Image to video", cancel=cancel)
