"""Story and UGC pipelines with progressive per-scene image generation.

The text stages run in order and are awaited by the caller. Image
generation then continues in a background task that fills an
:class:`ImageBoard` one slot at a time, so the caller can show the story
while pictures arrive.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Sequence

from storyforge.audio import assemble_narration_audio
from storyforge.cancel import CancelToken, cancellable_sleep
from storyforge.context import StudioContext
from storyforge.errors import OperationCancelled, StudioError
from storyforge.generation import (
    decompose_scenes,
    expand_narrative,
    generate_scene_image,
    generate_ugc_script,
)
from storyforge.models import NarrationAudio, Scene, SceneImage, UGCScene

logger = logging.getLogger(__name__)

_UGC_ASPECT_RATIO = "9:16"

Listener = Callable[[str, list[SceneImage]], None]


def new_run_id() -> str:
    """Return a short unique run identifier."""
    return uuid.uuid4().hex[:12]


class ImageBoard:
    """Observable image collection owned by the most recent run.

    Each update is tagged with the run that produced it. Updates from any run
    other than the current one are dropped, so an older run still in flight
    cannot overwrite a newer run's slots.
    """

    def __init__(self) -> None:
        self.run_id: str | None = None
        self.images: list[SceneImage] = []
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _publish(self) -> None:
        snapshot = list(self.images)
        for listener in self._listeners:
            listener(self.run_id or "", snapshot)

    def start(self, run_id: str, prompts: Sequence[str]) -> None:
        """Make ``run_id`` current and reset to one loading slot per prompt."""
        self.run_id = run_id
        self.images = [SceneImage(index=i, prompt=p) for i, p in enumerate(prompts)]
        self._publish()

    def update(self, run_id: str, image: SceneImage) -> bool:
        """Replace one slot; returns False if ``run_id`` is stale."""
        if run_id != self.run_id:
            logger.debug("Ignoring update from stale run %s (current %s)", run_id, self.run_id)
            return False
        self.images[image.index] = image
        self._publish()
        return True


async def render_scene_images(
    ctx: StudioContext,
    board: ImageBoard,
    run_id: str,
    prompts: Sequence[str],
    aspect_ratio: str,
    reference_images: Sequence[str] = (),
    cancel: CancelToken | None = None,
) -> list[SceneImage]:
    """Generate one image per prompt, strictly in order.

    A fixed pacing delay precedes every request. A failed slot is marked
    not-loading without an image and the loop moves on.

    Returns:
        This run's final slots (always ``len(prompts)`` entries).
    """
    images = [SceneImage(index=i, prompt=p) for i, p in enumerate(prompts)]
    refs = [r for r in reference_images if r][:2]

    for i, prompt in enumerate(prompts):
        await cancellable_sleep(ctx.settings.scene_delay_seconds, cancel, ctx.sleep)
        try:
            data_url = await generate_scene_image(ctx, prompt, aspect_ratio, refs)
            images[i] = dataclasses.replace(images[i], data_url=data_url, is_loading=False)
            logger.info("Scene %d/%d image ready", i + 1, len(prompts))
        except OperationCancelled:
            raise
        except StudioError as exc:
            images[i] = dataclasses.replace(images[i], is_loading=False, error=str(exc))
            logger.warning("Scene %d/%d image failed: %s", i + 1, len(prompts), exc)
        board.update(run_id, images[i])

    return images


@dataclass
class StoryRun:
    """Result of the awaited story stages plus the running image task."""
    run_id: str
    narrative: str
    scenes: list[Scene]
    board: ImageBoard
    task: asyncio.Task | None = None

    @property
    def narrations(self) -> list[str]:
        return [scene.narration for scene in self.scenes]

    async def images(self) -> list[SceneImage]:
        """Wait for the image loop and return this run's slots."""
        if self.task is None:
            return []
        return await self.task


@dataclass
class UGCRun:
    """Result of the UGC script stage plus the running image task."""
    run_id: str
    scenes: list[UGCScene]
    board: ImageBoard
    task: asyncio.Task | None = None

    async def images(self) -> list[SceneImage]:
        if self.task is None:
            return []
        return await self.task


@dataclass
class StoryPipeline:
    """Premise to narrative to scenes to images, with narration on demand.

    Usage::

        pipeline = StoryPipeline(ctx)
        run = await pipeline.run(premise="...", genre="Fantasy", gender="female")
        show(run.narrative)          # images keep arriving on pipeline.board
        images = await run.images()
        audio = await pipeline.narrate(run, voice="Kore")
    """
    ctx: StudioContext
    board: ImageBoard = field(default_factory=ImageBoard)

    async def run(
        self,
        premise: str,
        genre: str,
        gender: str = "",
        character_desc: str = "",
        scene_count: int | None = None,
        aspect_ratio: str | None = None,
        character_image: str | None = None,
        animal_image: str | None = None,
        cancel: CancelToken | None = None,
    ) -> StoryRun:
        """Run the text stages and start the image loop in the background.

        Raises:
            StudioError: If narrative expansion or scene decomposition fails.
        """
        settings = self.ctx.settings
        scene_count = scene_count or settings.scene_count
        run_id = new_run_id()

        logger.info("[%s] Expanding premise into %d scene(s)", run_id, scene_count)
        narrative = await expand_narrative(self.ctx, premise, genre, gender, scene_count)
        scenes = await decompose_scenes(self.ctx, narrative, character_desc, scene_count)

        prompts = [scene.visual_prompt for scene in scenes]
        self.board.start(run_id, prompts)
        run = StoryRun(run_id=run_id, narrative=narrative, scenes=scenes, board=self.board)
        if scenes:
            run.task = asyncio.create_task(render_scene_images(
                self.ctx,
                self.board,
                run_id,
                prompts,
                aspect_ratio or settings.aspect_ratio,
                [img for img in (character_image, animal_image) if img],
                cancel,
            ))
        return run

    async def narrate(self, run: StoryRun, voice: str | None = None) -> NarrationAudio:
        """Build the merged narration WAV for a finished run."""
        return await assemble_narration_audio(
            self.ctx, run.narrations, voice or self.ctx.settings.voice
        )


async def ugc_storyboard(
    ctx: StudioContext,
    scenario: str,
    language: str = "Indonesian",
    character_desc: str = "",
    product_desc: str = "",
    use_character: bool = True,
    use_product: bool = True,
    shot_type: str = "",
    character_image: str | None = None,
    product_image: str | None = None,
    board: ImageBoard | None = None,
    cancel: CancelToken | None = None,
) -> UGCRun:
    """Write a UGC script and start generating its portrait images."""
    board = board or ImageBoard()
    run_id = new_run_id()
    scenes = await generate_ugc_script(
        ctx, scenario, language, character_desc, product_desc, use_product, shot_type
    )

    refs = []
    if use_character and character_image:
        refs.append(character_image)
    if use_product and product_image:
        refs.append(product_image)

    prompts = [scene.visual_prompt for scene in scenes]
    board.start(run_id, prompts)
    run = UGCRun(run_id=run_id, scenes=scenes, board=board)
    if scenes:
        run.task = asyncio.create_task(render_scene_images(
            ctx, board, run_id, prompts, _UGC_ASPECT_RATIO, refs, cancel
        ))
    return run
