"""Single-call generation operations.

Each function builds one request, runs it through credential rotation, and
turns the response into a typed result. Prompts are phrased for Indonesian
output, matching the studio's audience.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Sequence

from storyforge.client import GeminiClient
from storyforge.context import StudioContext
from storyforge.errors import MalformedResponse, SafetyOrEmptyGeneration
from storyforge.models import LyricLine, LyricsResult, Scene, StoryIdea, UGCScene
from storyforge.parsing import parse_json_list

logger = logging.getLogger(__name__)

_IDEA_COUNT = 8
_UGC_SCENE_COUNT = 6
_JSON_CONFIG = {"responseMimeType": "application/json"}
_GENDER_LABELS = {"male": "Laki-laki", "female": "Perempuan"}


def normalize_aspect_ratio(aspect_ratio: str) -> str:
    """Only landscape and portrait are supported; anything else is portrait."""
    return "16:9" if aspect_ratio == "16:9" else "9:16"


def split_data_url(image: str, default_mime: str = "image/jpeg") -> tuple[str, str]:
    """Split ``data:<mime>;base64,<payload>`` into ``(mime, payload)``.

    Bare base64 strings are returned with ``default_mime``.
    """
    if image.startswith("data:") and "," in image:
        header, payload = image.split(",", 1)
        mime = header[len("data:"):].split(";", 1)[0]
        return (mime or default_mime), payload
    return default_mime, image


def _image_parts(images: Sequence[str]) -> list[dict]:
    parts = []
    for image in images:
        if not image:
            continue
        mime, payload = split_data_url(image)
        parts.append({"inlineData": {"mimeType": mime, "data": payload}})
    return parts


async def _generate_text(
    ctx: StudioContext,
    prompt: str,
    label: str,
    generation_config: dict | None = None,
) -> str:
    async def op(client: GeminiClient) -> str:
        data = await client.generate_content(
            ctx.settings.text_model, [{"text": prompt}], generation_config
        )
        return GeminiClient.text_of(data)

    return await ctx.call(op, label)


# ----------------------------------------------------------------------
# Story flow
# ----------------------------------------------------------------------

async def generate_ideas(ctx: StudioContext, genre: str) -> list[StoryIdea]:
    """Suggest story premises for ``genre``; malformed output yields ``[]``."""
    text = await _generate_text(
        ctx,
        f'Generate {_IDEA_COUNT} creative story ideas for genre "{genre}". '
        "Return JSON array of strings.",
        "Story ideas",
        _JSON_CONFIG,
    )
    stamp = int(time.time() * 1000)
    return [
        StoryIdea(id=f"{stamp}-{i}", text=str(item))
        for i, item in enumerate(parse_json_list(text))
    ]


async def polish_story(ctx: StudioContext, text: str) -> str:
    """Rewrite a premise to be more engaging; returns ``text`` if nothing comes back."""
    polished = await _generate_text(
        ctx,
        f"Polish this story text to be more engaging in Indonesian:\n{text}",
        "Polish story",
    )
    return polished or text


async def expand_narrative(
    ctx: StudioContext,
    premise: str,
    genre: str,
    gender: str,
    scene_count: int = 10,
) -> str:
    """Write the full narrative for a premise, structured into ``scene_count`` scenes.

    Any upstream failure propagates; there is no fallback narrative.
    """
    gender_text = _GENDER_LABELS.get(gender, "Umum")
    text = await _generate_text(
        ctx,
        f'Write a complete story in INDONESIAN based on: "{premise}". Genre: {genre}. '
        f"Main Character: {gender_text}.\n"
        f"Structure it into exactly {scene_count} distinct scenes/chapters. "
        "Make it cinematic and emotional.",
        "Full story",
    )
    return text.strip()


def _scenes_from(items: list, scene_count: int) -> list[Scene]:
    scenes = []
    for item in items[:scene_count]:
        if not isinstance(item, dict):
            logger.warning("Dropping malformed scene entry: %r", item)
            continue
        scenes.append(Scene(
            visual_prompt=str(item.get("imagePrompt") or item.get("visualPrompt") or ""),
            narration=str(item.get("narration") or ""),
        ))
    return scenes


async def decompose_scenes(
    ctx: StudioContext,
    narrative: str,
    character_desc: str = "",
    scene_count: int = 10,
) -> list[Scene]:
    """Break a narrative into at most ``scene_count`` scenes.

    Malformed model output yields an empty list rather than an error, and
    longer answers are truncated.
    """
    text = await _generate_text(
        ctx,
        f"Analyze this story and break it down into EXACTLY {scene_count} scenes.\n\n"
        "OUTPUT JSON FORMAT: Array of objects with:\n"
        '1. "imagePrompt": A highly detailed CINEMATIC VIDEO PROMPT.\n'
        "   - Language: BAHASA INDONESIA.\n"
        "   - Include camera movements and describe lighting and action vividly.\n"
        f"   - Character context: {character_desc}.\n"
        '2. "narration": Voice over script in Indonesian (Short, emotional).\n\n'
        f"STORY:\n{narrative}",
        "Story scenes",
        _JSON_CONFIG,
    )
    scenes = _scenes_from(parse_json_list(text), scene_count)
    logger.info("Decomposed story into %d/%d scene(s)", len(scenes), scene_count)
    return scenes


async def generate_scene_image(
    ctx: StudioContext,
    prompt: str,
    aspect_ratio: str,
    reference_images: Sequence[str] = (),
) -> str:
    """Generate one image and return it as a PNG data URL.

    Raises:
        SafetyOrEmptyGeneration: If the response carries no image.
    """
    parts = _image_parts(reference_images)
    parts.append({"text": f"Cinematic Shot: {prompt}. High resolution, 8k, photorealistic."})
    config = {"imageConfig": {"aspectRatio": normalize_aspect_ratio(aspect_ratio)}}

    async def op(client: GeminiClient) -> str:
        data = await client.generate_content(ctx.settings.image_model, parts, config)
        payload = GeminiClient.inline_data_of(data)
        if not payload:
            raise SafetyOrEmptyGeneration("Safety filter triggered or no image returned.")
        return f"data:image/png;base64,{payload}"

    return await ctx.call(op, "Scene image")


async def synthesize_speech(ctx: StudioContext, text: str, voice: str) -> str:
    """Synthesize ``text`` and return base64 PCM (16-bit mono, 24 kHz).

    Raises:
        SafetyOrEmptyGeneration: If the response carries no audio.
    """
    config = {
        "responseModalities": ["AUDIO"],
        "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
    }

    async def op(client: GeminiClient) -> str:
        data = await client.generate_content(ctx.settings.tts_model, [{"text": text}], config)
        audio = GeminiClient.inline_data_of(data)
        if not audio:
            raise SafetyOrEmptyGeneration("No audio generated.")
        return audio

    return await ctx.call(op, "Speech")


def decode_pcm(audio_base64: str) -> bytes:
    """Decode a base64 PCM payload into raw bytes.

    Raises:
        MalformedResponse: If the payload is not valid base64.
    """
    try:
        return base64.b64decode(audio_base64)
    except binascii.Error as exc:
        raise MalformedResponse(f"Corrupt audio payload: {exc}") from exc


# ----------------------------------------------------------------------
# UGC flow
# ----------------------------------------------------------------------

async def generate_ugc_script(
    ctx: StudioContext,
    scenario: str,
    language: str,
    character_desc: str,
    product_desc: str,
    use_product: bool,
    shot_type: str,
) -> list[UGCScene]:
    """Write a 6-beat UGC video script; malformed output yields ``[]``."""
    shot_instruction = (
        "EXTREME CLOSE-UP HANDS ONLY. NO FACES." if shot_type == "hand_focus" else shot_type
    )
    text = await _generate_text(
        ctx,
        f"Create exactly {_UGC_SCENE_COUNT} Scenes for a UGC Video.\n"
        f"Context: {scenario}. Char: {character_desc}. "
        f"Product: {product_desc if use_product else 'None'}.\n"
        "Constraint: Each scene is EXACTLY 8 SECONDS.\n"
        f"Shot Type: {shot_instruction}.\n\n"
        "Return JSON Array:\n"
        '- "visual_prompt": Detailed English prompt for video generator (8 sec duration).\n'
        f'- "spoken_script": {language} Voice Over (approx 15 words).',
        "UGC script",
        _JSON_CONFIG,
    )
    scenes = []
    for item in parse_json_list(text)[:_UGC_SCENE_COUNT]:
        if not isinstance(item, dict):
            continue
        scenes.append(UGCScene(
            visual_prompt=str(item.get("visual_prompt") or ""),
            spoken_script=str(item.get("spoken_script") or ""),
        ))
    return scenes


# ----------------------------------------------------------------------
# Lyrics and prompt helpers
# ----------------------------------------------------------------------

async def find_lyrics(ctx: StudioContext, query: str) -> LyricsResult:
    """Search the web for song lyrics, keeping the grounding sources."""
    prompt = (
        f'Find lyrics for: "{query}". Return lyrics with structure tags '
        "[Verse], [Chorus]. No translation."
    )

    async def op(client: GeminiClient) -> LyricsResult:
        data = await client.generate_content(
            ctx.settings.text_model, [{"text": prompt}], tools=[{"googleSearch": {}}]
        )
        return LyricsResult(
            lyrics=GeminiClient.text_of(data) or "Not found",
            sources=GeminiClient.grounding_sources_of(data),
        )

    return await ctx.call(op, "Lyrics search")


async def translate_lyrics(ctx: StudioContext, lyrics: str, language: str) -> list[LyricLine]:
    """Translate lyrics line by line; malformed output yields ``[]``."""
    text = await _generate_text(
        ctx,
        f'Translate to {language}. Return JSON array: [{{original: "line", translated: "line"}}]\n\n'
        f"{lyrics}",
        "Translate lyrics",
        _JSON_CONFIG,
    )
    return [
        LyricLine(original=str(item.get("original", "")), translated=str(item.get("translated", "")))
        for item in parse_json_list(text)
        if isinstance(item, dict)
    ]


async def optimize_video_prompt(ctx: StudioContext, idea: str) -> str:
    """Turn a rough idea into a photorealistic image/video prompt."""
    return await _generate_text(
        ctx,
        f'Optimize this for Grok/Flux image generation (Photorealistic, 8k): "{idea}". '
        "Output prompt only.",
        "Optimize prompt",
    )
