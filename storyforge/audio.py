"""Narration audio assembly: per-scene speech merged into one WAV file."""

from __future__ import annotations

import io
import logging
import wave
from typing import Iterable

from storyforge.context import StudioContext
from storyforge.errors import NoAudioData
from storyforge.generation import decode_pcm, synthesize_speech
from storyforge.models import NarrationAudio

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes, 16-bit
GAP_SECONDS = 0.5


def silence(seconds: float = GAP_SECONDS, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Return ``seconds`` of 16-bit mono silence."""
    return bytes(int(sample_rate * seconds) * SAMPLE_WIDTH * CHANNELS)


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    bits_per_sample: int = 16,
) -> bytes:
    """Wrap raw PCM in a WAV container (no compression)."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(bits_per_sample // 8)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def merge_chunks(chunks: Iterable[bytes], gap: bytes | None = None) -> bytes:
    """Concatenate PCM chunks, following each one with ``gap``."""
    gap = silence() if gap is None else gap
    merged = bytearray()
    for chunk in chunks:
        merged += chunk
        merged += gap
    return bytes(merged)


async def assemble_narration_audio(
    ctx: StudioContext,
    narrations: Iterable[str],
    voice: str,
) -> NarrationAudio:
    """Synthesize every narration in order and merge them into one WAV.

    Empty narrations are skipped. Each chunk is followed by half a second of
    silence, including the last one.

    Raises:
        NoAudioData: If there was no narration text at all.
    """
    chunks: list[bytes] = []
    texts = [text for text in narrations if text]
    for i, text in enumerate(texts, start=1):
        logger.info("Synthesizing narration %d/%d (voice=%s)", i, len(texts), voice)
        audio_b64 = await synthesize_speech(ctx, text, voice)
        chunks.append(decode_pcm(audio_b64))

    if not chunks:
        raise NoAudioData()

    pcm = merge_chunks(chunks)
    logger.info("Merged %d narration chunk(s) into %d bytes of PCM", len(chunks), len(pcm))
    return NarrationAudio(
        wav=pcm_to_wav(pcm),
        filename=f"Full_Story_Narration_{voice}.wav",
        pcm_length=len(pcm),
    )
