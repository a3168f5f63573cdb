"""Tests for storyforge.generation: single-call operations."""

import asyncio
import json

import httpx
import pytest

from fakes import (
    body_of,
    empty_response,
    inline_response,
    make_ctx,
    model_of,
    prompt_of,
    text_response,
)
from storyforge.errors import CredentialExhausted, MalformedResponse, SafetyOrEmptyGeneration
from storyforge.generation import (
    decode_pcm,
    decompose_scenes,
    expand_narrative,
    find_lyrics,
    generate_ideas,
    generate_scene_image,
    generate_ugc_script,
    normalize_aspect_ratio,
    optimize_video_prompt,
    polish_story,
    split_data_url,
    synthesize_speech,
    translate_lyrics,
)
from storyforge.models import Scene


def _scenes_json(n):
    return json.dumps([{"imagePrompt": f"prompt {i}", "narration": f"line {i}"} for i in range(n)])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestSplitDataUrl:
    def test_png(self):
        assert split_data_url("data:image/png;base64,AAAA") == ("image/png", "AAAA")

    def test_webp(self):
        assert split_data_url("data:image/webp;base64,BBBB") == ("image/webp", "BBBB")

    def test_bare_base64_defaults_to_jpeg(self):
        assert split_data_url("CCCC") == ("image/jpeg", "CCCC")


def test_normalize_aspect_ratio():
    assert normalize_aspect_ratio("16:9") == "16:9"
    assert normalize_aspect_ratio("9:16") == "9:16"
    assert normalize_aspect_ratio("1:1") == "9:16"


# ---------------------------------------------------------------------------
# Text operations
# ---------------------------------------------------------------------------

def test_generate_ideas():
    def handler(request):
        assert body_of(request)["generationConfig"] == {"responseMimeType": "application/json"}
        return httpx.Response(200, json=text_response('["A lost key", "A talking cat"]'))

    ctx, _ = make_ctx(handler)
    ideas = asyncio.run(generate_ideas(ctx, "Fantasy"))

    assert [i.text for i in ideas] == ["A lost key", "A talking cat"]
    assert ideas[0].id.endswith("-0")
    assert ideas[1].id.endswith("-1")


def test_expand_narrative_prompt_and_strip():
    seen = {}

    def handler(request):
        seen["prompt"] = prompt_of(request)
        seen["model"] = model_of(request)
        return httpx.Response(200, json=text_response("  Once upon a time.  \n"))

    ctx, _ = make_ctx(handler)
    story = asyncio.run(expand_narrative(ctx, "A dragon egg", "Fantasy", "female", 4))

    assert story == "Once upon a time."
    assert seen["model"] == "gemini-2.5-flash"
    assert "exactly 4 distinct scenes" in seen["prompt"]
    assert "Perempuan" in seen["prompt"]


def test_expand_narrative_failure_propagates():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "invalid argument"}})

    ctx, _ = make_ctx(handler)
    with pytest.raises(CredentialExhausted):
        asyncio.run(expand_narrative(ctx, "p", "g", "male", 3))


def test_polish_story_falls_back_to_input():
    ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response("")))
    assert asyncio.run(polish_story(ctx, "raw text")) == "raw text"


class TestDecomposeScenes:
    def test_truncates_to_requested_count(self):
        ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response(_scenes_json(5))))
        scenes = asyncio.run(decompose_scenes(ctx, "story", "hero", 3))
        assert scenes == [Scene(f"prompt {i}", f"line {i}") for i in range(3)]

    def test_short_answer_is_kept(self):
        ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response(_scenes_json(2))))
        assert len(asyncio.run(decompose_scenes(ctx, "story", "", 10))) == 2

    def test_malformed_json_yields_empty(self):
        ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response('[{"imagePrompt": ')))
        assert asyncio.run(decompose_scenes(ctx, "story", "", 3)) == []

    def test_missing_fields_default_and_junk_dropped(self):
        payload = '[{"imagePrompt": "p"}, "junk", {"narration": "n"}]'
        ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response(payload)))
        scenes = asyncio.run(decompose_scenes(ctx, "story", "", 3))
        assert scenes == [Scene("p", ""), Scene("", "n")]


def test_ugc_script_is_capped_at_six():
    items = [{"visual_prompt": f"v{i}", "spoken_script": f"s{i}"} for i in range(8)]
    seen = {}

    def handler(request):
        seen["prompt"] = prompt_of(request)
        return httpx.Response(200, json=text_response(json.dumps(items)))

    ctx, _ = make_ctx(handler)
    scenes = asyncio.run(generate_ugc_script(ctx, "skincare", "Indonesian", "girl", "serum", False, "hand_focus"))

    assert len(scenes) == 6
    assert scenes[0].visual_prompt == "v0"
    assert "Product: None" in seen["prompt"]
    assert "EXTREME CLOSE-UP HANDS ONLY" in seen["prompt"]


def test_find_lyrics_uses_search_grounding():
    def handler(request):
        assert body_of(request)["tools"] == [{"googleSearch": {}}]
        data = text_response("[Verse] la la")
        data["candidates"][0]["groundingMetadata"] = {
            "groundingChunks": [{"web": {"title": "Site", "uri": "https://s"}}]
        }
        return httpx.Response(200, json=data)

    ctx, _ = make_ctx(handler)
    result = asyncio.run(find_lyrics(ctx, "song"))
    assert result.lyrics == "[Verse] la la"
    assert result.sources[0].uri == "https://s"


def test_translate_lyrics():
    payload = '[{"original": "hello", "translated": "halo"}]'
    ctx, _ = make_ctx(lambda r: httpx.Response(200, json=text_response(payload)))
    lines = asyncio.run(translate_lyrics(ctx, "hello", "Indonesian"))
    assert [(l.original, l.translated) for l in lines] == [("hello", "halo")]


# ---------------------------------------------------------------------------
# Media operations
# ---------------------------------------------------------------------------

def test_scene_image_sends_references_and_ratio():
    seen = {}

    def handler(request):
        seen["model"] = model_of(request)
        seen["body"] = body_of(request)
        return httpx.Response(200, json=inline_response(b"png-bytes"))

    ctx, _ = make_ctx(handler)
    refs = ["data:image/png;base64,Q0hBUg==", "", "QU5JTUFM"]
    data_url = asyncio.run(generate_scene_image(ctx, "a castle", "16:9", refs))

    assert data_url.startswith("data:image/png;base64,")
    assert seen["model"] == "gemini-2.5-flash-image"
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[0] == {"inlineData": {"mimeType": "image/png", "data": "Q0hBUg=="}}
    assert parts[1] == {"inlineData": {"mimeType": "image/jpeg", "data": "QU5JTUFM"}}
    assert "a castle" in parts[2]["text"]
    assert seen["body"]["generationConfig"] == {"imageConfig": {"aspectRatio": "16:9"}}


def test_scene_image_without_payload_rotates_through_every_key():
    calls = []

    def handler(request):
        calls.append(request.headers["x-goog-api-key"])
        return httpx.Response(200, json=empty_response())

    ctx, sleeper = make_ctx(handler, keys=("k1", "k2", "k3"))
    with pytest.raises(CredentialExhausted) as info:
        asyncio.run(generate_scene_image(ctx, "p", "9:16"))

    assert calls == ["k1", "k2", "k3"]
    assert isinstance(info.value.last_error, SafetyOrEmptyGeneration)
    assert sleeper.calls == []


def test_scene_image_without_payload_falls_through_to_next_key():
    def handler(request):
        if request.headers["x-goog-api-key"] == "k1":
            return httpx.Response(200, json=empty_response())
        return httpx.Response(200, json=inline_response(b"png"))

    ctx, _ = make_ctx(handler, keys=("k1", "k2"))
    assert asyncio.run(generate_scene_image(ctx, "p", "9:16")).startswith("data:image/png;base64,")


def test_speech_without_audio_exhausts_credentials():
    ctx, _ = make_ctx(lambda r: httpx.Response(200, json=empty_response()), keys=("k1", "k2"))
    with pytest.raises(CredentialExhausted) as info:
        asyncio.run(synthesize_speech(ctx, "halo", "Kore"))
    assert "No audio generated" in str(info.value.last_error)


def test_decode_pcm_rejects_corrupt_payload():
    with pytest.raises(MalformedResponse):
        decode_pcm("abc")
    assert decode_pcm("AAE=") == b"\x00\x01"


def test_synthesize_speech():
    seen = {}

    def handler(request):
        seen["model"] = model_of(request)
        seen["config"] = body_of(request)["generationConfig"]
        return httpx.Response(200, json=inline_response(b"\x00\x01", mime="audio/L16;rate=24000"))

    ctx, _ = make_ctx(handler)
    audio = asyncio.run(synthesize_speech(ctx, "halo", "Puck"))

    assert audio == "AAE="
    assert seen["model"] == "gemini-2.5-flash-preview-tts"
    assert seen["config"]["responseModalities"] == ["AUDIO"]
    assert seen["config"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Puck"


def test_rotation_moves_to_next_key_on_rejection():
    keys_seen = []

    def handler(request):
        key = request.headers["x-goog-api-key"]
        keys_seen.append(key)
        if key == "bad":
            return httpx.Response(400, json={"error": {"message": "API key not valid."}})
        return httpx.Response(200, json=text_response("fine"))

    ctx, _ = make_ctx(handler, keys=("bad", "good"))
    assert asyncio.run(polish_story(ctx, "x")) == "fine"
    assert keys_seen == ["bad", "good"]


def test_optimize_video_prompt():
    seen = {}

    def handler(request):
        seen["prompt"] = prompt_of(request)
        return httpx.Response(200, json=text_response("A neon city at dusk, slow dolly in"))

    ctx, _ = make_ctx(handler)
    result = asyncio.run(optimize_video_prompt(ctx, "city at night"))

    assert result == "A neon city at dusk, slow dolly in"
    assert '"city at night"' in seen["prompt"]
