"""Tests for storyforge.video: long-running image-to-video job."""

import asyncio

import httpx
import pytest

from fakes import body_of, make_ctx
from storyforge.cancel import CancelToken
from storyforge.errors import JobFailed, OperationCancelled, PollTimeout, VideoDownloadFailed
from storyforge.video import DEFAULT_MOTION_PROMPT, image_to_video

OP_NAME = "models/veo-3.1-fast-generate-preview/operations/op-1"
VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/abc:download?alt=media"


class FakeVeo:
    """Fake provider: the job reports not-done ``pending`` times, then finishes."""

    def __init__(self, pending=2, error=None, video_uri=VIDEO_URI, download_status=200):
        self.pending = pending
        self.error = error
        self.video_uri = video_uri
        self.download_status = download_status
        self.submissions = []
        self.polls = 0
        self.downloads = []
        self.on_poll = None

    def __call__(self, request):
        path = request.url.path
        if path.endswith(":predictLongRunning"):
            self.submissions.append(body_of(request))
            return httpx.Response(200, json={"name": OP_NAME})
        if path.endswith("/files/abc:download"):
            self.downloads.append(request.url)
            return httpx.Response(self.download_status, content=b"mp4-bytes")
        if path.endswith(OP_NAME):
            self.polls += 1
            if self.on_poll:
                self.on_poll(self.polls)
            if self.polls <= self.pending:
                return httpx.Response(200, json={"name": OP_NAME, "done": False})
            if self.error:
                return httpx.Response(200, json={"name": OP_NAME, "done": True, "error": {"message": self.error}})
            response = {}
            if self.video_uri:
                response = {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": self.video_uri}}]}}
            return httpx.Response(200, json={"name": OP_NAME, "done": True, "response": response})
        return httpx.Response(404)


def test_polls_until_done_and_downloads(tmp_path):
    veo = FakeVeo(pending=3)
    ctx, sleeper = make_ctx(veo, keys=("video-key",))

    handle = asyncio.run(image_to_video(
        ctx, "data:image/png;base64,UE5H", "Slow zoom", output_path=tmp_path / "out.mp4"
    ))

    assert veo.polls == 4
    assert sleeper.calls == [5.0] * 4
    assert handle.path.read_bytes() == b"mp4-bytes"
    assert handle.mime_type == "video/mp4"

    download_url = veo.downloads[0]
    assert download_url.params["key"] == "video-key"
    assert download_url.params["alt"] == "media"
    assert "video-key" not in str(handle.path)

    handle.release()
    assert not handle.path.exists()


def test_submission_body_and_defaults():
    veo = FakeVeo(pending=0)
    ctx, _ = make_ctx(veo)

    with asyncio.run(image_to_video(ctx, "QkFSRQ==", "   ")) as handle:
        assert handle.path.exists()
    assert not handle.path.exists()

    instance = veo.submissions[0]["instances"][0]
    assert instance["prompt"] == DEFAULT_MOTION_PROMPT
    assert instance["image"] == {"bytesBase64Encoded": "QkFSRQ==", "mimeType": "image/jpeg"}


def test_mime_type_is_sniffed_from_data_url(tmp_path):
    veo = FakeVeo(pending=0)
    ctx, _ = make_ctx(veo)

    asyncio.run(image_to_video(ctx, "data:image/webp;base64,V0VCUA==", "pan", output_path=tmp_path / "v.mp4"))
    assert veo.submissions[0]["instances"][0]["image"]["mimeType"] == "image/webp"


def test_embedded_error_raises_job_failed_without_download():
    veo = FakeVeo(pending=1, error="Video generation blocked by safety filter")
    ctx, _ = make_ctx(veo, keys=("k1", "k2"))

    with pytest.raises(JobFailed, match="blocked by safety filter"):
        asyncio.run(image_to_video(ctx, "QQ==", "move"))

    assert veo.downloads == []
    assert len(veo.submissions) == 1


def test_done_without_uri_fails():
    veo = FakeVeo(pending=0, video_uri=None)
    ctx, _ = make_ctx(veo)

    with pytest.raises(JobFailed, match="No video URI"):
        asyncio.run(image_to_video(ctx, "QQ==", "move"))
    assert veo.downloads == []


def test_download_failure(tmp_path):
    veo = FakeVeo(pending=0, download_status=403)
    ctx, _ = make_ctx(veo)
    target = tmp_path / "v.mp4"

    with pytest.raises(VideoDownloadFailed) as info:
        asyncio.run(image_to_video(ctx, "QQ==", "move", output_path=target))

    assert info.value.status_code == 403
    assert not target.exists()


def test_max_wait_raises_poll_timeout():
    veo = FakeVeo(pending=100)
    ctx, sleeper = make_ctx(veo)

    with pytest.raises(PollTimeout):
        asyncio.run(image_to_video(ctx, "QQ==", "move", max_wait=15))

    assert veo.polls == 3
    assert sleeper.calls == [5.0] * 3
    assert veo.downloads == []


def test_cancel_stops_polling(caplog):
    veo = FakeVeo(pending=100)
    ctx, _ = make_ctx(veo)
    token = CancelToken()
    veo.on_poll = lambda n: token.cancel() if n == 2 else None

    with pytest.raises(OperationCancelled):
        asyncio.run(image_to_video(ctx, "QQ==", "move", cancel=token))

    assert veo.polls == 2
    assert veo.downloads == []
    assert any("cancelled after 2 poll(s)" in r.getMessage() for r in caplog.records)
