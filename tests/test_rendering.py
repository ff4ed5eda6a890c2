from datetime import datetime, timezone

import httpx
import pytest

from core.entities import ScriptPayload
from core.errors import RenderError, UndersizedOutputError
from rendering import speech as speech_module
from rendering.downloader import fetch_and_validate, validate_min_size
from rendering.song_client import HttpSongRenderer
from rendering.speech import EdgeSpeechSynthesizer
from services.retry import RetryPolicy

PAYLOAD = ScriptPayload(
    title="Rates Go Up",
    body="[Verse 1]\n...",
    style="folk",
    style_tags="acoustic folk",
    story_headline="Central bank hikes",
    story_angle="Mortgages hurt",
    generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
)


def fast_policy(no_sleep, attempts=2):
    return RetryPolicy(max_attempts=attempts, base_delay=0.0, sleep=no_sleep)


def test_validate_min_size_deletes_small_files(tmp_path):
    small = tmp_path / "small.mp3"
    small.write_bytes(b"x" * 10)

    with pytest.raises(UndersizedOutputError):
        validate_min_size(small, 100)
    assert not small.exists()


def test_validate_min_size_missing_file(tmp_path):
    with pytest.raises(RenderError):
        validate_min_size(tmp_path / "nope.mp3", 1)


@pytest.mark.asyncio
async def test_fetch_and_validate_writes_file(tmp_path, no_sleep):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"a" * 2048))
    out = tmp_path / "songs" / "ok.mp3"

    size = await fetch_and_validate(
        "https://cdn.example/ok.mp3", str(out),
        min_bytes=1024, retry_policy=fast_policy(no_sleep), transport=transport,
    )

    assert size == 2048
    assert out.read_bytes() == b"a" * 2048


@pytest.mark.asyncio
async def test_fetch_and_validate_rejects_undersized(tmp_path, no_sleep):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"tiny"))
    out = tmp_path / "tiny.mp3"

    with pytest.raises(UndersizedOutputError):
        await fetch_and_validate(
            "https://cdn.example/tiny.mp3", str(out),
            min_bytes=1024, retry_policy=fast_policy(no_sleep), transport=transport,
        )
    assert not out.exists()


@pytest.mark.asyncio
async def test_fetch_and_validate_http_failure(tmp_path, no_sleep):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    out = tmp_path / "fail.mp3"
    with pytest.raises(RenderError):
        await fetch_and_validate(
            "https://cdn.example/fail.mp3", str(out),
            min_bytes=1, retry_policy=fast_policy(no_sleep), transport=httpx.MockTransport(handler),
        )
    assert len(calls) == 2
    assert not out.exists()


def song_backend(clip_states, submit_status=200):
    seen = {"polls": 0, "submitted": None}
    states = list(clip_states)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/api/generate":
            seen["submitted"] = request
            if submit_status != 200:
                return httpx.Response(submit_status, json={"error": "nope"})
            return httpx.Response(200, json={"id": "clip-1"})

        if request.method == "GET" and request.url.path == "/api/clips/clip-1":
            state = states[min(seen["polls"], len(states) - 1)]
            seen["polls"] += 1
            return httpx.Response(200, json=state)

        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


@pytest.mark.asyncio
async def test_song_renderer_polls_until_complete(no_sleep):
    transport, seen = song_backend([
        {"status": "queued"},
        {"status": "streaming"},
        {"status": "complete", "audio_url": "https://cdn.example/clip-1.mp3"},
    ])
    renderer = HttpSongRenderer(
        "https://songs.example", api_key="secret",
        poll_interval=0, retry_policy=fast_policy(no_sleep), transport=transport,
    )

    try:
        ref = await renderer.render(PAYLOAD)
    finally:
        await renderer.aclose()

    assert ref.url == "https://cdn.example/clip-1.mp3"
    assert ref.remote_id == "clip-1"
    assert seen["polls"] == 3
    assert seen["submitted"].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_song_renderer_reports_failed_clip(no_sleep):
    transport, _ = song_backend([{"status": "failed", "error": "moderation"}])
    renderer = HttpSongRenderer(
        "https://songs.example", poll_interval=0,
        retry_policy=fast_policy(no_sleep), transport=transport,
    )

    with pytest.raises(RenderError, match="moderation"):
        await renderer.render(PAYLOAD)
    await renderer.aclose()


@pytest.mark.asyncio
async def test_song_renderer_rejection_is_not_retried(no_sleep):
    transport, seen = song_backend([], submit_status=400)
    renderer = HttpSongRenderer(
        "https://songs.example", poll_interval=0,
        retry_policy=fast_policy(no_sleep, attempts=3), transport=transport,
    )

    with pytest.raises(RenderError, match="HTTP 400"):
        await renderer.render(PAYLOAD)
    assert seen["polls"] == 0
    await renderer.aclose()


@pytest.mark.asyncio
async def test_song_renderer_times_out(no_sleep):
    transport, _ = song_backend([{"status": "queued"}])
    renderer = HttpSongRenderer(
        "https://songs.example", poll_interval=0, render_timeout=0,
        retry_policy=fast_policy(no_sleep), transport=transport,
    )

    with pytest.raises(RenderError, match="timed out"):
        await renderer.render(PAYLOAD)
    await renderer.aclose()


class FakeCommunicate:
    payload = b"v" * 4096

    def __init__(self, text, voice):
        self.text = text
        self.voice = voice

    async def save(self, path):
        with open(path, "wb") as fh:
            fh.write(self.payload)


@pytest.mark.asyncio
async def test_speech_synthesizer_writes_validated_file(tmp_path, monkeypatch, no_sleep):
    monkeypatch.setattr(speech_module.edge_tts, "Communicate", FakeCommunicate)
    synth = EdgeSpeechSynthesizer(min_bytes=1024, retry_policy=fast_policy(no_sleep))

    path = await synth.synthesize_speech("Hello listeners", str(tmp_path / "news" / "a.mp3"))

    assert path.endswith("a.mp3")
    assert (tmp_path / "news" / "a.mp3").stat().st_size == 4096


@pytest.mark.asyncio
async def test_speech_synthesizer_rejects_undersized(tmp_path, monkeypatch, no_sleep):
    class Tiny(FakeCommunicate):
        payload = b"v"

    monkeypatch.setattr(speech_module.edge_tts, "Communicate", Tiny)
    synth = EdgeSpeechSynthesizer(min_bytes=1024, retry_policy=fast_policy(no_sleep))

    with pytest.raises(UndersizedOutputError):
        await synth.synthesize_speech("Hi", str(tmp_path / "b.mp3"))
    assert not (tmp_path / "b.mp3").exists()
