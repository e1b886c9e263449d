import asyncio
import time
from typing import Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from soundrelay.common.cache import StreamCache
from soundrelay.common.errors import RateLimited, ResolutionFailure
from soundrelay.common.models import ResolvedStream, SourceKind, Track
from soundrelay.player.api_client import ProxyClient
from soundrelay.player.audio import AudioEvent
from soundrelay.player.controller import (
    PlayerController,
    PlayerEventKind,
    PlayerSession,
    PlayerState,
)
from soundrelay.player.library import LibraryStore
from soundrelay.player.queue import PlaybackQueue, RepeatMode
from soundrelay.player.stream_client import ClientStreamResolver

A = Track(id="a", title="Around the World", artist="Daft Punk")
B = Track(id="b", title="Da Funk", artist="Daft Punk")
C = Track(id="c", title="Aerodynamic", artist="Daft Punk")


def _stream(url: str, kind: SourceKind = SourceKind.PRIMARY, message: Optional[str] = None) -> ResolvedStream:
    return ResolvedStream(
        stream_url=url,
        source_kind=kind,
        expires_at=time.time() + 3600,
        duration_seconds=200,
        message=message,
    )


class FakeAudio:
    def __init__(self) -> None:
        self.current_time = 0.0
        self.duration = 0.0
        self.loaded: list[str] = []
        self.plays = 0
        self.paused = 0
        self.seeks: list[float] = []
        self.volume: Optional[float] = None

    async def load(self, url: str) -> None:
        self.loaded.append(url)

    async def play(self) -> None:
        self.plays += 1

    def pause(self) -> None:
        self.paused += 1

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)

    def set_volume(self, volume: float) -> None:
        self.volume = volume


class StubResolver:
    def __init__(self, outcomes: dict) -> None:
        self.outcomes = outcomes
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.invalidated: list[str] = []

    async def resolve(self, track: Track) -> ResolvedStream:
        self.calls.append(track.id)
        gate = self.gates.get(track.id)
        if gate is not None:
            await gate.wait()
        outcome = self.outcomes[track.id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def invalidate(self, track: Track) -> None:
        self.invalidated.append(track.id)


def _controller(outcomes: dict, *tracks: Track, lyrics=None):
    audio = FakeAudio()
    resolver = StubResolver(outcomes)
    library = LibraryStore()
    controller = PlayerController(resolver, PlaybackQueue(tracks), audio, library=library, lyrics=lyrics)
    events = []
    controller.subscribe(events.append)
    return controller, resolver, audio, events


def _notices(events) -> list[tuple[str, str]]:
    return [(e.level, e.message) for e in events if e.kind is PlayerEventKind.NOTICE]


@pytest.mark.anyio
async def test_play_track_goes_loading_then_playing() -> None:
    controller, _, audio, events = _controller({"a": _stream("https://a")})

    assert await controller.play_track(A) is True

    states = [e.state for e in events if e.kind is PlayerEventKind.STATE]
    assert states == [PlayerState.LOADING, PlayerState.PLAYING]
    assert audio.loaded == ["https://a"]
    assert audio.plays == 1
    assert controller.current_track == A
    assert controller.current_track.resolved_stream.stream_url == "https://a"
    assert controller.duration == 200
    assert controller.library.recently_played() == [A]


@pytest.mark.anyio
async def test_preview_stream_warns_user() -> None:
    stream = _stream("https://preview", SourceKind.FALLBACK, "rate limit exceeded - playing 30-second preview only")
    controller, _, _, events = _controller({"a": stream})

    await controller.play_track(A)

    assert ("warning", "rate limit exceeded - playing 30-second preview only") in _notices(events)


@pytest.mark.anyio
async def test_stale_resolution_is_discarded() -> None:
    controller, resolver, audio, _ = _controller({"a": _stream("https://a"), "b": _stream("https://b")})
    resolver.gates["a"] = asyncio.Event()

    slow = asyncio.create_task(controller.play_track(A))
    await asyncio.sleep(0)
    assert controller.state is PlayerState.LOADING

    assert await controller.play_track(B) is True
    resolver.gates["a"].set()
    assert await slow is False

    assert controller.current_track == B
    assert controller.state is PlayerState.PLAYING
    assert audio.loaded == ["https://b"]


@pytest.mark.anyio
async def test_unplayable_track_auto_advances() -> None:
    controller, resolver, audio, events = _controller(
        {"a": ResolutionFailure(track_id="a"), "b": _stream("https://b")}
    )

    await controller.play_tracks([A, B])

    assert resolver.calls == ["a", "b"]
    assert controller.current_track == B
    assert controller.state is PlayerState.PLAYING
    assert ("error", "Unable to play Around the World: Unable to play this track") in _notices(events)
    idle = [e for e in events if e.kind is PlayerEventKind.STATE and e.state is PlayerState.IDLE]
    assert len(idle) == 1


@pytest.mark.anyio
async def test_skipping_stops_once_every_track_failed() -> None:
    failure = ResolutionFailure()
    controller, resolver, audio, events = _controller({"a": failure, "b": failure, "c": failure})
    controller.queue.repeat_mode = RepeatMode.ALL

    assert await controller.play_tracks([A, B, C]) is False

    assert resolver.calls == ["a", "b", "c"]
    assert controller.state is PlayerState.IDLE
    assert audio.loaded == []
    assert ("warning", "No playable tracks left in the queue") in _notices(events)


@pytest.mark.anyio
async def test_rate_limited_failure_is_a_warning() -> None:
    controller, _, _, events = _controller({"a": RateLimited(track_id="a")})

    await controller.select_track(A)

    assert ("warning", "Unable to play Around the World: rate limit exceeded") in _notices(events)
    assert controller.state is PlayerState.IDLE


@pytest.mark.anyio
async def test_toggle_play_pause() -> None:
    controller, _, audio, events = _controller({"a": _stream("https://a")})

    assert await controller.toggle_play_pause() is PlayerState.IDLE
    assert ("warning", "Please select a song to play") in _notices(events)

    await controller.select_track(A)
    assert await controller.toggle_play_pause() is PlayerState.PAUSED
    assert audio.paused == 1
    assert await controller.toggle_play_pause() is PlayerState.PLAYING
    assert audio.plays == 2


@pytest.mark.anyio
async def test_repeat_one_restarts_without_resolving() -> None:
    controller, resolver, audio, _ = _controller({"a": _stream("https://a")})
    await controller.select_track(A)
    controller.queue.repeat_mode = RepeatMode.ONE

    await controller.handle_audio_event(AudioEvent.ENDED)

    assert audio.seeks == [0]
    assert audio.plays == 2
    assert resolver.calls == ["a"]
    assert controller.state is PlayerState.PLAYING


@pytest.mark.anyio
async def test_ended_plays_next_track() -> None:
    controller, _, audio, _ = _controller({"a": _stream("https://a"), "b": _stream("https://b")})
    await controller.play_tracks([A, B])

    await controller.on_ended()

    assert controller.current_track == B
    assert audio.loaded == ["https://a", "https://b"]


@pytest.mark.anyio
async def test_end_of_queue_pauses_and_rewinds() -> None:
    controller, resolver, audio, events = _controller({"a": _stream("https://a")})
    await controller.play_tracks([A])

    await controller.on_ended()

    assert controller.state is PlayerState.PAUSED
    assert audio.paused == 1
    assert audio.seeks == [0]
    assert resolver.calls == ["a"]
    assert ("info", "Reached the end of the queue") in _notices(events)


@pytest.mark.anyio
async def test_previous_restarts_after_three_seconds() -> None:
    controller, resolver, audio, _ = _controller({"a": _stream("https://a"), "b": _stream("https://b")})
    await controller.play_tracks([A, B], 1)

    audio.current_time = 10
    assert await controller.previous() is True
    assert audio.seeks == [0]
    assert controller.current_track == B

    audio.current_time = 1
    await controller.previous()
    assert controller.current_track == A
    assert resolver.calls == ["b", "a"]


@pytest.mark.anyio
async def test_audio_error_invalidates_and_skips() -> None:
    controller, resolver, _, _ = _controller({"a": _stream("https://a"), "b": _stream("https://b")})
    await controller.play_tracks([A, B])

    await controller.handle_audio_event(AudioEvent.ERROR)

    assert resolver.invalidated == ["a"]
    assert controller.current_track == B


@pytest.mark.anyio
async def test_long_unplayable_queue_settles_idle() -> None:
    tracks = [Track(id=f"t{i}", title=f"Broken {i}", artist="Nobody") for i in range(600)]
    controller, resolver, audio, events = _controller({t.id: ResolutionFailure() for t in tracks})

    assert await controller.play_tracks(tracks) is False

    assert len(resolver.calls) == 600
    assert controller.state is PlayerState.IDLE
    assert audio.loaded == []
    assert ("warning", "No playable tracks left in the queue") in _notices(events)


@pytest.mark.anyio
async def test_audio_error_forces_fresh_url_on_replay() -> None:
    served = []

    async def resolve_stream(track: Track) -> ResolvedStream:
        served.append(track.id)
        stream = _stream(f"https://url/{track.id}/{len(served)}")
        return stream.model_copy(update={"video_id": f"vid-{track.id}"})

    api = AsyncMock()
    api.resolve_stream.side_effect = resolve_stream
    resolver = ClientStreamResolver(api, StreamCache("session", 82800, 1800))
    audio = FakeAudio()
    controller = PlayerController(resolver, PlaybackQueue([A, B]), audio, library=LibraryStore())
    await controller.play_tracks([A, B])

    await controller.handle_audio_event(AudioEvent.ERROR)
    assert controller.current_track.id == "b"

    assert await controller.jump_to(0) is True

    assert served == ["a", "b", "a"]
    assert audio.loaded[-1] == "https://url/a/3"
    assert audio.loaded[-1] != audio.loaded[0]


@pytest.mark.anyio
async def test_lyrics_are_delivered_in_background() -> None:
    async def lyrics(track: Track) -> dict:
        return {"title": track.title, "previewLines": ["line"]}

    controller, _, _, events = _controller({"a": _stream("https://a")}, lyrics=lyrics)
    await controller.play_track(A)
    await controller.wait_background()

    delivered = [e.payload for e in events if e.kind is PlayerEventKind.LYRICS]
    assert delivered == [{"title": "Around the World", "previewLines": ["line"]}]


@pytest.mark.anyio
async def test_lyrics_failure_never_affects_playback() -> None:
    async def lyrics(track: Track) -> dict:
        raise RuntimeError("genius down")

    controller, _, _, events = _controller({"a": _stream("https://a")}, lyrics=lyrics)
    assert await controller.play_track(A) is True
    await controller.wait_background()

    assert controller.state is PlayerState.PLAYING
    assert not [e for e in events if e.kind is PlayerEventKind.LYRICS]


@pytest.mark.anyio
async def test_broken_listener_does_not_stop_playback() -> None:
    controller, _, audio, _ = _controller({"a": _stream("https://a")})

    def broken(event) -> None:
        raise ValueError("render failed")

    controller.subscribe(broken)
    assert await controller.play_track(A) is True
    assert audio.plays == 1


@pytest.mark.anyio
async def test_seek_volume_and_mute() -> None:
    controller, _, audio, _ = _controller({"a": _stream("https://a")})
    assert audio.volume == 0.7

    assert controller.seek(50) == 0.0
    await controller.play_track(A)
    assert controller.seek(500) == 200
    assert controller.seek(-4) == 0

    assert controller.set_volume(1.5) == 1.0
    assert controller.library.volume() == 1.0
    assert controller.toggle_mute() is True
    assert audio.volume == 0.0
    assert controller.toggle_mute() is False
    assert audio.volume == 1.0


@pytest.mark.anyio
async def test_queue_controls_emit_notices() -> None:
    controller, _, _, events = _controller({"b": _stream("https://b")})

    assert controller.add_to_queue(A) == 0
    assert controller.add_to_queue(B) == 1
    assert await controller.jump_to(1) is True
    assert controller.current_track == B
    assert await controller.jump_to(7) is False
    assert controller.toggle_shuffle() is True
    assert controller.cycle_repeat() is RepeatMode.ALL

    messages = [m for _, m in _notices(events)]
    assert "Added Around the World to the queue" in messages
    assert "Shuffle enabled" in messages
    assert "Repeat all enabled" in messages


@pytest.mark.anyio
async def test_session_plays_through_proxy() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.url.path == "/stream/resolve":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "cached": False,
                    "fallback": False,
                    "data": {
                        "streamUrl": "https://rr1.googlevideo.com/a",
                        "source": "primary",
                        "expiresAt": time.time() + 86400,
                        "title": "Around the World",
                        "artist": "Daft Punk",
                        "duration": 429,
                        "videoId": "dwDns8x3Jb4",
                    },
                },
            )
        if request.url.path == "/lyrics":
            return httpx.Response(200, json={"success": True, "data": {"title": "Around the World"}})
        return httpx.Response(404, json={"success": False, "error": "Endpoint not found"})

    audio = FakeAudio()
    api = ProxyClient("http://proxy.test", transport=httpx.MockTransport(handler))
    session = PlayerSession.create(audio, api=api)

    assert await session.start() is True
    assert await session.controller.select_track(A) is True
    assert audio.loaded == ["https://rr1.googlevideo.com/a"]
    assert session.controller.current_track.video_id == "dwDns8x3Jb4"
    assert session.library.recently_played() == [A]
    await session.close()


@pytest.mark.anyio
async def test_session_start_offline_notice() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    session = PlayerSession.create(FakeAudio(), api=ProxyClient("http://proxy.test", transport=httpx.MockTransport(handler)))
    events = []
    session.controller.subscribe(events.append)

    assert await session.start() is False
    assert session.api.connected is False
    assert _notices(events) == [("warning", "Stream proxy unreachable - browsing is offline")]
    await session.close()
