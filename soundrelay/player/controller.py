"""
Player controller: drives the audio output from the queue and the stream
resolver, and tells listeners what to render.

States: IDLE -> LOADING -> PLAYING <-> PAUSED, with LOADING -> IDLE when a
track cannot be resolved. Everything runs on one event loop; resolving a
stream is the only long suspension point. Each ``play`` bumps a generation
counter and a resolution that comes back under an older generation is
dropped, so rapid skipping never lets a slow result overwrite a newer one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

from soundrelay.common.errors import RateLimited, ResolutionFailure
from soundrelay.common.logging_utils import get_logger, with_log_context
from soundrelay.common.models import ResolvedStream, Track
from soundrelay.player.api_client import ProxyClient
from soundrelay.player.audio import AudioEvent, AudioOutput, EffectsSink
from soundrelay.player.equalizer import Equalizer
from soundrelay.player.library import LibraryStore
from soundrelay.player.queue import PlaybackQueue, RepeatMode, StepKind
from soundrelay.player.stream_client import ClientStreamResolver

log = get_logger("player.controller")

PREVIEW_NOTICE = "Playing 30-second preview"
_NOTICE_LEVELS = {"warning": logging.WARNING, "error": logging.ERROR}


class PlayerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class PlayerEventKind(str, Enum):
    STATE = "state"
    NOTICE = "notice"
    PROGRESS = "progress"
    LYRICS = "lyrics"


@dataclass(frozen=True)
class PlayerEvent:
    kind: PlayerEventKind
    state: PlayerState
    track: Optional[Track] = None
    message: Optional[str] = None
    level: str = "info"
    position: float = 0.0
    duration: float = 0.0
    payload: Any = None


Listener = Callable[[PlayerEvent], None]
LyricsLookup = Callable[[Track], Awaitable[Optional[dict]]]


class StreamSource(Protocol):
    async def resolve(self, track: Track) -> ResolvedStream: ...


class PlayerController:
    def __init__(
        self,
        resolver: StreamSource,
        queue: PlaybackQueue,
        audio: AudioOutput,
        *,
        library: Optional[LibraryStore] = None,
        lyrics: Optional[LyricsLookup] = None,
    ):
        self.resolver = resolver
        self.queue = queue
        self.audio = audio
        self.library = library
        self.lyrics = lyrics

        self.state = PlayerState.IDLE
        self.current_track: Optional[Track] = None
        self.position = 0.0
        self.duration = 0.0
        self.volume = library.volume() if library is not None else 0.7
        self.muted = False

        self._generation = 0
        self._consecutive_failures = 0
        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task] = set()

        self.audio.set_volume(self.volume)

    # ── Listeners ───────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: PlayerEventKind, **fields: Any) -> None:
        event = PlayerEvent(
            kind=kind,
            state=self.state,
            track=self.current_track,
            position=self.position,
            duration=self.duration,
            **fields,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # A broken view must not take playback down with it
                log.exception(f"Player listener failed on {kind.value} event")

    def _set_state(self, state: PlayerState) -> None:
        self.state = state
        self._emit(PlayerEventKind.STATE)

    def notify(self, message: str, level: str = "info") -> None:
        log.log(_NOTICE_LEVELS.get(level, logging.INFO), message)
        self._emit(PlayerEventKind.NOTICE, message=message, level=level)

    # ── Playing tracks ──────────────────────────────────────────────

    @property
    def generation(self) -> int:
        return self._generation

    async def play_track(self, track: Track) -> bool:
        """Resolve and start ``track``. Returns True once audio is playing."""
        self._consecutive_failures = 0
        return await self._play(track)

    async def select_track(self, track: Track) -> bool:
        """User picked a track from a list outside the live queue."""
        if self.current_track is None or self.current_track != track:
            self.queue.replace_and_play(track)
        return await self.play_track(track)

    async def play_tracks(self, tracks: Iterable[Track], start_index: int = 0) -> bool:
        """Replace the queue with ``tracks`` (a playlist, chart, ...) and play."""
        track = self.queue.load(tracks, start_index)
        if track is None:
            self.notify("Nothing to play", "warning")
            return False
        return await self.play_track(track)

    async def _play(self, track: Track) -> bool:
        """Play ``track``, skipping ahead past unplayable entries.

        Returns True once audio is playing, False when everything failed or a
        newer play request took over.
        """
        current: Optional[Track] = track
        while current is not None:
            self._generation += 1
            outcome = await self._start(current, self._generation)
            if isinstance(outcome, bool):
                return outcome
            current = self._skip_unplayable(current, outcome)
        return False

    async def _start(self, track: Track, generation: int) -> Union[bool, ResolutionFailure]:
        """One attempt at ``track``: True playing, False superseded, else the failure."""
        glog = with_log_context(log, generation=generation)

        self.current_track = track
        self.position = 0.0
        self.duration = float(track.duration_seconds or 0)
        self._set_state(PlayerState.LOADING)

        try:
            stream = await self.resolver.resolve(track)
        except ResolutionFailure as e:
            if generation != self._generation:
                glog.debug(f"Ignoring failure for superseded track {track.id}")
                return False
            return e

        if generation != self._generation:
            glog.debug(f"Discarding stale stream for {track.id}")
            return False

        try:
            await self.audio.load(stream.stream_url)
            if generation != self._generation:
                return False
            await self.audio.play()
        except Exception as e:
            if generation != self._generation:
                return False
            glog.warning(f"Audio output refused {track.id}: {e}")
            return ResolutionFailure("Playback failed", track_id=track.id)

        if generation != self._generation:
            return False

        self._consecutive_failures = 0
        self.current_track = track.with_stream(stream)
        if stream.duration_seconds:
            self.duration = float(stream.duration_seconds)
        self._set_state(PlayerState.PLAYING)
        glog.info(f"Playing {track.title!r} by {track.artist!r} (source={stream.source_kind.value})")

        if stream.is_preview:
            self.notify(stream.message or PREVIEW_NOTICE, "warning")
        if self.library is not None:
            self.library.add_recently_played(track)
        self._spawn_lyrics(track, generation)
        return True

    def _skip_unplayable(self, track: Track, error: ResolutionFailure) -> Optional[Track]:
        """Back to IDLE and tell the user; return the next entry to try, if any."""
        self._set_state(PlayerState.IDLE)
        self._consecutive_failures += 1
        level = "warning" if isinstance(error, RateLimited) else "error"
        self.notify(f"Unable to play {track.title}: {error}", level)

        if self._consecutive_failures >= max(1, len(self.queue)):
            self._consecutive_failures = 0
            self.notify("No playable tracks left in the queue", "warning")
            return None

        step = self.queue.advance()
        return step.track if step.moved else None

    def _spawn_lyrics(self, track: Track, generation: int) -> None:
        if self.lyrics is None:
            return
        task = asyncio.create_task(self._load_lyrics(track, generation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _load_lyrics(self, track: Track, generation: int) -> None:
        try:
            lyrics = await self.lyrics(track)
        except Exception as e:
            log.warning(f"Lyrics lookup failed for {track.id}: {e}")
            return
        if lyrics and generation == self._generation:
            self._emit(PlayerEventKind.LYRICS, payload=lyrics)

    async def wait_background(self) -> None:
        """Wait for best-effort side tasks (lyrics) to settle."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Transport controls ──────────────────────────────────────────

    async def toggle_play_pause(self) -> PlayerState:
        if self.state is PlayerState.IDLE:
            self.notify("Please select a song to play", "warning")
        elif self.state is PlayerState.PLAYING:
            self.audio.pause()
            self._set_state(PlayerState.PAUSED)
        elif self.state is PlayerState.PAUSED:
            await self.audio.play()
            self._set_state(PlayerState.PLAYING)
        return self.state

    async def next(self) -> bool:
        self._consecutive_failures = 0
        step = self.queue.advance()
        if step.moved and step.track is not None:
            return await self._play(step.track)
        if step.kind is StepKind.END_OF_QUEUE:
            self.notify("No more tracks in the queue")
        return False

    async def previous(self) -> bool:
        self._consecutive_failures = 0
        step = self.queue.retreat(self.audio.current_time)
        if step.kind is StepKind.RESTART_CURRENT:
            self.seek(0)
            return True
        if step.moved and step.track is not None:
            return await self._play(step.track)
        return False

    async def jump_to(self, index: int) -> bool:
        track = self.queue.jump_to(index)
        if track is None:
            return False
        return await self.play_track(track)

    def add_to_queue(self, track: Track) -> int:
        index = self.queue.append(track)
        self.notify(f"Added {track.title} to the queue")
        return index

    def seek(self, seconds: float) -> float:
        if self.state in (PlayerState.IDLE, PlayerState.LOADING):
            return self.position
        upper = self.duration or self.audio.duration or 0.0
        target = max(0.0, min(float(seconds), upper)) if upper else max(0.0, float(seconds))
        self.audio.seek(target)
        self.position = target
        self._emit(PlayerEventKind.PROGRESS)
        return target

    def set_volume(self, volume: float) -> float:
        self.volume = max(0.0, min(1.0, float(volume)))
        self.muted = False
        self.audio.set_volume(self.volume)
        if self.library is not None:
            self.library.set_volume(self.volume)
        return self.volume

    def toggle_mute(self) -> bool:
        self.muted = not self.muted
        self.audio.set_volume(0.0 if self.muted else (self.volume or 0.7))
        return self.muted

    def toggle_shuffle(self) -> bool:
        enabled = self.queue.toggle_shuffle()
        self.notify("Shuffle enabled" if enabled else "Shuffle disabled")
        return enabled

    def cycle_repeat(self) -> RepeatMode:
        mode = self.queue.cycle_repeat()
        labels = {
            RepeatMode.OFF: "Repeat disabled",
            RepeatMode.ALL: "Repeat all enabled",
            RepeatMode.ONE: "Repeat one enabled",
        }
        self.notify(labels[mode])
        return mode

    # ── Audio element events ────────────────────────────────────────

    async def handle_audio_event(self, event: AudioEvent, value: float = 0.0) -> None:
        if event is AudioEvent.ENDED:
            await self.on_ended()
        elif event is AudioEvent.ERROR:
            await self.on_audio_error()
        elif event is AudioEvent.TIME_UPDATE:
            self.position = float(value)
            self._emit(PlayerEventKind.PROGRESS)
        elif event is AudioEvent.LOADED_METADATA:
            self.duration = float(value)
            self._emit(PlayerEventKind.PROGRESS)

    async def on_ended(self) -> None:
        if self.current_track is None:
            return
        if self.queue.repeat_mode is RepeatMode.ONE:
            self.audio.seek(0)
            self.position = 0.0
            await self.audio.play()
            self._set_state(PlayerState.PLAYING)
            return

        step = self.queue.advance()
        if step.moved and step.track is not None:
            await self._play(step.track)
            return

        # End of the queue: stop rather than replay
        self.audio.pause()
        self.audio.seek(0)
        self.position = 0.0
        self._set_state(PlayerState.PAUSED if step.kind is StepKind.END_OF_QUEUE else PlayerState.IDLE)
        if step.kind is StepKind.END_OF_QUEUE:
            self.notify("Reached the end of the queue")

    async def on_audio_error(self) -> None:
        track = self.current_track
        if track is None or self.state is PlayerState.IDLE:
            return
        invalidate = getattr(self.resolver, "invalidate", None)
        if invalidate is not None:
            # The cached URL may simply have expired upstream
            invalidate(track)
        self._generation += 1
        following = self._skip_unplayable(track, ResolutionFailure("Audio could not be decoded", track_id=track.id))
        if following is not None:
            await self._play(following)


@dataclass
class PlayerSession:
    """Everything one browser tab's player owns, built once at startup."""

    api: ProxyClient
    controller: PlayerController
    library: LibraryStore
    equalizer: Equalizer
    queue: PlaybackQueue = field(repr=False)

    @classmethod
    def create(
        cls,
        audio: AudioOutput,
        *,
        api: Optional[ProxyClient] = None,
        library: Optional[LibraryStore] = None,
        effects: Optional[EffectsSink] = None,
        queue: Optional[PlaybackQueue] = None,
    ) -> "PlayerSession":
        api = api or ProxyClient()
        library = library or LibraryStore()
        queue = queue or PlaybackQueue()
        controller = PlayerController(
            ClientStreamResolver(api),
            queue,
            audio,
            library=library,
            lyrics=lambda track: api.get_lyrics(track.title, track.artist),
        )
        equalizer = Equalizer(library)
        if effects is not None:
            equalizer.attach(effects)
        return cls(api=api, controller=controller, library=library, equalizer=equalizer, queue=queue)

    async def start(self) -> bool:
        """Probe the proxy; the player works (offline) either way."""
        connected = await self.api.check_connection()
        if not connected:
            self.controller.notify("Stream proxy unreachable - browsing is offline", "warning")
        return connected

    async def close(self) -> None:
        await self.controller.wait_background()
        await self.api.aclose()
