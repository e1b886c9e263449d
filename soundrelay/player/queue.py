"""Playback queue: ordered tracks, a cursor, shuffle and repeat.

Pure state transitions, no I/O. ``current_index`` is always -1 (nothing
selected) or a valid index into the queue.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from soundrelay.common.models import Track

# Pressing "previous" this far into a track restarts it instead
RESTART_THRESHOLD_SECONDS = 3.0


class RepeatMode(str, Enum):
    OFF = "off"
    ALL = "all"
    ONE = "one"

    def cycled(self) -> "RepeatMode":
        """OFF -> ALL -> ONE -> OFF."""
        order = (RepeatMode.OFF, RepeatMode.ALL, RepeatMode.ONE)
        return order[(order.index(self) + 1) % len(order)]


class StepKind(str, Enum):
    MOVED = "moved"
    END_OF_QUEUE = "end_of_queue"
    RESTART_CURRENT = "restart_current"
    EMPTY = "empty"


@dataclass(frozen=True)
class QueueStep:
    kind: StepKind
    index: int
    track: Optional[Track] = None

    @property
    def moved(self) -> bool:
        return self.kind is StepKind.MOVED


class PlaybackQueue:
    def __init__(self, tracks: Iterable[Track] = (), *, rng: Optional[random.Random] = None):
        self._tracks: list[Track] = list(tracks)
        self.current_index = -1
        self.shuffle_enabled = False
        self.repeat_mode = RepeatMode.OFF
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._tracks)

    @property
    def tracks(self) -> tuple[Track, ...]:
        return tuple(self._tracks)

    @property
    def current(self) -> Optional[Track]:
        if self.current_index < 0:
            return None
        return self._tracks[self.current_index]

    def index_of(self, track: Track) -> int:
        try:
            return self._tracks.index(track)
        except ValueError:
            return -1

    def _step(self, kind: StepKind) -> QueueStep:
        return QueueStep(kind, self.current_index, self.current)

    # ── Replacement & append ────────────────────────────────────────

    def replace_and_play(self, track: Track) -> Track:
        self._tracks = [track]
        self.current_index = 0
        return track

    def load(self, tracks: Iterable[Track], start_index: int = 0) -> Optional[Track]:
        """Replace the queue with ``tracks`` positioned at ``start_index``."""
        self._tracks = list(tracks)
        if not self._tracks:
            self.current_index = -1
            return None
        self.current_index = start_index if 0 <= start_index < len(self._tracks) else 0
        return self.current

    def append(self, track: Track) -> int:
        self._tracks.append(track)
        return len(self._tracks) - 1

    def clear(self) -> None:
        self._tracks = []
        self.current_index = -1

    # ── Navigation ──────────────────────────────────────────────────

    def advance(self) -> QueueStep:
        if not self._tracks:
            return self._step(StepKind.EMPTY)

        if self.shuffle_enabled:
            size = len(self._tracks)
            index = self._rng.randrange(size)
            while size > 1 and index == self.current_index:
                index = self._rng.randrange(size)
            self.current_index = index
            return self._step(StepKind.MOVED)

        index = self.current_index + 1
        if index >= len(self._tracks):
            if self.repeat_mode is RepeatMode.ALL:
                self.current_index = 0
                return self._step(StepKind.MOVED)
            self.current_index = len(self._tracks) - 1
            return self._step(StepKind.END_OF_QUEUE)

        self.current_index = index
        return self._step(StepKind.MOVED)

    def retreat(self, elapsed_seconds: float) -> QueueStep:
        if not self._tracks:
            return self._step(StepKind.EMPTY)
        if elapsed_seconds > RESTART_THRESHOLD_SECONDS:
            return self._step(StepKind.RESTART_CURRENT)
        if self.current_index < 0:
            return self._step(StepKind.END_OF_QUEUE)

        index = self.current_index - 1
        if index < 0:
            if self.repeat_mode is RepeatMode.ALL:
                self.current_index = len(self._tracks) - 1
                return self._step(StepKind.MOVED)
            self.current_index = 0
            return self._step(StepKind.END_OF_QUEUE)

        self.current_index = index
        return self._step(StepKind.MOVED)

    def jump_to(self, index: int) -> Optional[Track]:
        if not 0 <= index < len(self._tracks):
            return None
        self.current_index = index
        return self.current

    # ── Modes ───────────────────────────────────────────────────────

    def toggle_shuffle(self) -> bool:
        self.shuffle_enabled = not self.shuffle_enabled
        return self.shuffle_enabled

    def cycle_repeat(self) -> RepeatMode:
        self.repeat_mode = self.repeat_mode.cycled()
        return self.repeat_mode
