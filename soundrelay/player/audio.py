"""The audio output the controller drives (a browser audio element, or any
player exposing the same surface)."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Sequence


class AudioEvent(str, Enum):
    ENDED = "ended"
    ERROR = "error"
    TIME_UPDATE = "timeupdate"
    LOADED_METADATA = "loadedmetadata"


class AudioOutput(Protocol):
    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...

    async def load(self, url: str) -> None: ...

    async def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_volume(self, volume: float) -> None: ...


class EffectsSink(Protocol):
    """Audio-effects chain that consumes one gain (dB) per equalizer band."""

    def apply_gains(self, gains: Sequence[float]) -> None: ...
