"""Five-band equalizer state with presets.

Only the gain vector lives here; the filter graph belongs to whatever
:class:`EffectsSink` is attached.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from soundrelay.common.logging_utils import get_logger
from soundrelay.player.audio import EffectsSink
from soundrelay.player.library import LibraryStore

log = get_logger("player.equalizer")

GAIN_LIMIT_DB = 12.0
CUSTOM_PRESET = "custom"
DEFAULT_PRESET = "normal"


@dataclass(frozen=True)
class Band:
    name: str
    frequency: int
    filter_type: str


BANDS = (
    Band("Bass", 100, "lowshelf"),
    Band("Low-Mid", 375, "peaking"),
    Band("Mid", 1250, "peaking"),
    Band("High-Mid", 3000, "peaking"),
    Band("Treble", 10000, "highshelf"),
)

PRESETS: dict[str, tuple[float, ...]] = {
    "normal": (0, 0, 0, 0, 0),
    "rock": (3, 1, -1, 2, 3),
    "pop": (2, 1, 3, 1, 2),
    "hiphop": (5, 2, -2, 1, 2),
    "jazz": (2, 1, 4, 2, 3),
    "classical": (-2, 0, 2, 2, 3),
}


def clamp_gain(gain: float) -> float:
    return max(-GAIN_LIMIT_DB, min(GAIN_LIMIT_DB, float(gain)))


def matching_preset(gains: Sequence[float]) -> str:
    for name, values in PRESETS.items():
        if tuple(float(v) for v in values) == tuple(gains):
            return name
    return CUSTOM_PRESET


class Equalizer:
    def __init__(self, library: Optional[LibraryStore] = None, sink: Optional[EffectsSink] = None):
        self.library = library
        self.sink = sink
        self._gains = [0.0] * len(BANDS)
        self.preset = DEFAULT_PRESET
        self._restore()

    def _restore(self) -> None:
        if self.library is None:
            return
        values = self.library.equalizer_values()
        if values is not None and len(values) == len(BANDS):
            self._gains = [clamp_gain(v) for v in values]
            self.preset = matching_preset(self._gains)
            return
        preset = self.library.equalizer_preset()
        if preset in PRESETS:
            self._gains = [float(v) for v in PRESETS[preset]]
            self.preset = preset

    @property
    def gains(self) -> tuple[float, ...]:
        return tuple(self._gains)

    def attach(self, sink: EffectsSink) -> None:
        self.sink = sink
        self._push()

    def _push(self) -> None:
        if self.sink is not None:
            self.sink.apply_gains(self.gains)

    def _persist(self) -> None:
        if self.library is not None:
            self.library.set_equalizer_values(self._gains)
            if self.preset != CUSTOM_PRESET:
                self.library.set_equalizer_preset(self.preset)

    def set_band_gain(self, index: int, gain: float) -> float:
        if not 0 <= index < len(BANDS):
            raise IndexError(f"No equalizer band {index}")
        self._gains[index] = clamp_gain(gain)
        self.preset = matching_preset(self._gains)
        self._persist()
        self._push()
        return self._gains[index]

    def apply_preset(self, name: str) -> tuple[float, ...]:
        if name not in PRESETS:
            raise KeyError(f"Unknown equalizer preset {name!r}")
        self._gains = [float(v) for v in PRESETS[name]]
        self.preset = name
        self._persist()
        self._push()
        log.info(f"Applied equalizer preset {name}")
        return self.gains

    def reset(self) -> tuple[float, ...]:
        return self.apply_preset(DEFAULT_PRESET)

    def status(self) -> dict:
        return {
            "preset": self.preset,
            "bands": [
                {"name": band.name, "frequency": band.frequency, "type": band.filter_type, "gain": gain}
                for band, gain in zip(BANDS, self._gains)
            ],
        }
