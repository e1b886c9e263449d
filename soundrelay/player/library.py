"""
Persisted library state: playlists, likes, recently played and preferences.

State is kept as JSON blobs under fixed keys in a key-value store, the way a
browser keeps it in localStorage. ``JsonFileStore`` persists the same blobs
to a single file for non-browser hosts.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from pydantic import Field, ValidationError

from soundrelay.common.logging_utils import get_logger
from soundrelay.common.models import CamelModel, Track

log = get_logger("player.library")

STORAGE_KEYS = {
    "playlists": "soundrelay_playlists",
    "liked_songs": "soundrelay_liked_songs",
    "recently_played": "soundrelay_recently_played",
    "volume": "soundrelay_volume",
    "theme": "soundrelay_theme",
    "eq_preset": "soundrelay_eq_preset",
    "eq_values": "soundrelay_eq_values",
}

RECENTLY_PLAYED_LIMIT = 50
DEFAULT_VOLUME = 0.7
THEMES = ("dark", "light")
DEFAULT_THEME = "dark"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """All keys in one JSON file, rewritten atomically on every change."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                log.warning(f"Ignoring unreadable library file {self.path}: {e}")
            else:
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".library-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class Playlist(CamelModel):
    id: str
    name: str
    description: str = ""
    tracks: list[Track] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)


class LibraryStore:
    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store if store is not None else MemoryStore()

    # ── raw JSON access ─────────────────────────────────────────────

    def _load(self, name: str, default: Any) -> Any:
        raw = self.store.get(STORAGE_KEYS[name])
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            log.warning(f"Discarding corrupt {name} entry")
            return default

    def _save(self, name: str, value: Any) -> None:
        self.store.set(STORAGE_KEYS[name], json.dumps(value))

    def _load_tracks(self, name: str) -> list[Track]:
        tracks: list[Track] = []
        for item in self._load(name, []):
            try:
                tracks.append(Track.model_validate(item))
            except ValidationError:
                log.debug(f"Dropping malformed track in {name}")
        return tracks

    def _save_tracks(self, name: str, tracks: Sequence[Track]) -> None:
        self._save(name, [t.to_storage() for t in tracks])

    # ── Playlists ───────────────────────────────────────────────────

    def playlists(self) -> list[Playlist]:
        result: list[Playlist] = []
        for item in self._load("playlists", []):
            try:
                result.append(Playlist.model_validate(item))
            except ValidationError:
                log.debug("Dropping malformed playlist")
        return result

    def _save_playlists(self, playlists: Sequence[Playlist]) -> None:
        self._save(
            "playlists",
            [p.model_dump(mode="json", by_alias=True, exclude_none=True) for p in playlists],
        )

    def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        return next((p for p in self.playlists() if p.id == playlist_id), None)

    def create_playlist(self, name: str, description: str = "") -> Playlist:
        name = name.strip()
        if not name:
            raise ValueError("Playlist name is required")
        playlist = Playlist(id=uuid.uuid4().hex[:12], name=name, description=description.strip())
        self._save_playlists([*self.playlists(), playlist])
        return playlist

    def delete_playlist(self, playlist_id: str) -> bool:
        playlists = self.playlists()
        kept = [p for p in playlists if p.id != playlist_id]
        if len(kept) == len(playlists):
            return False
        self._save_playlists(kept)
        return True

    def add_to_playlist(self, playlist_id: str, track: Track) -> bool:
        """Add ``track`` unless already present. Never touches the live queue."""
        playlists = self.playlists()
        for playlist in playlists:
            if playlist.id == playlist_id:
                if track in playlist.tracks:
                    return False
                playlist.tracks.append(track)
                self._save_playlists(playlists)
                return True
        raise KeyError(playlist_id)

    def remove_from_playlist(self, playlist_id: str, track_id: str) -> bool:
        playlists = self.playlists()
        for playlist in playlists:
            if playlist.id == playlist_id:
                before = len(playlist.tracks)
                playlist.tracks = [t for t in playlist.tracks if t.id != track_id]
                if len(playlist.tracks) == before:
                    return False
                self._save_playlists(playlists)
                return True
        raise KeyError(playlist_id)

    # ── Likes ───────────────────────────────────────────────────────

    def liked_tracks(self) -> list[Track]:
        return self._load_tracks("liked_songs")

    def liked_ids(self) -> set[str]:
        return {t.id for t in self.liked_tracks()}

    def is_liked(self, track_id: str) -> bool:
        return track_id in self.liked_ids()

    def toggle_like(self, track: Track) -> bool:
        """Flip the like state of ``track`` and return the new state."""
        liked = self.liked_tracks()
        if track in liked:
            self._save_tracks("liked_songs", [t for t in liked if t != track])
            return False
        self._save_tracks("liked_songs", [track, *liked])
        return True

    # ── Recently played ─────────────────────────────────────────────

    def recently_played(self) -> list[Track]:
        return self._load_tracks("recently_played")

    def add_recently_played(self, track: Track) -> None:
        """Most recent first, one entry per track id, capped."""
        history = [t for t in self.recently_played() if t != track]
        self._save_tracks("recently_played", [track, *history][:RECENTLY_PLAYED_LIMIT])

    # ── Preferences ─────────────────────────────────────────────────

    def volume(self) -> float:
        value = self._load("volume", DEFAULT_VOLUME)
        try:
            return min(1.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return DEFAULT_VOLUME

    def set_volume(self, volume: float) -> None:
        self._save("volume", min(1.0, max(0.0, float(volume))))

    def theme(self) -> str:
        value = self._load("theme", DEFAULT_THEME)
        return value if value in THEMES else DEFAULT_THEME

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme {theme!r}")
        self._save("theme", theme)

    def equalizer_preset(self) -> Optional[str]:
        value = self._load("eq_preset", None)
        return value if isinstance(value, str) else None

    def set_equalizer_preset(self, preset: str) -> None:
        self._save("eq_preset", preset)

    def equalizer_values(self) -> Optional[list[float]]:
        values = self._load("eq_values", None)
        if not isinstance(values, list) or not all(isinstance(v, (int, float)) for v in values):
            return None
        return [float(v) for v in values]

    def set_equalizer_values(self, values: Sequence[float]) -> None:
        self._save("eq_values", [float(v) for v in values])
