import json
from pathlib import Path

import pytest

from soundrelay.common.models import Track
from soundrelay.player.library import (
    RECENTLY_PLAYED_LIMIT,
    STORAGE_KEYS,
    JsonFileStore,
    LibraryStore,
    MemoryStore,
)

A = Track(id="a", title="One More Time", artist="Daft Punk", duration=320)
B = Track(id="b", title="Digital Love", artist="Daft Punk")


def test_recently_played_is_capped_deduplicated_most_recent_first() -> None:
    library = LibraryStore()
    for i in range(RECENTLY_PLAYED_LIMIT + 10):
        library.add_recently_played(Track(id=str(i), title=f"Song {i}"))
    library.add_recently_played(Track(id="30", title="Song 30"))

    history = library.recently_played()
    assert len(history) == RECENTLY_PLAYED_LIMIT
    assert history[0].id == "30"
    assert history[1].id == str(RECENTLY_PLAYED_LIMIT + 9)
    assert [t.id for t in history].count("30") == 1


def test_playlists_roundtrip_without_duplicates() -> None:
    library = LibraryStore()
    playlist = library.create_playlist("  Road trip ", "summer")
    assert playlist.name == "Road trip"

    assert library.add_to_playlist(playlist.id, A) is True
    assert library.add_to_playlist(playlist.id, A) is False
    assert library.add_to_playlist(playlist.id, B) is True
    assert [t.id for t in library.get_playlist(playlist.id).tracks] == ["a", "b"]

    assert library.remove_from_playlist(playlist.id, "a") is True
    assert library.remove_from_playlist(playlist.id, "a") is False
    assert library.delete_playlist(playlist.id) is True
    assert library.playlists() == []


def test_playlist_errors() -> None:
    library = LibraryStore()
    with pytest.raises(ValueError):
        library.create_playlist("   ")
    with pytest.raises(KeyError):
        library.add_to_playlist("missing", A)
    assert library.delete_playlist("missing") is False


def test_toggle_like() -> None:
    library = LibraryStore()
    assert library.toggle_like(A) is True
    assert library.toggle_like(B) is True
    assert [t.id for t in library.liked_tracks()] == ["b", "a"]
    assert library.toggle_like(A) is False
    assert library.liked_ids() == {"b"}
    assert library.is_liked("b")


def test_preferences_defaults_and_clamping() -> None:
    library = LibraryStore()
    assert library.volume() == 0.7
    assert library.theme() == "dark"
    assert library.equalizer_preset() is None
    assert library.equalizer_values() is None

    library.set_volume(3)
    assert library.volume() == 1.0
    library.set_theme("light")
    assert library.theme() == "light"
    with pytest.raises(ValueError):
        library.set_theme("neon")


def test_corrupt_entries_fall_back_to_defaults() -> None:
    store = MemoryStore(
        {
            STORAGE_KEYS["volume"]: "not json",
            STORAGE_KEYS["recently_played"]: json.dumps([{"title": "no id"}, A.to_storage()]),
        }
    )
    library = LibraryStore(store)
    assert library.volume() == 0.7
    assert library.recently_played() == [A]


def test_json_file_store_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "library.json"
    LibraryStore(JsonFileStore(path)).add_recently_played(A)

    reloaded = LibraryStore(JsonFileStore(path)).recently_played()
    assert reloaded == [A]
    assert reloaded[0].duration_seconds == 320


def test_json_file_store_ignores_unreadable_file(tmp_path: Path) -> None:
    path = tmp_path / "library.json"
    path.write_text("{broken", encoding="utf-8")

    store = JsonFileStore(path)
    assert store.get(STORAGE_KEYS["theme"]) is None
    store.set(STORAGE_KEYS["theme"], '"light"')
    assert json.loads(path.read_text(encoding="utf-8")) == {STORAGE_KEYS["theme"]: '"light"'}
