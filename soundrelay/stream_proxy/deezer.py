"""
Deezer client: the metadata store behind search, charts and genre browsing.

Every track payload is normalised into :class:`Track` here, at the
ingestion boundary. Deezer's 30-second preview URLs also back the
fallback step of the stream waterfall (:meth:`DeezerClient.find_preview`).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from soundrelay.common.errors import MalformedProviderResponse, ProviderError
from soundrelay.common.logging_utils import get_logger, log_exceptions
from soundrelay.common.models import Track
from soundrelay.common.runtime_utils import build_api_client, env_float, env_str

log = get_logger("stream-proxy.deezer")

DEEZER_API_BASE = env_str("DEEZER_API_BASE", "https://api.deezer.com")
API_TIMEOUT = env_float("API_TIMEOUT", "10")

# Artists sampled (and tracks per artist) when browsing a genre
GENRE_ARTIST_SAMPLE = 5
GENRE_TRACKS_PER_ARTIST = 5

_COVER_SIZE_KEYS = (
    "cover_xl", "cover_big", "cover_medium", "cover_small",
    "xl", "large", "big", "medium", "small",
)


def _pick_cover(value: Any) -> Optional[str]:
    """Reduce a cover (plain URL or dict of size variants) to one URL."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in _COVER_SIZE_KEYS:
            url = value.get(key)
            if isinstance(url, str) and url:
                return url
    return None


def normalize_track(item: Any) -> Track:
    """Map a Deezer track object into the canonical Track shape."""
    if not isinstance(item, dict):
        raise MalformedProviderResponse("deezer", f"expected track object, got {type(item).__name__}")

    track_id = item.get("id")
    title = str(item.get("title") or "").strip()
    if track_id is None or not title:
        raise MalformedProviderResponse("deezer", "track object without id/title")

    artist = item.get("artist")
    if isinstance(artist, dict):
        artist_name = str(artist.get("name") or "").strip()
    else:
        artist_name = str(artist or "").strip()

    album = item.get("album")
    album_title: Optional[str] = None
    cover = item.get("cover")
    if isinstance(album, dict):
        album_title = str(album.get("title") or "").strip() or None
        cover = cover or album
    elif isinstance(album, str):
        album_title = album.strip() or None

    duration = item.get("duration")
    try:
        duration_seconds = max(0, int(duration or 0))
    except (TypeError, ValueError):
        duration_seconds = 0

    return Track(
        id=str(track_id),
        title=title,
        artist=artist_name or "Unknown Artist",
        album=album_title,
        duration_seconds=duration_seconds,
        cover_url=_pick_cover(cover),
        preview_url=str(item.get("preview") or "").strip() or None,
        provider_ref=str(track_id),
    )


def normalize_tracks(items: Any) -> list[Track]:
    """Normalise a list of track objects, skipping the ones that do not fit."""
    if not isinstance(items, list):
        raise MalformedProviderResponse("deezer", "expected a list of tracks")
    tracks: list[Track] = []
    for item in items:
        try:
            tracks.append(normalize_track(item))
        except MalformedProviderResponse as e:
            log.debug(f"Skipping malformed Deezer track: {e}")
    return tracks


class DeezerClient:
    """Thin async wrapper over the public Deezer API."""

    def __init__(
        self,
        base_url: str = DEEZER_API_BASE,
        *,
        timeout: float = API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @log_exceptions(log, "Deezer request failed", level=logging.WARNING)
    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        try:
            async with build_api_client(
                self.base_url, read_timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError("deezer", f"HTTP {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise ProviderError("deezer", f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise MalformedProviderResponse("deezer", f"invalid JSON from {path}") from e

        if not isinstance(payload, dict):
            raise MalformedProviderResponse("deezer", f"unexpected payload from {path}")
        # Deezer reports errors with HTTP 200 and an "error" object
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError("deezer", str(message or "unknown error"))
        return payload

    async def search_tracks(self, query: str, limit: int = 25) -> list[Track]:
        payload = await self._get("/search", {"q": query, "limit": limit})
        return normalize_tracks(payload.get("data"))[:limit]

    async def chart_tracks(self, limit: int = 25) -> list[Track]:
        payload = await self._get("/chart/0/tracks", {"limit": limit})
        return normalize_tracks(payload.get("data"))[:limit]

    async def genre_tracks(self, genre_id: str, limit: int = 25) -> list[Track]:
        """Top tracks of the first few artists filed under a genre."""
        payload = await self._get(f"/genre/{genre_id}/artists")
        artists = payload.get("data")
        if not isinstance(artists, list):
            raise MalformedProviderResponse("deezer", "genre artists is not a list")

        tracks: list[Track] = []
        for artist in artists[:GENRE_ARTIST_SAMPLE]:
            artist_id = artist.get("id") if isinstance(artist, dict) else None
            if artist_id is None:
                continue
            try:
                tracks.extend(await self.artist_top_tracks(str(artist_id), GENRE_TRACKS_PER_ARTIST))
            except ProviderError as e:
                log.warning(f"Skipping artist {artist_id} in genre {genre_id}: {e}")
        return tracks[:limit]

    async def track_by_id(self, track_id: str) -> Track:
        payload = await self._get(f"/track/{track_id}")
        return normalize_track(payload)

    async def artist_top_tracks(self, artist_id: str, limit: int = 10) -> list[Track]:
        payload = await self._get(f"/artist/{artist_id}/top", {"limit": limit})
        return normalize_tracks(payload.get("data"))[:limit]

    async def find_preview(self, title: str, artist: str) -> Optional[Track]:
        """First search hit for ``"{title} {artist}"`` that has a preview clip."""
        query = f"{title} {artist}".strip()
        if not query:
            return None
        for track in await self.search_tracks(query, limit=5):
            if track.preview_url:
                return track
        return None
