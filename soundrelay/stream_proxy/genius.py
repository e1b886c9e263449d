"""Genius lyrics lookup. Only a teaser plus a link is served, never full text."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from soundrelay.common.errors import MalformedProviderResponse, ProviderError
from soundrelay.common.logging_utils import get_logger
from soundrelay.common.runtime_utils import build_api_client, env_float, env_str

log = get_logger("stream-proxy.genius")

GENIUS_API_BASE = env_str("GENIUS_API_BASE", "https://api.genius.com")
GENIUS_ACCESS_TOKEN = env_str("GENIUS_ACCESS_TOKEN", "")
API_TIMEOUT = env_float("API_TIMEOUT", "10")

PREVIEW_MESSAGE = 'Preview only - open "View Full Lyrics" to read the complete lyrics on Genius'


def preview_lines(title: str, artist: str) -> list[str]:
    return [
        f"♪ {title} ♪",
        f"by {artist}",
        "",
        "Lyrics are available on Genius.",
        'Open "View Full Lyrics" to read the complete lyrics.',
    ]


def _song_fields(hit: Any) -> dict:
    song = hit.get("result") if isinstance(hit, dict) else None
    if not isinstance(song, dict):
        raise MalformedProviderResponse("genius", "search hit without result")
    primary_artist = song.get("primary_artist") or {}
    return {
        "title": str(song.get("title") or ""),
        "artist": str(primary_artist.get("name") or "") if isinstance(primary_artist, dict) else "",
        "url": song.get("url"),
        "thumbnail": song.get("song_art_image_url"),
    }


class GeniusClient:
    def __init__(
        self,
        base_url: str = GENIUS_API_BASE,
        *,
        access_token: str = GENIUS_ACCESS_TOKEN,
        timeout: float = API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    async def _search_hits(self, query: str, per_page: Optional[int] = None) -> list:
        params: dict[str, Any] = {"q": query}
        if per_page:
            params["per_page"] = per_page
        headers = {"Authorization": f"Bearer {self.access_token}"} if self.access_token else None
        try:
            async with build_api_client(
                self.base_url, read_timeout=self.timeout, transport=self._transport, headers=headers
            ) as client:
                response = await client.get("/search", params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError("genius", f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError("genius", f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise MalformedProviderResponse("genius", "invalid JSON") from e

        hits = (payload.get("response") or {}).get("hits") if isinstance(payload, dict) else None
        if not isinstance(hits, list):
            raise MalformedProviderResponse("genius", "search response without hits")
        return hits

    async def lyrics_preview(self, title: str, artist: str) -> Optional[dict]:
        """Preview card for the best match, or None when Genius has nothing."""
        hits = await self._search_hits(f"{title} {artist}")
        if not hits:
            return None
        song = _song_fields(hits[0])
        log.info(f"Found lyrics for {song['title']!r} by {song['artist']!r}")
        return {
            "title": song["title"],
            "artist": song["artist"],
            "previewLines": preview_lines(song["title"], song["artist"]),
            "fullLyricsUrl": song["url"],
            "thumbnail": song["thumbnail"],
            "message": PREVIEW_MESSAGE,
        }

    async def search(self, query: str, limit: int = 5) -> list[dict]:
        hits = await self._search_hits(query, per_page=limit)
        return [_song_fields(hit) for hit in hits[:limit]]
