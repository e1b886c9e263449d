"""
HTTP client for the stream proxy, as used by the player.

Browsing calls (search, charts, genres, lyrics) degrade to empty results
when the proxy is unreachable and flip ``connected`` to False so the UI can
show an offline badge. Stream resolution is the exception: its failures are
raised, because the controller has to decide what to play instead.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import ValidationError

from soundrelay.common.errors import NetworkFailure, RateLimited, ResolutionFailure
from soundrelay.common.logging_utils import get_logger
from soundrelay.common.models import ResolvedStream, Track
from soundrelay.common.runtime_utils import build_api_client, env_float, env_str

log = get_logger("player.api")

SOUNDRELAY_API_URL = env_str("SOUNDRELAY_API_URL", "http://localhost:3000")
API_TIMEOUT = env_float("API_TIMEOUT", "10")
# Resolution may run the extractor upstream, so it gets a longer budget
RESOLVE_TIMEOUT = env_float("SOUNDRELAY_RESOLVE_TIMEOUT", "30")


class ProxyClient:
    def __init__(
        self,
        base_url: str = SOUNDRELAY_API_URL,
        *,
        timeout: float = API_TIMEOUT,
        resolve_timeout: float = RESOLVE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.resolve_timeout = resolve_timeout
        self.connected: Optional[bool] = None
        self._client = build_api_client(
            self.base_url, read_timeout=timeout, user_agent=None, transport=transport
        )

    async def __aenter__(self) -> "ProxyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> tuple[int, dict]:
        """Send one request and return ``(status, envelope)``."""
        kwargs: dict[str, Any] = {"params": params, "json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            self.connected = False
            raise NetworkFailure(f"{method} {path} failed: {type(e).__name__}", url=path) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise NetworkFailure(f"{method} {path} returned invalid JSON", url=path) from e
        if not isinstance(payload, dict):
            raise NetworkFailure(f"{method} {path} returned an unexpected payload", url=path)

        self.connected = True
        return response.status_code, payload

    async def check_connection(self) -> bool:
        try:
            _, payload = await self._request("GET", "/health")
        except NetworkFailure as e:
            log.warning(f"Proxy unreachable: {e}")
            self.connected = False
            return False
        self.connected = payload.get("status") == "ok"
        return self.connected

    async def _tracks(self, path: str, params: Optional[dict] = None) -> list[Track]:
        try:
            _, payload = await self._request("GET", path, params=params)
        except NetworkFailure as e:
            log.warning(f"Falling back to empty results for {path}: {e}")
            return []
        if not payload.get("success"):
            log.warning(f"{path} failed: {payload.get('error')}")
            return []

        tracks: list[Track] = []
        for item in payload.get("data") or []:
            try:
                tracks.append(Track.model_validate(item))
            except ValidationError as e:
                log.debug(f"Dropping malformed track from {path}: {e.error_count()} errors")
        return tracks

    async def search_tracks(self, query: str, limit: int = 25) -> list[Track]:
        if not query.strip():
            return []
        return await self._tracks("/songs/search", {"q": query, "limit": limit})

    async def chart_tracks(self, limit: int = 25) -> list[Track]:
        return await self._tracks("/songs/charts", {"limit": limit})

    async def genre_tracks(self, genre_id: str, limit: int = 25) -> list[Track]:
        return await self._tracks(f"/songs/genre/{genre_id}", {"limit": limit})

    async def artist_top_tracks(self, artist_id: str, limit: int = 10) -> list[Track]:
        return await self._tracks(f"/songs/artist/{artist_id}/top", {"limit": limit})

    async def resolve_stream(self, track: Track) -> ResolvedStream:
        """Ask the proxy for a playable URL.

        Raises NetworkFailure when the proxy cannot be reached, RateLimited
        on 429 and ResolutionFailure for any other unsuccessful answer.
        """
        body = {"id": track.id, "title": track.title, "artist": track.artist}
        if track.video_id:
            body["videoId"] = track.video_id

        status, payload = await self._request(
            "POST", "/stream/resolve", json=body, timeout=self.resolve_timeout
        )
        if status == 429:
            raise RateLimited(payload.get("error") or "rate limit exceeded", track_id=track.id)
        if not payload.get("success") or not payload.get("data"):
            raise ResolutionFailure(payload.get("error") or "Failed to fetch stream URL", track_id=track.id)

        try:
            stream = ResolvedStream.model_validate(payload["data"])
        except ValidationError as e:
            raise ResolutionFailure("Malformed stream descriptor", track_id=track.id) from e

        updates: dict[str, Any] = {"cached": bool(payload.get("cached"))}
        if payload.get("message") and not stream.message:
            updates["message"] = payload["message"]
        return stream.model_copy(update=updates)

    async def get_lyrics(self, title: str, artist: str) -> Optional[dict]:
        try:
            _, payload = await self._request("GET", "/lyrics", params={"title": title, "artist": artist})
        except NetworkFailure as e:
            log.info(f"Lyrics unavailable: {e}")
            return None
        if not payload.get("success"):
            return None
        return payload.get("data")

    async def clear_server_cache(self) -> bool:
        try:
            _, payload = await self._request("POST", "/cache/clear")
        except NetworkFailure as e:
            log.warning(f"Cache clear failed: {e}")
            return False
        return bool(payload.get("success"))
