"""
Primary audio resolver: ytmusicapi search + yt-dlp extraction.

Finds a video for ``"{title} {artist} official audio"`` on YouTube Music,
then asks yt-dlp for the direct URL of the best audio-only encoding. Both
libraries block, so the work runs on a worker thread with an overall
timeout; a timed-out extraction is abandoned, not killed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from ytmusicapi import YTMusic

from soundrelay.common.errors import PrimaryResolverError
from soundrelay.common.logging_utils import get_logger, log_timing
from soundrelay.common.runtime_utils import USER_AGENT, env_float

log = get_logger("stream-proxy.youtube")

PRIMARY_RESOLVE_TIMEOUT = env_float("PRIMARY_RESOLVE_TIMEOUT", "15")

_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


@dataclass(frozen=True)
class PrimaryAudio:
    """What the primary resolver hands back for one track."""

    url: str
    title: str
    duration_seconds: int
    thumbnail: Optional[str]
    video_id: str
    artist: str = ""
    abr: float = 0.0
    acodec: str = ""


def _parse_duration_text(value: Any) -> int:
    """Parse "mm:ss" / "hh:mm:ss" (or a number) to seconds; 0 when invalid."""
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    text = str(value or "").strip()
    if ":" not in text:
        return 0
    try:
        parts = [int(p) for p in text.split(":")]
    except ValueError:
        return 0
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    return 0


def _best_thumbnail(thumbnails: Any) -> Optional[str]:
    """Pick the largest thumbnail URL (ytmusicapi lists them smallest first)."""
    if not isinstance(thumbnails, list):
        return None
    for thumb in reversed(thumbnails):
        if isinstance(thumb, dict) and thumb.get("url"):
            return thumb["url"]
    return None


def normalize_search_item(item: Any) -> Optional[dict]:
    """Reduce a ytmusicapi search result to the fields we need, or None."""
    if not isinstance(item, dict) or not item.get("videoId"):
        return None

    artist_names: list[str] = []
    for artist in item.get("artists") or []:
        name = artist.get("name") if isinstance(artist, dict) else artist
        if isinstance(name, str) and name.strip():
            artist_names.append(name.strip())

    return {
        "videoId": str(item["videoId"]),
        "title": str(item.get("title") or "").strip() or "Unknown",
        "artist": artist_names[0] if artist_names else "Unknown",
        "duration": _parse_duration_text(item.get("duration_seconds") or item.get("duration")),
        "thumbnail": _best_thumbnail(item.get("thumbnails")),
        "type": str(item.get("resultType") or "unknown").lower(),
    }


def pick_audio_format(formats: Any) -> Optional[dict]:
    """Highest-bitrate audio-only format with a direct URL."""
    if not isinstance(formats, list):
        return None
    audio_only = [
        f for f in formats
        if isinstance(f, dict)
        and f.get("url")
        and f.get("acodec") not in (None, "none")
        and f.get("vcodec") in ("none", None)
    ]
    if not audio_only:
        return None
    return max(audio_only, key=lambda f: f.get("abr") or f.get("tbr") or 0)


class YouTubeAudioResolver:
    """Search-then-extract resolver backed by ytmusicapi and yt-dlp."""

    def __init__(self, timeout: float = PRIMARY_RESOLVE_TIMEOUT):
        self.timeout = timeout
        self._ytmusic: Optional[YTMusic] = None

    def _client(self) -> YTMusic:
        # Unauthenticated client; search never runs under a user session
        if self._ytmusic is None:
            self._ytmusic = YTMusic()
        return self._ytmusic

    def _ydl_options(self) -> dict:
        return {
            "format": "bestaudio/best",
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "extract_flat": False,
            "socket_timeout": self.timeout,
            "http_headers": {
                "User-Agent": USER_AGENT,
                "Accept-Language": "en-US,en;q=0.9",
            },
        }

    def search_sync(self, query: str, limit: int = 10) -> list[dict]:
        """Search YouTube Music; songs first, then plain videos."""
        results: list[dict] = []
        yt = self._client()
        for search_filter in ("songs", "videos"):
            try:
                raw_items = yt.search(query, filter=search_filter, limit=limit)
            except Exception as e:
                log.warning(f"ytmusicapi {search_filter} search failed for {query!r}: {e}")
                self._ytmusic = None
                continue
            for item in raw_items if isinstance(raw_items, list) else []:
                mapped = normalize_search_item(item)
                if mapped:
                    results.append(mapped)
            if results:
                break
        return results[:limit]

    def _search_video_id_sync(self, query: str) -> str:
        results = self.search_sync(query, limit=1)
        if results:
            return results[0]["videoId"]

        # ytmusicapi found nothing; let yt-dlp run a plain YouTube search
        import yt_dlp

        options = dict(self._ydl_options(), extract_flat=True)
        try:
            with yt_dlp.YoutubeDL(options) as ydl:
                info = ydl.extract_info(f"ytsearch1:{query}", download=False)
        except Exception as e:
            raise PrimaryResolverError(f"search failed: {e}") from e
        entries = (info or {}).get("entries") or []
        if not entries or not entries[0].get("id"):
            raise PrimaryResolverError(f"no results for {query!r}")
        return str(entries[0]["id"])

    def extract_sync(self, video_id: str) -> PrimaryAudio:
        """Run yt-dlp against one video and return its best audio stream."""
        import yt_dlp

        try:
            with yt_dlp.YoutubeDL(self._ydl_options()) as ydl:
                info = ydl.extract_info(_WATCH_URL.format(video_id=video_id), download=False)
        except Exception as e:
            error_str = str(e)
            if "confirm your age" in error_str.lower():
                raise PrimaryResolverError(f"age restricted: {video_id}") from e
            raise PrimaryResolverError(f"extraction failed for {video_id}: {error_str}") from e

        if not info:
            raise PrimaryResolverError(f"no info extracted for {video_id}")

        best = pick_audio_format(info.get("formats"))
        if best is None:
            raise PrimaryResolverError(f"no audio-only stream for {video_id}")

        return PrimaryAudio(
            url=best["url"],
            title=str(info.get("title") or ""),
            duration_seconds=_parse_duration_text(info.get("duration")),
            thumbnail=info.get("thumbnail"),
            video_id=str(info.get("id") or video_id),
            artist=str(info.get("artist") or info.get("uploader") or ""),
            abr=float(best.get("abr") or 0),
            acodec=str(best.get("acodec") or ""),
        )

    def _resolve_sync(self, query: str, video_id: Optional[str]) -> PrimaryAudio:
        target = video_id or self._search_video_id_sync(query)
        audio = self.extract_sync(target)
        log.debug(f"Extracted {target}: {audio.acodec} @ {audio.abr}kbps")
        return audio

    @log_timing(log, "primary extraction")
    async def resolve(self, query: str, *, video_id: Optional[str] = None) -> PrimaryAudio:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._resolve_sync, query, video_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise PrimaryResolverError(f"timed out after {self.timeout:.0f}s") from e

    async def search(self, query: str, limit: int = 10) -> list[dict]:
        return await asyncio.to_thread(self.search_sync, query, limit)
