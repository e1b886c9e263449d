"""
Stream resolution waterfall.

Order, stopping at the first success:

  1. shared stream cache
  2. primary resolver (full-length audio), only when the rate limiter admits
  3. fallback resolver (30-second metadata-store preview)

Failures of the primary step never escape; they only decide which message
and reason the fallback result carries. Exhausting the waterfall raises
``ResolutionFailure`` (``RateLimited`` when the primary step was skipped).
"""

from __future__ import annotations

from typing import Optional, Protocol

from soundrelay.common.cache import StreamCache
from soundrelay.common.errors import RateLimited, ResolutionFailure
from soundrelay.common.logging_utils import get_logger
from soundrelay.common.models import (
    FallbackReason,
    ResolvedStream,
    SourceKind,
    Track,
    normalize_key,
    stream_cache_key,
    video_key,
)
from soundrelay.common.rate_limiter import RateLimiter
from soundrelay.stream_proxy.youtube_audio import PrimaryAudio

log = get_logger("stream-proxy.resolver")

PREVIEW_DURATION_SECONDS = 30
RATE_LIMITED_MESSAGE = "rate limit exceeded - playing 30-second preview only"
PREVIEW_ONLY_MESSAGE = "Full track unavailable - playing 30-second preview only"


class PrimaryAudioResolver(Protocol):
    async def resolve(self, query: str, *, video_id: Optional[str] = None) -> PrimaryAudio: ...


class PreviewSource(Protocol):
    async def find_preview(self, title: str, artist: str) -> Optional[Track]: ...


def primary_query(track: Track) -> str:
    return f"{track.title} {track.artist} official audio".strip()


class StreamResolver:
    def __init__(
        self,
        primary: PrimaryAudioResolver,
        fallback: PreviewSource,
        cache: StreamCache,
        rate_limiter: RateLimiter,
    ):
        self.primary = primary
        self.fallback = fallback
        self.cache = cache
        self.rate_limiter = rate_limiter

    async def resolve(self, track: Track) -> ResolvedStream:
        key = stream_cache_key(track)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug(f"Stream cache hit for {key}")
            return cached

        rate_limited = not self.rate_limiter.try_acquire()
        if rate_limited:
            log.warning(
                f"Primary resolver rate limited; skipping to preview for {key} "
                f"(window resets in {self.rate_limiter.reset_in():.0f}s)"
            )
        else:
            stream = await self._try_primary(track)
            if stream is not None:
                self._store_primary(track, key, stream)
                return stream

        reason = FallbackReason.RATE_LIMITED if rate_limited else FallbackReason.PRIMARY_UNAVAILABLE
        stream = await self._try_fallback(track, reason)
        if stream is None:
            if rate_limited:
                raise RateLimited(track_id=track.id, retry_after=self.rate_limiter.reset_in())
            raise ResolutionFailure(track_id=track.id)

        self.cache.set(key, stream)
        return stream

    async def resolve_video(self, video_id: str) -> ResolvedStream:
        """Resolve a known video id (no title/artist, so no preview fallback)."""
        return await self.resolve(Track(id=video_id, title="", artist="", video_id=video_id))

    async def _try_primary(self, track: Track) -> Optional[ResolvedStream]:
        try:
            audio = await self.primary.resolve(primary_query(track), video_id=track.video_id)
        except Exception as e:
            # Any extractor failure only moves the waterfall on
            log.warning(f"Primary resolver failed for {track.title!r} / {track.artist!r}: {e}")
            return None

        if not audio.url:
            log.warning(f"Primary resolver returned no URL for {track.id}")
            return None

        return ResolvedStream(
            stream_url=audio.url,
            source_kind=SourceKind.PRIMARY,
            expires_at=self.cache.now() + self.cache.primary_ttl,
            title=audio.title or track.title,
            artist=track.artist or audio.artist,
            duration_seconds=audio.duration_seconds or track.duration_seconds,
            thumbnail=audio.thumbnail or track.cover_url,
            video_id=audio.video_id,
        )

    def _store_primary(self, track: Track, key: str, stream: ResolvedStream) -> None:
        keys = {key}
        if stream.video_id:
            keys.add(video_key(stream.video_id))
        if track.title:
            keys.add(normalize_key(track.title, track.artist))
        for k in keys:
            self.cache.set(k, stream)

    async def _try_fallback(self, track: Track, reason: FallbackReason) -> Optional[ResolvedStream]:
        if not track.title:
            log.info(f"No title for {track.id}; preview fallback not possible")
            return None
        try:
            preview = await self.fallback.find_preview(track.title, track.artist)
        except Exception as e:
            log.warning(f"Preview fallback failed for {track.title!r} / {track.artist!r}: {e}")
            return None

        if preview is None or not preview.preview_url:
            log.info(f"No preview available for {track.title!r} / {track.artist!r}")
            return None

        return ResolvedStream(
            stream_url=preview.preview_url,
            source_kind=SourceKind.FALLBACK,
            expires_at=self.cache.now() + self.cache.fallback_ttl,
            title=preview.title,
            artist=preview.artist,
            duration_seconds=PREVIEW_DURATION_SECONDS,
            thumbnail=preview.cover_url or track.cover_url,
            reason=reason,
            message=RATE_LIMITED_MESSAGE if reason is FallbackReason.RATE_LIMITED else PREVIEW_ONLY_MESSAGE,
        )
