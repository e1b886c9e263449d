"""Session-tier stream resolution in front of the proxy."""

from __future__ import annotations

from typing import Optional

from soundrelay.common.cache import StreamCache
from soundrelay.common.errors import NetworkFailure, ResolutionFailure
from soundrelay.common.logging_utils import get_logger
from soundrelay.common.models import ResolvedStream, Track, normalize_key, stream_cache_key, video_key
from soundrelay.common.runtime_utils import env_int
from soundrelay.player.api_client import ProxyClient

log = get_logger("player.streams")

# Shorter than the proxy's 24h / 1h so the session never serves an entry
# the proxy has already evicted.
CLIENT_CACHE_PRIMARY_TTL = env_int("CLIENT_CACHE_PRIMARY_TTL", "82800")   # 23 hours
CLIENT_CACHE_FALLBACK_TTL = env_int("CLIENT_CACHE_FALLBACK_TTL", "1800")  # 30 minutes


class ClientStreamResolver:
    """Looks in the session cache, then asks the proxy.

    The session cache may be empty at any time and is never authoritative:
    a miss always goes to the network.
    """

    def __init__(self, api: ProxyClient, cache: Optional[StreamCache] = None):
        self.api = api
        self.cache = cache or StreamCache(
            "session", CLIENT_CACHE_PRIMARY_TTL, CLIENT_CACHE_FALLBACK_TTL
        )

    async def resolve(self, track: Track) -> ResolvedStream:
        key = stream_cache_key(track)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug(f"Using cached stream URL for {key}")
            return cached

        try:
            stream = await self.api.resolve_stream(track)
        except NetworkFailure as e:
            raise ResolutionFailure(f"Failed to load audio: {e}", track_id=track.id) from e

        # Never keep a URL past the expiry the proxy announced
        ttl = min(self.cache.ttl_for(stream), stream.expires_at - self.cache.now())
        if ttl > 0:
            for k in self._keys(track, stream):
                self.cache.set(k, stream, ttl)
        return stream

    @staticmethod
    def _keys(track: Track, stream: Optional[ResolvedStream] = None) -> set[str]:
        """Every key an entry for ``track`` may live under."""
        keys = {stream_cache_key(track)}
        if track.title:
            keys.add(normalize_key(track.title, track.artist))
        for vid in (track.video_id, stream.video_id if stream is not None else None):
            if vid:
                keys.add(video_key(vid))
        return keys

    def invalidate(self, track: Track) -> None:
        """Forget ``track`` whether it is looked up by title or by video id."""
        for k in self._keys(track):
            self.cache.delete(k)

    def clear(self) -> int:
        cleared = self.cache.clear()
        log.info(f"Session stream cache cleared ({cleared} entries)")
        return cleared
