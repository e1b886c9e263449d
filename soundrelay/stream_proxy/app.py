"""
soundrelay stream proxy: FastAPI service behind the browser player.

Aggregates the Deezer metadata store (search, charts, genres), the primary
audio resolver (ytmusicapi + yt-dlp) and Genius lyrics under one JSON
contract. Every response is wrapped as
``{success, data?, error?, cached?, fallback?, message?}``.

Stream resolution runs through :class:`StreamResolver` with a shared
stream cache and a global rate limit on the primary resolver.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from soundrelay.common.cache import StreamCache, TTLCache
from soundrelay.common.errors import ProviderError, RateLimited, ResolutionFailure
from soundrelay.common.logging_utils import configure_service_logger
from soundrelay.common.models import Track, failure, normalize_key, ok
from soundrelay.common.rate_limiter import RateLimiter
from soundrelay.common.runtime_utils import env_float, env_int, env_list
from soundrelay.stream_proxy.deezer import DeezerClient
from soundrelay.stream_proxy.genius import GeniusClient
from soundrelay.stream_proxy.resolver import StreamResolver
from soundrelay.stream_proxy.youtube_audio import YouTubeAudioResolver

# ── Logging ─────────────────────────────────────────────────────────
log = configure_service_logger("stream-proxy")

# ── FastAPI app ─────────────────────────────────────────────────────
app = FastAPI(title="soundrelay stream proxy", version="1.0.0")

# ════════════════════════════════════════════════════════════════════
# Configuration
# ════════════════════════════════════════════════════════════════════

PORT = env_int("PORT", "3000")
CORS_ORIGINS = env_list(
    "CORS_ORIGINS",
    "http://localhost:8000,http://127.0.0.1:8000,http://localhost:5500",
)

# The primary resolver shells out to an extractor that is slow and that the
# upstream platform throttles, so all calls share one admission window.
PRIMARY_RATE_LIMIT = env_int("PRIMARY_RATE_LIMIT", "5")
PRIMARY_RATE_WINDOW_SECONDS = env_float("PRIMARY_RATE_WINDOW_SECONDS", "60")

# Shared stream tier: full tracks live long, previews short.
STREAM_CACHE_PRIMARY_TTL = env_int("STREAM_CACHE_PRIMARY_TTL", "86400")   # 24 hours
STREAM_CACHE_FALLBACK_TTL = env_int("STREAM_CACHE_FALLBACK_TTL", "3600")  # 1 hour
API_CACHE_TTL = env_int("API_CACHE_TTL", "1800")                          # 30 minutes
LYRICS_CACHE_TTL = env_int("LYRICS_CACHE_TTL", "604800")                  # 7 days
CACHE_SWEEP_INTERVAL = env_int("CACHE_SWEEP_INTERVAL", "600")             # 10 minutes

DEFAULT_TRACK_LIMIT = 25
MAX_TRACK_LIMIT = 100

# ── Shared state ────────────────────────────────────────────────────
_stream_cache = StreamCache("stream", STREAM_CACHE_PRIMARY_TTL, STREAM_CACHE_FALLBACK_TTL)
_api_cache: TTLCache[list] = TTLCache("api", API_CACHE_TTL)
_lyrics_cache: TTLCache[dict] = TTLCache("lyrics", LYRICS_CACHE_TTL)
_rate_limiter = RateLimiter(PRIMARY_RATE_LIMIT, PRIMARY_RATE_WINDOW_SECONDS)

_deezer = DeezerClient()
_youtube = YouTubeAudioResolver()
_genius = GeniusClient()
_resolver = StreamResolver(_youtube, _deezer, _stream_cache, _rate_limiter)

_sweep_task: Optional[asyncio.Task] = None


def _all_caches() -> list[TTLCache]:
    return [_stream_cache, _api_cache, _lyrics_cache]


# ════════════════════════════════════════════════════════════════════
# Models
# ════════════════════════════════════════════════════════════════════

class StreamResolveRequest(BaseModel):
    """Either ``title`` + ``artist`` or a known ``videoId``."""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    artist: Optional[str] = None
    video_id: Optional[str] = Field(default=None, alias="videoId")
    track_id: Optional[str] = Field(default=None, alias="id")

    def to_track(self) -> Track:
        title = (self.title or "").strip()
        artist = (self.artist or "").strip()
        return Track(
            id=self.track_id or self.video_id or normalize_key(title, artist),
            title=title,
            artist=artist,
            video_id=self.video_id or None,
        )


# ════════════════════════════════════════════════════════════════════
# Middleware & error envelope
# ════════════════════════════════════════════════════════════════════

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    log.info(
        "%s %s -> %s in %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - start) * 1000.0,
    )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_envelope(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "Endpoint not found"
    return JSONResponse(status_code=exc.status_code, content=failure(message), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_envelope(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid {location}: {first.get('msg', 'bad request')}" if location else "Invalid request"
    return JSONResponse(status_code=400, content=failure(message))


@app.exception_handler(Exception)
async def unexpected_error_envelope(request: Request, exc: Exception):
    log.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=failure(str(exc) or "Internal Server Error"))


def _require(value: Optional[str], name: str) -> str:
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail=f'Query parameter "{name}" is required')
    return value.strip()


def _clamp_limit(limit: Optional[int], default: int) -> int:
    if not limit or limit < 1:
        return default
    return min(limit, MAX_TRACK_LIMIT)


async def _cached_tracks(cache_key: str, loader: Callable[[], Awaitable[list[Track]]]) -> dict:
    """Serve a track list from the API cache, loading it on a miss."""
    cached = _api_cache.get(cache_key)
    if cached is not None:
        return ok(cached, cached=True)
    try:
        tracks = await loader()
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    data = [t.to_storage() for t in tracks]
    _api_cache.set(cache_key, data)
    return ok(data, cached=False)


# ════════════════════════════════════════════════════════════════════
# Routes
# ════════════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "stream-proxy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "rateLimit": _rate_limiter.snapshot(),
    }


# ── Songs (metadata store) ──────────────────────────────────────────

@app.get("/songs/search")
async def songs_search(q: Optional[str] = None, limit: Optional[int] = None):
    query = _require(q, "q")
    count = _clamp_limit(limit, DEFAULT_TRACK_LIMIT)
    return await _cached_tracks(
        f"search:{query.lower()}:{count}",
        lambda: _deezer.search_tracks(query, count),
    )


@app.get("/songs/charts")
async def songs_charts(limit: Optional[int] = None):
    count = _clamp_limit(limit, DEFAULT_TRACK_LIMIT)
    return await _cached_tracks(f"charts:{count}", lambda: _deezer.chart_tracks(count))


@app.get("/songs/genre/{genre_id}")
async def songs_by_genre(genre_id: str, limit: Optional[int] = None):
    count = _clamp_limit(limit, DEFAULT_TRACK_LIMIT)
    return await _cached_tracks(
        f"genre:{genre_id}:{count}",
        lambda: _deezer.genre_tracks(genre_id, count),
    )


@app.get("/songs/artist/{artist_id}/top")
async def songs_artist_top(artist_id: str, limit: Optional[int] = None):
    count = _clamp_limit(limit, 10)
    return await _cached_tracks(
        f"artist:{artist_id}:{count}",
        lambda: _deezer.artist_top_tracks(artist_id, count),
    )


@app.get("/songs/{track_id}")
async def song_by_id(track_id: str):
    try:
        track = await _deezer.track_by_id(track_id)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ok(track.to_storage())


# ── Streaming ───────────────────────────────────────────────────────

def _stream_response(stream) -> dict:
    return ok(
        stream.descriptor(),
        cached=stream.cached,
        fallback=stream.is_preview,
        message=stream.message,
    )


@app.post("/stream/resolve")
async def stream_resolve(req: StreamResolveRequest):
    """Resolve a playable URL: cache -> primary (rate limited) -> preview."""
    has_title = bool((req.title or "").strip() and (req.artist or "").strip())
    if not has_title and not req.video_id:
        raise HTTPException(status_code=400, detail="Either title and artist, or videoId, is required")

    try:
        stream = await _resolver.resolve(req.to_track())
    except RateLimited as e:
        retry_after = max(1, int(e.retry_after or 0))
        raise HTTPException(status_code=429, detail=str(e), headers={"Retry-After": str(retry_after)})
    except ResolutionFailure as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _stream_response(stream)


@app.get("/stream/youtube/{video_id}")
async def stream_youtube(video_id: str):
    try:
        stream = await _resolver.resolve_video(video_id)
    except RateLimited as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ResolutionFailure as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _stream_response(stream)


@app.get("/stream/search")
async def stream_search(q: Optional[str] = None, maxResults: int = Query(10, ge=1, le=50)):
    query = _require(q, "q")
    try:
        results = await _youtube.search(query, maxResults)
    except Exception as e:
        log.error(f"Video search failed for {query!r}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return ok(results)


# ── Lyrics ──────────────────────────────────────────────────────────

@app.get("/lyrics")
async def lyrics(title: Optional[str] = None, artist: Optional[str] = None):
    if not (title and title.strip() and artist and artist.strip()):
        raise HTTPException(status_code=400, detail="Both title and artist are required")

    cache_key = normalize_key(title, artist)
    cached = _lyrics_cache.get(cache_key)
    if cached is not None:
        return ok(cached, cached=True)

    try:
        preview = await _genius.lyrics_preview(title.strip(), artist.strip())
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if preview is None:
        raise HTTPException(status_code=404, detail="No lyrics found")

    _lyrics_cache.set(cache_key, preview)
    return ok(preview, cached=False)


@app.get("/lyrics/search")
async def lyrics_search(q: Optional[str] = None, limit: int = Query(5, ge=1, le=20)):
    query = _require(q, "q")
    try:
        results = await _genius.search(query, limit)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return ok(results)


@app.get("/lyrics/status")
async def lyrics_status():
    return ok({"status": "online", "cache": _lyrics_cache.stats()}, message="Lyrics service is operational")


# ── Cache admin ─────────────────────────────────────────────────────

@app.post("/cache/clear")
async def cache_clear():
    cleared = {cache.name: cache.clear() for cache in _all_caches()}
    log.info(f"Caches cleared: {cleared}")
    return ok(cleared, message="All caches cleared")


@app.get("/cache/stats")
async def cache_stats():
    return ok({cache.name: cache.stats() for cache in _all_caches()})


# ── Lifecycle ───────────────────────────────────────────────────────

async def _sweep_caches_forever(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        dropped = sum(cache.sweep() for cache in _all_caches())
        if dropped:
            log.debug(f"Swept {dropped} expired cache entries")


@app.on_event("startup")
async def startup():
    global _sweep_task
    log.info("Stream proxy starting up")
    log.info(
        f"Primary rate limit: {PRIMARY_RATE_LIMIT} per {PRIMARY_RATE_WINDOW_SECONDS:.0f}s, "
        f"stream TTLs: primary={STREAM_CACHE_PRIMARY_TTL}s fallback={STREAM_CACHE_FALLBACK_TTL}s, "
        f"api_cache_ttl={API_CACHE_TTL}s, lyrics_cache_ttl={LYRICS_CACHE_TTL}s"
    )
    _sweep_task = asyncio.create_task(_sweep_caches_forever(CACHE_SWEEP_INTERVAL))


@app.on_event("shutdown")
async def shutdown():
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        _sweep_task = None
    for cache in _all_caches():
        cache.sweep()
    log.info("Stream proxy shutting down")


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
