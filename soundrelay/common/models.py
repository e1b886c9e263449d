"""Canonical data shapes passed between the proxy and the player.

Provider payloads are normalised into these models at the ingestion
boundary; nothing downstream inspects raw provider dictionaries.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_WHITESPACE_RE = re.compile(r"\s+")


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceKind(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class FallbackReason(str, Enum):
    """Why a fallback (preview) stream was served instead of a full track."""

    RATE_LIMITED = "rate_limited"
    PRIMARY_UNAVAILABLE = "primary_unavailable"


class ResolvedStream(CamelModel):
    """A playable audio URL plus where it came from and when it goes stale."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    stream_url: str
    source_kind: SourceKind = Field(alias="source")
    expires_at: float
    title: str = ""
    artist: str = ""
    duration_seconds: int = Field(default=0, alias="duration")
    thumbnail: Optional[str] = None
    video_id: Optional[str] = None
    reason: Optional[FallbackReason] = None
    message: Optional[str] = None
    # Set on copies handed out from a cache; never part of the descriptor.
    cached: bool = Field(default=False, exclude=True)

    @property
    def is_preview(self) -> bool:
        return self.source_kind is SourceKind.FALLBACK

    def as_cached(self) -> "ResolvedStream":
        return self.model_copy(update={"cached": True})

    def descriptor(self) -> dict[str, Any]:
        """Wire shape returned by ``POST /stream/resolve``."""
        return self.model_dump(mode="json", by_alias=True)


class Track(CamelModel):
    """Immutable track value; identity is ``id`` alone.

    ``resolved_stream`` is ephemeral session state and never serialised, and
    ``video_id`` is remembered from a previous primary resolution so later
    lookups can skip the search step.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    title: str
    artist: str = "Unknown Artist"
    album: Optional[str] = None
    duration_seconds: int = Field(default=0, alias="duration")
    cover_url: Optional[str] = Field(default=None, alias="cover")
    preview_url: Optional[str] = Field(default=None, alias="preview")
    provider_ref: Optional[str] = None
    video_id: Optional[str] = None
    resolved_stream: Optional[ResolvedStream] = Field(default=None, exclude=True)

    @field_validator("id", "provider_ref", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Track):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def with_stream(self, stream: ResolvedStream) -> "Track":
        """Return a copy carrying ``stream`` (and its video id, if any)."""
        return self.model_copy(
            update={
                "resolved_stream": stream,
                "video_id": stream.video_id or self.video_id,
            }
        )

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_key(title: str, artist: str) -> str:
    """Build the ``title_artist`` cache key (lower-cased, whitespace collapsed)."""
    title_part = _WHITESPACE_RE.sub(" ", (title or "").strip().lower())
    artist_part = _WHITESPACE_RE.sub(" ", (artist or "").strip().lower())
    return f"{title_part}_{artist_part}"


def video_key(video_id: str) -> str:
    return f"video:{video_id}"


def stream_cache_key(track: Track) -> str:
    """Prefer the provider video id when the track carries one."""
    if track.video_id:
        return video_key(track.video_id)
    return normalize_key(track.title, track.artist)


class ApiResponse(BaseModel):
    """Uniform JSON envelope wrapped around every proxy response."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    cached: Optional[bool] = None
    fallback: Optional[bool] = None
    message: Optional[str] = None

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    """Shortcut for a successful envelope."""
    return ApiResponse(success=True, data=data, **extra).payload()


def failure(error: str, **extra: Any) -> dict[str, Any]:
    return ApiResponse(success=False, error=error, **extra).payload()
