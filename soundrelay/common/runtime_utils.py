"""Shared runtime helpers: env parsing and HTTP client construction."""

from __future__ import annotations

import os
from typing import Optional

import httpx

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 10.0

# Realistic browser User-Agent for upstream metadata requests
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


def env_int(name: str, default: str) -> int:
    """Parse an integer env var using a string default value."""
    return int(os.getenv(name, default))


def env_float(name: str, default: str) -> float:
    """Parse a float env var using a string default value."""
    return float(os.getenv(name, default))


def env_str(name: str, default: str) -> str:
    """Read a string env var, treating blank values as unset."""
    value = os.getenv(name, "")
    return value.strip() or default


def env_list(name: str, default: str) -> list[str]:
    """Parse a comma separated env var into a list of non-empty items."""
    raw = os.getenv(name) or default
    return [item.strip() for item in raw.split(",") if item.strip()]


def api_timeout(read: float = DEFAULT_READ_TIMEOUT) -> httpx.Timeout:
    """Return the default timeout for JSON API calls."""
    return httpx.Timeout(read, connect=min(DEFAULT_CONNECT_TIMEOUT, read))


def build_api_client(
    base_url: str = "",
    *,
    read_timeout: float = DEFAULT_READ_TIMEOUT,
    user_agent: Optional[str] = USER_AGENT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.AsyncClient:
    """Build an AsyncClient with API timeout defaults.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """
    client_headers = {"Accept": "application/json"}
    if user_agent is not None:
        client_headers["User-Agent"] = user_agent
    if headers:
        client_headers.update(headers)
    client_kwargs = {
        "base_url": base_url,
        "timeout": api_timeout(read_timeout),
        "headers": client_headers,
    }
    if transport is not None:
        client_kwargs["transport"] = transport
    return httpx.AsyncClient(**client_kwargs)
