"""
OpenAI client factory utilities.
Centralizes AsyncOpenAI client creation for the agents SDK default client.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0  # streamed turns can pause for minutes between deltas
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


def create_http_client(read_timeout: float | None = None) -> httpx.AsyncClient:
    """Create an HTTP client with timeouts suited to streaming.

    Args:
        read_timeout: Read timeout in seconds (default: 600s)
    """
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )
    return httpx.AsyncClient(timeout=timeout)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create an AsyncOpenAI client; ``base_url`` targets compatible endpoints."""
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
