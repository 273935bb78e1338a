"""Tests for HTTP and OpenAI client construction."""

from __future__ import annotations

import httpx
import pytest

from openai import AsyncOpenAI

from agent_runtime.utils.client_factory import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    create_http_client,
    create_openai_client,
)


class TestCreateHttpClient:
    @pytest.mark.asyncio
    async def test_default_timeouts(self) -> None:
        async with create_http_client() as client:
            assert client.timeout.connect == DEFAULT_CONNECT_TIMEOUT
            assert client.timeout.read == DEFAULT_READ_TIMEOUT

    @pytest.mark.asyncio
    async def test_read_timeout_override(self) -> None:
        async with create_http_client(read_timeout=5.0) as client:
            assert client.timeout.read == 5.0


class TestCreateOpenAIClient:
    @pytest.mark.asyncio
    async def test_base_url_and_http_client(self) -> None:
        http_client = httpx.AsyncClient()

        client = create_openai_client("sk-test", base_url="http://localhost:9999/v1", http_client=http_client)

        assert isinstance(client, AsyncOpenAI)
        assert client.api_key == "sk-test"
        assert str(client.base_url).startswith("http://localhost:9999/v1")
        await http_client.aclose()

    def test_default_base_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

        client = create_openai_client("sk-test")

        assert "api.openai.com" in str(client.base_url)
