from __future__ import annotations

import json

import httpx
import pytest
from pydantic import AnyHttpUrl, SecretStr

from imagechat.config import Settings
from imagechat.gemini import GeminiClient, UpstreamError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_settings(**overrides) -> Settings:
    values = {
        "gemini_api_key": SecretStr("server-key"),
        "gemini_base_url": AnyHttpUrl("https://gemini.example.com/v1beta/"),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.mark.anyio
async def test_open_stream_posts_to_stream_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"data: {}\n\n")

    client = GeminiClient(
        make_settings(), "caller-key", transport=httpx.MockTransport(handler)
    )
    response = await client.open_stream("gemini-test", {"contents": []})
    try:
        assert response.status_code == 200
        assert await response.aread() == b"data: {}\n\n"
    finally:
        await response.aclose()
        await client.aclose()

    request = seen[0]
    assert str(request.url) == (
        "https://gemini.example.com/v1beta/models/gemini-test:streamGenerateContent?alt=sse"
    )
    assert request.headers["x-goog-api-key"] == "caller-key"
    assert json.loads(request.content) == {"contents": []}


@pytest.mark.anyio
async def test_structured_upstream_error_becomes_500() -> None:
    body = {
        "error": {
            "code": 400,
            "message": "API key not valid. Please pass a valid API key.",
            "status": "INVALID_ARGUMENT",
        }
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=body)

    client = GeminiClient(make_settings(), "bad", transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError) as excinfo:
        await client.open_stream("gemini-test", {})
    await client.aclose()

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == {
        "code": "400",
        "status": "INVALID_ARGUMENT",
        "message": "API key not valid. Please pass a valid API key.",
    }


@pytest.mark.anyio
async def test_unstructured_error_body_is_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="x" * 800)

    client = GeminiClient(
        make_settings(upstream_error_body_limit=500),
        "key",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(UpstreamError) as excinfo:
        await client.open_stream("gemini-test", {})
    await client.aclose()

    detail = excinfo.value.detail
    assert excinfo.value.status_code == 500
    assert detail["status"] == "HTTP 503"
    assert detail["code"] == "UPSTREAM_ERROR"
    assert detail["message"] == "x" * 500


@pytest.mark.anyio
async def test_transport_failure_becomes_502() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = GeminiClient(make_settings(), "key", transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError) as excinfo:
        await client.open_stream("gemini-test", {})
    await client.aclose()

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail["code"] == "UPSTREAM_UNAVAILABLE"


def test_extract_error_detail_variants() -> None:
    listed = json.dumps([{"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "quota"}}])
    assert GeminiClient._extract_error_detail(listed.encode(), 429) == {
        "code": "429",
        "status": "RESOURCE_EXHAUSTED",
        "message": "quota",
    }
    assert GeminiClient._extract_error_detail(b'{"error": "nope"}', 403) == {
        "code": "403",
        "status": "HTTP 403",
        "message": "nope",
    }
    assert GeminiClient._extract_error_detail(b"", 500)["code"] == "UPSTREAM_ERROR"
