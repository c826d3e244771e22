"""HTTP client for the imagechat server."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from ..generation.events import StreamEvent
from .stream_consumer import iter_stream_events

logger = logging.getLogger(__name__)

DEFAULT_ERROR_CODE = "GENERATION_FAILED"
DEFAULT_ERROR_MESSAGE = "生成失败,请检查API Key是否正确"


class GenerationRequestError(Exception):
    """Raised when the server refuses a request or the connection fails."""

    def __init__(self, error: dict[str, str], status_code: Optional[int] = None):
        super().__init__(error.get("message", DEFAULT_ERROR_MESSAGE))
        self.error = error
        self.status_code = status_code


def parse_error_response(raw: bytes, status_code: int) -> dict[str, str]:
    """Turn a non-200 response body into ``{code, status, message}``."""

    error = {
        "code": DEFAULT_ERROR_CODE,
        "status": f"HTTP {status_code}",
        "message": DEFAULT_ERROR_MESSAGE,
    }
    try:
        payload = json.loads(raw.decode("utf-8", errors="ignore")) if raw else None
    except json.JSONDecodeError:
        return error

    detail = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(detail, dict):
        for key in ("code", "status", "message"):
            value = detail.get(key)
            if value not in (None, ""):
                error[key] = str(value)
    elif isinstance(detail, str) and detail:
        error["message"] = detail
    return error


class StudioApiClient:
    """Stream generations from the imagechat server."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _stream(
        self, path: str, payload: dict[str, Any], api_key: str
    ) -> AsyncIterator[StreamEvent]:
        headers = {"Accept": "text/event-stream"}
        if api_key:
            headers["X-API-Key"] = api_key
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=headers,
                ) as response:
                    if response.status_code != 200:
                        raw = await response.aread()
                        error = parse_error_response(raw, response.status_code)
                        logger.warning(
                            "Server rejected %s with HTTP %d: %s",
                            path,
                            response.status_code,
                            error["message"],
                        )
                        raise GenerationRequestError(error, response.status_code)

                    async for event in iter_stream_events(response.aiter_bytes()):
                        yield event
        except httpx.HTTPError as exc:
            logger.error("Request to %s failed: %s", path, exc)
            raise GenerationRequestError(
                {
                    "code": "NETWORK_ERROR",
                    "status": "NETWORK",
                    "message": str(exc) or exc.__class__.__name__,
                }
            ) from exc

    def stream_generate(
        self, payload: dict[str, Any], api_key: str
    ) -> AsyncIterator[StreamEvent]:
        return self._stream("/api/generate", payload, api_key)

    def stream_style(
        self, payload: dict[str, Any], api_key: str
    ) -> AsyncIterator[StreamEvent]:
        return self._stream("/api/generate-style", payload, api_key)


__all__ = [
    "GenerationRequestError",
    "StudioApiClient",
    "parse_error_response",
]
