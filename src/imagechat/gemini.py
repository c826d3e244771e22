"""Gemini streaming client utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Wrap transport or API failures when communicating with Gemini."""

    def __init__(self, status_code: int, detail: dict[str, str]):
        super().__init__(detail.get("message", "Upstream request failed"))
        self.status_code = status_code
        self.detail = detail


class GeminiClient:
    """Client responsible for opening streaming generations against Gemini."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        api_key: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._api_key = api_key
        self._transport = transport
        self._owned_client: Optional[httpx.AsyncClient] = None

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
        if self._transport is not None:
            if self._owned_client is None:
                self._owned_client = httpx.AsyncClient(
                    transport=self._transport, timeout=timeout
                )
            return self._owned_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @property
    def _base_url(self) -> str:
        """Return the Gemini API base URL without a trailing slash."""

        return str(self._settings.gemini_base_url).rstrip("/")

    def stream_url(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:streamGenerateContent?alt=sse"

    async def open_stream(self, model: str, body: dict[str, Any]) -> httpx.Response:
        """Send the request and return the open streaming response.

        Failures that happen before any byte is streamed raise
        ``UpstreamError``; the caller owns closing the returned response.
        """

        client = await self._get_http_client()
        request = client.build_request(
            "POST",
            self.stream_url(model),
            headers=self._headers,
            json=body,
        )
        logger.debug("Opening upstream stream for model %s", model)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("Upstream request to %s failed: %s", model, exc)
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY,
                {
                    "code": "UPSTREAM_UNAVAILABLE",
                    "status": "UNAVAILABLE",
                    "message": str(exc) or exc.__class__.__name__,
                },
            ) from exc

        if response.status_code >= 400:
            try:
                raw = await response.aread()
            finally:
                await response.aclose()
            detail = self._extract_error_detail(
                raw,
                response.status_code,
                limit=self._settings.upstream_error_body_limit,
            )
            logger.error(
                "Upstream returned HTTP %d for model %s: %s",
                response.status_code,
                model,
                detail.get("message"),
            )
            raise UpstreamError(status.HTTP_500_INTERNAL_SERVER_ERROR, detail)

        return response

    async def aclose(self) -> None:
        """Close the client created for an injected transport, if any."""

        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled client", exc_info=True)

    @staticmethod
    def _extract_error_detail(
        raw: bytes, status_code: int, *, limit: int = 500
    ) -> dict[str, str]:
        fallback_status = f"HTTP {status_code}"
        if not raw:
            return {
                "code": "UPSTREAM_ERROR",
                "status": fallback_status,
                "message": "Gemini returned an empty error response.",
            }
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            message = error.get("message")
            return {
                "code": str(error.get("code") or status_code),
                "status": str(error.get("status") or fallback_status),
                "message": message if isinstance(message, str) and message else text[:limit],
            }
        if isinstance(error, str) and error:
            return {"code": str(status_code), "status": fallback_status, "message": error}

        return {
            "code": "UPSTREAM_ERROR",
            "status": fallback_status,
            "message": text[:limit],
        }


__all__ = ["GeminiClient", "UpstreamError"]
