"""Generation streaming API routes."""

from __future__ import annotations

import json
import logging
from typing import Any, Type, TypeVar

import httpx
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from sse_starlette.sse import EventSourceResponse

from ..config import Settings, get_settings
from ..gemini import GeminiClient, UpstreamError
from ..generation import (
    StreamNormalizer,
    UpstreamRequest,
    build_generation_request,
    build_style_request,
)
from ..schemas.generate import GenerateRequest, StyleRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_upstream_transport(request: Request) -> httpx.AsyncBaseTransport | None:
    return getattr(request.app.state, "upstream_transport", None)


def _error_response(
    status_code: int, code: str, message: str, **extra: Any
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "status": f"HTTP {status_code}",
        "message": message,
    }
    error.update(extra)
    return JSONResponse(status_code=status_code, content={"error": error})


def _validation_details(exc: ValidationError) -> list[dict[str, str]]:
    details: list[dict[str, str]] = []
    for item in exc.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "body"
        details.append({"field": field, "message": str(item.get("msg", ""))})
    return details


async def _parse_body(
    request: Request, model: Type[ModelT]
) -> ModelT | JSONResponse:
    try:
        raw = await request.json()
    except ValueError:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_REQUEST",
            "Request body must be valid JSON",
        )
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        details = _validation_details(exc)
        logger.info("Rejected %s: %s", model.__name__, details)
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_REQUEST",
            "Invalid request data",
            details=details,
        )


def _resolve_api_key(request: Request, settings: Settings) -> str | None:
    header_key = request.headers.get("X-API-Key", "").strip()
    if header_key:
        return header_key
    if settings.gemini_api_key is not None:
        configured = settings.gemini_api_key.get_secret_value().strip()
        if configured:
            return configured
    return None


def _missing_key_response() -> JSONResponse:
    return _error_response(
        status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "API key is required"
    )


async def _stream_upstream(
    client: GeminiClient, upstream: UpstreamRequest
) -> Response:
    try:
        response = await client.open_stream(upstream.model, upstream.body)
    except UpstreamError as exc:
        await client.aclose()
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    normalizer = StreamNormalizer()

    async def event_publisher():
        try:
            async for event in normalizer.normalize(response.aiter_bytes()):
                yield {"data": json.dumps(event.to_payload(), ensure_ascii=False)}
        finally:
            await response.aclose()
            await client.aclose()

    return EventSourceResponse(event_publisher(), sep="\n")


@router.post("/generate", response_model=None)
async def generate(
    request: Request,
    settings: Settings = Depends(get_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_upstream_transport),
) -> Response:
    """Stream a generation from Gemini as normalized Server-Sent Events."""

    payload = await _parse_body(request, GenerateRequest)
    if isinstance(payload, JSONResponse):
        return payload

    api_key = _resolve_api_key(request, settings)
    if api_key is None:
        return _missing_key_response()

    upstream = build_generation_request(
        payload,
        history_limit=settings.history_max_messages,
        default_model=settings.default_model,
    )
    logger.info(
        "Generation requested: model=%s references=%d history=%d",
        upstream.model,
        len(payload.reference_images),
        len(payload.conversation_history),
    )
    client = GeminiClient(settings, api_key, transport=transport)
    return await _stream_upstream(client, upstream)


@router.post("/generate-style", response_model=None)
async def generate_style(
    request: Request,
    settings: Settings = Depends(get_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_upstream_transport),
) -> Response:
    """Stream a textual style description of a single image."""

    payload = await _parse_body(request, StyleRequest)
    if isinstance(payload, JSONResponse):
        return payload

    api_key = _resolve_api_key(request, settings)
    if api_key is None:
        return _missing_key_response()

    upstream = build_style_request(
        payload.image_data,
        prompt=payload.style_generator_prompt,
        model=payload.style_generator_model,
    )
    if upstream is None:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_REQUEST",
            "imageData must be a base64 image data URI",
            details=[{"field": "imageData", "message": "Invalid image data URI"}],
        )

    client = GeminiClient(settings, api_key, transport=transport)
    return await _stream_upstream(client, upstream)


__all__ = ["get_upstream_transport", "router"]
