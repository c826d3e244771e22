"""Assemble upstream multimodal requests."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ..schemas.generate import ConversationTurn, GenerateRequest
from .models import DEFAULT_MODEL_KEY, ModelSpec, resolve_model

logger = logging.getLogger(__name__)

_DATA_URI_PATTERN = re.compile(
    r"^data:(?P<mime>image/[A-Za-z0-9.+-]+);base64,(?P<data>[A-Za-z0-9+/=\s]+)$",
    re.DOTALL,
)

_MODALITIES: dict[str, list[str]] = {
    "Image": ["IMAGE"],
    "Text": ["TEXT"],
    "Image_Text": ["TEXT", "IMAGE"],
}

_ROLE_MAP = {"user": "user", "assistant": "model"}

STYLE_ANALYSIS_PROMPT = "请分析这张图片的整体视觉风格，生成风格描述提示词："
DEFAULT_STYLE_MODEL = "gemini-2.5-flash"


@dataclass(frozen=True)
class UpstreamRequest:
    """A fully resolved upstream call: target model plus JSON body."""

    model: str
    body: dict[str, Any]
    spec: ModelSpec | None = None


def parse_data_uri(value: str) -> dict[str, str] | None:
    """Return an ``inlineData`` mapping for an image data URI, or None."""

    if not isinstance(value, str):
        return None
    match = _DATA_URI_PATTERN.match(value.strip())
    if match is None:
        return None
    data = re.sub(r"\s+", "", match.group("data"))
    if not data:
        return None
    return {"mimeType": match.group("mime"), "data": data}


def _history_contents(
    history: Sequence[ConversationTurn], limit: int
) -> list[dict[str, Any]]:
    if limit <= 0:
        return []
    contents: list[dict[str, Any]] = []
    for turn in history[-limit:]:
        text = turn.content.strip()
        if not text:
            continue
        contents.append({"role": _ROLE_MAP[turn.role], "parts": [{"text": text}]})
    return contents


def _image_parts(images: Iterable[str]) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    for position, image in enumerate(images):
        inline = parse_data_uri(image)
        if inline is None:
            logger.debug("Dropping malformed reference image at position %d", position)
            continue
        parts.append({"inlineData": inline})
    return parts


def _generation_config(
    spec: ModelSpec, request: GenerateRequest
) -> dict[str, Any] | None:
    if spec.kind == "image":
        config: dict[str, Any] = {
            "responseModalities": list(_MODALITIES[request.modalities])
        }
        if spec.supports_image_config:
            image_config: dict[str, Any] = {}
            if request.aspect_ratio != "auto":
                image_config["aspectRatio"] = request.aspect_ratio
            if spec.supports_resolution and request.resolution:
                image_config["imageSize"] = request.resolution.upper()
            if image_config:
                config["imageConfig"] = image_config
        return config

    if request.thinking_level:
        return {
            "thinkingConfig": {
                "thinkingLevel": request.thinking_level,
                "includeThoughts": True,
            }
        }
    return None


def build_generation_request(
    request: GenerateRequest,
    *,
    history_limit: int,
    default_model: str = DEFAULT_MODEL_KEY,
) -> UpstreamRequest:
    """Build the upstream request for a validated generation payload."""

    spec, upstream_model = resolve_model(
        request.model, default_key=default_model, mapping=request.model_mapping
    )

    new_turn_parts: list[dict[str, Any]] = [{"text": request.prompt}]
    new_turn_parts.extend(_image_parts(request.reference_images))

    contents = _history_contents(request.conversation_history, history_limit)
    contents.append({"role": "user", "parts": new_turn_parts})

    body: dict[str, Any] = {"contents": contents}

    system_style = (request.system_style or "").strip()
    if system_style:
        body["systemInstruction"] = {"parts": [{"text": system_style}]}

    generation_config = _generation_config(spec, request)
    if generation_config:
        body["generationConfig"] = generation_config

    logger.debug(
        "Built upstream request model=%s history=%d images=%d",
        upstream_model,
        len(contents) - 1,
        len(new_turn_parts) - 1,
    )
    return UpstreamRequest(model=upstream_model, body=body, spec=spec)


def build_style_request(
    image_data: str,
    *,
    prompt: str | None = None,
    model: str | None = None,
) -> UpstreamRequest | None:
    """Build the style-description request; None when the image is unusable."""

    inline = parse_data_uri(image_data)
    if inline is None:
        return None
    body: dict[str, Any] = {
        "contents": [
            {
                "role": "user",
                "parts": [{"text": STYLE_ANALYSIS_PROMPT}, {"inlineData": inline}],
            }
        ]
    }
    if prompt and prompt.strip():
        body["systemInstruction"] = {"parts": [{"text": prompt.strip()}]}
    return UpstreamRequest(model=model or DEFAULT_STYLE_MODEL, body=body)


__all__ = [
    "UpstreamRequest",
    "build_generation_request",
    "build_style_request",
    "parse_data_uri",
]
