"""Normalized stream event variants.

Provider frames are resolved into these variants once, at the bridge; every
consumer downstream switches over this closed set instead of re-reading
provider JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Union

DEFAULT_DONE_CONTENT = "生成完成"


@dataclass(frozen=True)
class ThoughtEvent:
    content: str
    type: ClassVar[str] = "thought"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class TextEvent:
    content: str
    type: ClassVar[str] = "text"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ImageEvent:
    content: str
    index: int
    type: ClassVar[str] = "image"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "index": self.index}


@dataclass(frozen=True)
class ThoughtSignatureEvent:
    content: str
    type: ClassVar[str] = "thoughtSignature"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class UsageMetadataEvent:
    content: dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "usageMetadata"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "content": dict(self.content)}


@dataclass(frozen=True)
class DoneEvent:
    content: str
    image_count: int
    has_images: bool
    finish_reason: str | None = None
    type: ClassVar[str] = "done"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "content": self.content,
            "imageCount": self.image_count,
            "hasImages": self.has_images,
        }
        if self.finish_reason is not None:
            payload["finishReason"] = self.finish_reason
        return payload


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    status: str
    message: str
    type: ClassVar[str] = "error"

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "code": self.code,
            "status": self.status,
            "message": self.message,
        }

    def as_error(self) -> dict[str, str]:
        return {"code": self.code, "status": self.status, "message": self.message}


StreamEvent = Union[
    ThoughtEvent,
    TextEvent,
    ImageEvent,
    ThoughtSignatureEvent,
    UsageMetadataEvent,
    DoneEvent,
    ErrorEvent,
]


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def event_from_payload(payload: Mapping[str, Any]) -> StreamEvent | None:
    """Rebuild an event from a normalized frame; unknown types yield None."""

    kind = payload.get("type")
    if kind == ThoughtEvent.type:
        return ThoughtEvent(_as_str(payload.get("content")))
    if kind == TextEvent.type:
        return TextEvent(_as_str(payload.get("content")))
    if kind == ImageEvent.type:
        index = payload.get("index")
        return ImageEvent(
            _as_str(payload.get("content")),
            index if isinstance(index, int) else 0,
        )
    if kind == ThoughtSignatureEvent.type:
        return ThoughtSignatureEvent(_as_str(payload.get("content")))
    if kind == UsageMetadataEvent.type:
        content = payload.get("content")
        return UsageMetadataEvent(dict(content) if isinstance(content, Mapping) else {})
    if kind == DoneEvent.type:
        count = payload.get("imageCount")
        finish_reason = payload.get("finishReason")
        return DoneEvent(
            content=_as_str(payload.get("content")),
            image_count=count if isinstance(count, int) else 0,
            has_images=bool(payload.get("hasImages")),
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )
    if kind == ErrorEvent.type:
        return ErrorEvent(
            code=_as_str(payload.get("code"), "STREAM_ERROR"),
            status=_as_str(payload.get("status"), "STREAM"),
            message=_as_str(payload.get("message"), "Stream failed"),
        )
    return None


__all__ = [
    "DEFAULT_DONE_CONTENT",
    "DoneEvent",
    "ErrorEvent",
    "ImageEvent",
    "StreamEvent",
    "TextEvent",
    "ThoughtEvent",
    "ThoughtSignatureEvent",
    "UsageMetadataEvent",
    "event_from_payload",
]
