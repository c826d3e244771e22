"""Server-side generation pipeline: request building and stream normalization."""

from .events import StreamEvent, event_from_payload
from .normalizer import StreamNormalizer
from .request_builder import (
    UpstreamRequest,
    build_generation_request,
    build_style_request,
)

__all__ = [
    "StreamEvent",
    "StreamNormalizer",
    "UpstreamRequest",
    "build_generation_request",
    "build_style_request",
    "event_from_payload",
]
