"""Read the normalized event stream and accumulate a turn's results."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Optional

from ..generation.events import (
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    StreamEvent,
    TextEvent,
    ThoughtEvent,
    ThoughtSignatureEvent,
    UsageMetadataEvent,
    event_from_payload,
)
from ..generation.line_buffer import LineBuffer, sse_data
from ..generation.normalizer import STREAM_TERMINATOR

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_ERROR = {
    "code": "STREAM_INCOMPLETE",
    "status": "STREAM",
    "message": "连接意外中断,未收到完成信号",
}


def _parse_line(line: str) -> Optional[StreamEvent]:
    data = sse_data(line)
    if data is None or data == STREAM_TERMINATOR:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping unparsable event line (%s): %.120s", exc.msg, data)
        return None
    if not isinstance(payload, dict):
        return None
    event = event_from_payload(payload)
    if event is None:
        logger.debug("Ignoring unknown event type %r", payload.get("type"))
    return event


async def iter_stream_events(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[StreamEvent]:
    """Yield events from a normalized SSE body, in arrival order."""

    buffer = LineBuffer()
    async for chunk in chunks:
        for line in buffer.feed(chunk):
            event = _parse_line(line)
            if event is not None:
                yield event
    for line in buffer.flush():
        event = _parse_line(line)
        if event is not None:
            yield event


@dataclass
class StreamOutcome:
    text: str = ""
    thought: str = ""
    thought_signature: Optional[str] = None
    usage: Optional[dict[str, Any]] = None
    images: list[str] = field(default_factory=list)
    done: Optional[DoneEvent] = None
    error: Optional[dict[str, str]] = None

    @property
    def succeeded(self) -> bool:
        return self.done is not None and self.error is None


class StreamAccumulator:
    """Collect one request's events until its terminal ``done`` or ``error``.

    Thoughts, signatures and usage are kept for display only. Anything that
    arrives after the terminal event is ignored.
    """

    def __init__(self) -> None:
        self._text: list[str] = []
        self._thought: list[str] = []
        self._signatures: list[str] = []
        self._usage: Optional[dict[str, Any]] = None
        self._images: list[str] = []
        self._done: Optional[DoneEvent] = None
        self._error: Optional[dict[str, str]] = None

    @property
    def finished(self) -> bool:
        return self._done is not None or self._error is not None

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def image_count(self) -> int:
        return len(self._images)

    def apply(self, event: StreamEvent) -> None:
        if self.finished:
            return
        if isinstance(event, TextEvent):
            self._text.append(event.content)
        elif isinstance(event, ThoughtEvent):
            self._thought.append(event.content)
        elif isinstance(event, ImageEvent):
            self._images.append(event.content)
        elif isinstance(event, ThoughtSignatureEvent):
            self._signatures.append(event.content)
        elif isinstance(event, UsageMetadataEvent):
            self._usage = dict(event.content)
        elif isinstance(event, DoneEvent):
            self._done = event
        elif isinstance(event, ErrorEvent):
            self._error = event.as_error()

    def fail(self, error: dict[str, str]) -> None:
        if not self.finished:
            self._error = dict(error)

    def outcome(self) -> StreamOutcome:
        error = self._error
        if not self.finished:
            error = dict(INCOMPLETE_STREAM_ERROR)
        return StreamOutcome(
            text=self.text,
            thought="".join(self._thought),
            thought_signature="".join(self._signatures) or None,
            usage=self._usage,
            images=list(self._images),
            done=self._done,
            error=error,
        )


__all__ = [
    "INCOMPLETE_STREAM_ERROR",
    "StreamAccumulator",
    "StreamOutcome",
    "iter_stream_events",
]
