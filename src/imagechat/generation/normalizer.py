"""Rewrite the provider's SSE stream into the normalized event protocol."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Mapping

import httpx

from .events import (
    DEFAULT_DONE_CONTENT,
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    StreamEvent,
    TextEvent,
    ThoughtEvent,
    ThoughtSignatureEvent,
    UsageMetadataEvent,
)
from .line_buffer import LineBuffer, sse_data

logger = logging.getLogger(__name__)

STREAM_TERMINATOR = "[DONE]"

_STREAM_FAILURES = (httpx.HTTPError, httpx.StreamError, OSError)


class StreamNormalizer:
    """Stateful classifier for a single upstream response.

    Feed it raw lines (``feed_line``) or let ``normalize`` drive it from the
    upstream byte stream. One instance handles exactly one request.
    """

    def __init__(self) -> None:
        self._text: list[str] = []
        self._image_count = 0
        self._finish_reason: str | None = None
        self._stopped = False
        self._failed = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def image_count(self) -> int:
        return self._image_count

    def feed_line(self, line: str) -> list[StreamEvent]:
        if self._stopped:
            return []
        data = sse_data(line)
        if data is None:
            return []
        if data == STREAM_TERMINATOR:
            self._stopped = True
            return []
        try:
            frame = json.loads(data)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Skipping unparsable stream line (%s): %.120s", exc.msg, data
            )
            return []

        frames = frame if isinstance(frame, list) else [frame]
        events: list[StreamEvent] = []
        for item in frames:
            if isinstance(item, Mapping):
                events.extend(self.feed_frame(item))
            if self._stopped:
                break
        return events

    def feed_frame(self, frame: Mapping[str, Any]) -> list[StreamEvent]:
        error = frame.get("error")
        if isinstance(error, Mapping):
            self._stopped = True
            self._failed = True
            logger.error("Upstream reported an error mid-stream: %s", error)
            return [
                ErrorEvent(
                    code=str(error.get("code") or "UPSTREAM_ERROR"),
                    status=str(error.get("status") or "STREAM"),
                    message=str(error.get("message") or "Upstream stream error"),
                )
            ]

        events: list[StreamEvent] = []
        candidates = frame.get("candidates")
        if isinstance(candidates, list) and candidates:
            candidate = candidates[0]
            if isinstance(candidate, Mapping):
                content = candidate.get("content")
                parts = content.get("parts") if isinstance(content, Mapping) else None
                if isinstance(parts, list):
                    for part in parts:
                        if isinstance(part, Mapping):
                            events.extend(self._classify_part(part))
                finish_reason = candidate.get("finishReason")
                if isinstance(finish_reason, str) and finish_reason:
                    self._finish_reason = finish_reason

        usage = frame.get("usageMetadata")
        if isinstance(usage, Mapping):
            total = usage.get("totalTokenCount")
            if isinstance(total, (int, float)) and total > 0:
                events.append(UsageMetadataEvent(dict(usage)))
        return events

    def _classify_part(self, part: Mapping[str, Any]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        text = part.get("text")
        inline = part.get("inlineData")
        if isinstance(text, str) and text:
            if part.get("thought") is True:
                events.append(ThoughtEvent(text))
            else:
                self._text.append(text)
                events.append(TextEvent(text))
        elif isinstance(inline, Mapping):
            data = inline.get("data")
            if isinstance(data, str) and data:
                mime_type = inline.get("mimeType") or "image/png"
                events.append(
                    ImageEvent(
                        content=f"data:{mime_type};base64,{data}",
                        index=self._image_count,
                    )
                )
                self._image_count += 1

        signature = part.get("thoughtSignature")
        if isinstance(signature, str) and signature:
            events.append(ThoughtSignatureEvent(signature))
        return events

    def finish(self) -> DoneEvent:
        text = "".join(self._text)
        return DoneEvent(
            content=text or DEFAULT_DONE_CONTENT,
            image_count=self._image_count,
            has_images=self._image_count > 0,
            finish_reason=self._finish_reason,
        )

    async def normalize(
        self, chunks: AsyncIterable[bytes]
    ) -> AsyncIterator[StreamEvent]:
        """Yield normalized events, always ending in one ``done`` or ``error``."""

        buffer = LineBuffer()
        try:
            async for chunk in chunks:
                for line in buffer.feed(chunk):
                    for event in self.feed_line(line):
                        yield event
                    if self._stopped:
                        break
                if self._stopped:
                    break
            if not self._stopped:
                for line in buffer.flush():
                    for event in self.feed_line(line):
                        yield event
        except _STREAM_FAILURES as exc:
            logger.error("Upstream stream interrupted: %s", exc)
            self._failed = True
            yield ErrorEvent(
                code="STREAM_INTERRUPTED",
                status="STREAM",
                message=str(exc) or exc.__class__.__name__,
            )
            return

        if self._failed:
            return
        done = self.finish()
        logger.info(
            "Upstream stream complete: %d image(s), finish_reason=%s",
            done.image_count,
            done.finish_reason,
        )
        yield done


__all__ = ["STREAM_TERMINATOR", "StreamNormalizer"]
