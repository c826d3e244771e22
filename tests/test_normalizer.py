from __future__ import annotations

import json
from typing import Iterable

import httpx
import pytest

from imagechat.generation.events import (
    DoneEvent,
    ErrorEvent,
    ImageEvent,
    TextEvent,
    ThoughtEvent,
    ThoughtSignatureEvent,
    UsageMetadataEvent,
)
from imagechat.generation.normalizer import StreamNormalizer


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _frame(payload: object, *, newline: str = "\r\n") -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}{newline}{newline}".encode()


def _parts(*parts: dict, **candidate: object) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}, **candidate}]}


UPSTREAM = b"".join(
    [
        _frame(_parts({"text": "构思画面…", "thought": True})),
        _frame(_parts({"inlineData": {"mimeType": "image/png", "data": "iVBORw0KGgo="}})),
        b": keep-alive\r\n\r\n",
        _frame(
            {
                **_parts(
                    {"text": "完成了 ✓", "thoughtSignature": "sig-1"},
                    finishReason="STOP",
                ),
                "usageMetadata": {"promptTokenCount": 10, "totalTokenCount": 42},
            }
        ),
    ]
)

EXPECTED = [
    ThoughtEvent("构思画面…"),
    ImageEvent("data:image/png;base64,iVBORw0KGgo=", 0),
    TextEvent("完成了 ✓"),
    ThoughtSignatureEvent("sig-1"),
    UsageMetadataEvent({"promptTokenCount": 10, "totalTokenCount": 42}),
    DoneEvent("完成了 ✓", image_count=1, has_images=True, finish_reason="STOP"),
]


async def _normalize(chunks: Iterable[bytes]) -> list:
    async def source():
        for chunk in chunks:
            yield chunk

    return [event async for event in StreamNormalizer().normalize(source())]


@pytest.mark.anyio
async def test_classifies_parts_in_source_order() -> None:
    assert await _normalize([UPSTREAM]) == EXPECTED


@pytest.mark.anyio
async def test_split_at_every_offset_yields_identical_events() -> None:
    for offset in range(len(UPSTREAM) + 1):
        events = await _normalize([UPSTREAM[:offset], UPSTREAM[offset:]])
        assert events == EXPECTED, f"split at byte {offset}"


@pytest.mark.anyio
async def test_byte_at_a_time_yields_identical_events() -> None:
    chunks = [UPSTREAM[i : i + 1] for i in range(len(UPSTREAM))]
    assert await _normalize(chunks) == EXPECTED


@pytest.mark.anyio
async def test_trailing_line_without_newline_is_processed() -> None:
    raw = _frame(_parts({"text": "tail"})).rstrip(b"\r\n")
    events = await _normalize([raw])
    assert events == [TextEvent("tail"), DoneEvent("tail", 0, False)]


@pytest.mark.anyio
async def test_zero_images_emits_single_done_with_placeholder() -> None:
    raw = _frame(_parts({"text": "", "thought": True})) + _frame({"candidates": []})
    events = await _normalize([raw])
    assert events == [DoneEvent("生成完成", image_count=0, has_images=False)]
    assert events[0].to_payload() == {
        "type": "done",
        "content": "生成完成",
        "imageCount": 0,
        "hasImages": False,
    }


@pytest.mark.anyio
async def test_images_across_frames_are_indexed_in_order() -> None:
    frames = [
        _frame(
            _parts(
                {"inlineData": {"mimeType": "image/png", "data": "AAA"}},
                {"inlineData": {"mimeType": "image/jpeg", "data": "BBB"}},
            )
        ),
        _frame(_parts({"text": "middle"})),
        _frame(_parts({"inlineData": {"data": "CCC"}})),
    ]
    events = await _normalize(frames)
    images = [event for event in events if isinstance(event, ImageEvent)]
    assert [(image.index, image.content) for image in images] == [
        (0, "data:image/png;base64,AAA"),
        (1, "data:image/jpeg;base64,BBB"),
        (2, "data:image/png;base64,CCC"),
    ]
    assert events[-1] == DoneEvent("middle", image_count=3, has_images=True)
    assert sum(isinstance(event, DoneEvent) for event in events) == 1


@pytest.mark.anyio
async def test_unparsable_line_is_skipped() -> None:
    raw = b"data: {not json\n\n" + _frame(_parts({"text": "ok"}))
    events = await _normalize([raw])
    assert events == [TextEvent("ok"), DoneEvent("ok", 0, False)]


@pytest.mark.anyio
async def test_terminator_stops_reading() -> None:
    raw = (
        _frame(_parts({"text": "first"}))
        + b"data: [DONE]\n\n"
        + _frame(_parts({"text": "ignored"}))
    )
    events = await _normalize([raw])
    assert events == [TextEvent("first"), DoneEvent("first", 0, False)]


@pytest.mark.anyio
async def test_zero_usage_is_not_emitted() -> None:
    raw = _frame({**_parts({"text": "x"}), "usageMetadata": {"totalTokenCount": 0}})
    events = await _normalize([raw])
    assert not any(isinstance(event, UsageMetadataEvent) for event in events)


@pytest.mark.anyio
async def test_error_frame_is_terminal_without_done() -> None:
    raw = (
        _frame(_parts({"text": "partial"}))
        + _frame({"error": {"code": 500, "status": "INTERNAL", "message": "boom"}})
        + _frame(_parts({"text": "after"}))
    )
    events = await _normalize([raw])
    assert events == [
        TextEvent("partial"),
        ErrorEvent(code="500", status="INTERNAL", message="boom"),
    ]


@pytest.mark.anyio
async def test_mid_stream_io_failure_emits_terminal_error() -> None:
    async def source():
        yield _frame(_parts({"inlineData": {"mimeType": "image/png", "data": "AAA"}}))
        raise httpx.ReadError("connection reset")

    events = [event async for event in StreamNormalizer().normalize(source())]

    assert isinstance(events[0], ImageEvent)
    assert events[-1] == ErrorEvent(
        code="STREAM_INTERRUPTED", status="STREAM", message="connection reset"
    )
    assert not any(isinstance(event, DoneEvent) for event in events)


def test_feed_line_ignores_non_data_lines() -> None:
    normalizer = StreamNormalizer()
    assert normalizer.feed_line("") == []
    assert normalizer.feed_line(": comment") == []
    assert normalizer.feed_line("event: message") == []
    assert normalizer.stopped is False


def test_list_frames_are_processed_element_by_element() -> None:
    normalizer = StreamNormalizer()
    line = "data: " + json.dumps([_parts({"text": "a"}), _parts({"text": "b"})])
    assert normalizer.feed_line(line) == [TextEvent("a"), TextEvent("b")]
    assert normalizer.finish() == DoneEvent("ab", 0, False)
