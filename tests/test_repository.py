from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from imagechat.repository import StudioRepository, utc_timestamp


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def repository(tmp_path):
    repo = StudioRepository(tmp_path / "studio.db")
    await repo.initialize()
    await repo.create_conversation("first", conversation_id="conv-1")
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_messages_append_in_order(repository):
    await repository.add_message("conv-1", "user", content="hello")
    await repository.add_message("conv-1", "assistant", content="hi", thought="thinking")

    messages = await repository.get_messages("conv-1")

    assert [(m["role"], m["content"], m["position"]) for m in messages] == [
        ("user", "hello", 0),
        ("assistant", "hi", 1),
    ]
    assert messages[1]["thought"] == "thinking"


@pytest.mark.anyio
async def test_insert_at_position_shifts_later_messages(repository):
    for text in ("a", "b", "c"):
        await repository.add_message("conv-1", "user", content=text)

    await repository.add_message("conv-1", "assistant", content="inserted", position=1)

    contents = [m["content"] for m in await repository.get_messages("conv-1")]
    assert contents == ["a", "inserted", "b", "c"]


@pytest.mark.anyio
async def test_error_messages_roundtrip_and_purge(repository):
    await repository.add_message("conv-1", "user", content="prompt")
    failed = await repository.add_message(
        "conv-1",
        "assistant",
        error={"code": "GENERATION_FAILED", "status": "HTTP 500", "message": "生成失败"},
    )

    assert failed["error"]["message"] == "生成失败"
    assert failed["content"] is None

    assert await repository.delete_error_messages("conv-1") == 1
    assert [m["content"] for m in await repository.get_messages("conv-1")] == ["prompt"]


@pytest.mark.anyio
async def test_clear_generated_asset(repository):
    message = await repository.add_message(
        "conv-1", "assistant", content="done", generated_asset_id="asset-1"
    )
    assert message["generated_asset_id"] == "asset-1"

    assert await repository.clear_generated_asset("asset-1") == 1
    fetched = await repository.get_message(message["id"])
    assert fetched is not None
    assert "generated_asset_id" not in fetched


@pytest.mark.anyio
async def test_conversations_list_and_cascade(repository):
    await repository.add_message("conv-1", "user", content="hello")
    second = await repository.create_conversation("second")
    await repository.rename_conversation(second, "renamed")

    listed = await repository.list_conversations()
    assert {c["id"]: c["message_count"] for c in listed} == {"conv-1": 1, second: 0}
    assert listed[0]["title"] == "renamed"

    assert await repository.delete_conversation("conv-1") is True
    assert await repository.get_messages("conv-1") == []
    assert await repository.delete_conversation("conv-1") is False


@pytest.mark.anyio
async def test_asset_numbers_are_derived(repository):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    for asset_id, offset in (("b", 2), ("a", 1), ("c", 3)):
        await repository.insert_asset(
            "generated",
            asset_id=asset_id,
            blob_handle=f"h-{asset_id}",
            label=asset_id,
            created_at=utc_timestamp(base + timedelta(seconds=offset)),
        )

    records = await repository.fetch_assets("generated")
    assert [(r["id"], r["number"]) for r in records] == [("a", 1), ("b", 2), ("c", 3)]

    await repository.delete_asset_record("generated", "a")
    record = await repository.fetch_asset("generated", "c")
    assert record is not None
    assert record["number"] == 2


def test_utc_timestamp_is_fixed_width() -> None:
    naive = datetime(2025, 1, 1, 8, 0, 0)
    eastern = datetime(2025, 1, 1, 3, 0, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert utc_timestamp(naive) == "2025-01-01T08:00:00.000000+00:00"
    assert utc_timestamp(eastern) == "2025-01-01T08:00:00.000000+00:00"
