from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from imagechat.repository import StudioRepository
from imagechat.services.assets import (
    GENERATED_SPACE,
    MATERIAL_SPACE,
    AssetIndex,
    AssetNotFound,
)

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def repository(tmp_path):
    repo = StudioRepository(tmp_path / "studio.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


@pytest.fixture
def generated(repository) -> AssetIndex:
    return AssetIndex(repository, GENERATED_SPACE)


@pytest.mark.anyio
async def test_numbers_follow_creation_time_not_insertion(generated) -> None:
    late = await generated.add("data:image/png;base64,BBB", "late", created_at=T0 + timedelta(minutes=5))
    early = await generated.add("data:image/png;base64,AAA", "early", created_at=T0)

    listed = await generated.list()

    assert [asset.id for asset in listed] == [early.id, late.id]
    assert [asset.number for asset in listed] == [1, 2]
    assert late.number == 1  # ranked before the earlier asset existed


@pytest.mark.anyio
async def test_remove_renumbers_survivors(generated) -> None:
    assets = [
        await generated.add(f"blob-{i}", f"label-{i}", created_at=T0 + timedelta(seconds=i))
        for i in range(4)
    ]

    removed = await generated.remove(assets[1].id)

    assert removed.number == 2
    listed = await generated.list()
    assert [asset.id for asset in listed] == [assets[0].id, assets[2].id, assets[3].id]
    assert [asset.number for asset in listed] == [1, 2, 3]
    assert await generated.numbers() == {
        assets[0].id: 1,
        assets[2].id: 2,
        assets[3].id: 3,
    }
    assert await generated.get_blob(assets[1].blob_handle) is None


@pytest.mark.anyio
async def test_equal_timestamps_break_ties_by_insertion(generated) -> None:
    first = await generated.add("one", created_at=T0)
    second = await generated.add("two", created_at=T0)
    third = await generated.add("three", created_at=T0)

    assert [asset.id for asset in await generated.list()] == [first.id, second.id, third.id]


@pytest.mark.anyio
async def test_renumbering_invariant_over_random_operations(generated) -> None:
    rng = random.Random(1234)
    live: dict[str, datetime] = {}

    for step in range(40):
        if live and rng.random() < 0.4:
            victim = rng.choice(sorted(live))
            await generated.remove(victim)
            del live[victim]
        else:
            created = T0 + timedelta(seconds=rng.randint(0, 10_000))
            asset = await generated.add(f"blob-{step}", created_at=created)
            live[asset.id] = created

        listed = await generated.list()
        assert [asset.number for asset in listed] == list(range(1, len(live) + 1))
        created_times = [live[asset.id] for asset in listed]
        assert created_times == sorted(created_times)


@pytest.mark.anyio
async def test_next_number(generated) -> None:
    assert await generated.next_number() == 1
    await generated.add("a")
    await generated.add("b")
    assert await generated.next_number() == 3


@pytest.mark.anyio
async def test_remove_unknown_raises_not_found(generated) -> None:
    with pytest.raises(AssetNotFound):
        await generated.remove("missing")


@pytest.mark.anyio
async def test_remove_tolerates_missing_blob(repository, generated) -> None:
    asset = await generated.add("blob")
    await repository.delete_blob(GENERATED_SPACE, asset.blob_handle)

    await generated.remove(asset.id)

    assert await generated.list() == []


@pytest.mark.anyio
async def test_spaces_are_numbered_independently(repository, generated) -> None:
    material = AssetIndex(repository, MATERIAL_SPACE)
    await generated.add("g1")
    uploaded = await material.add("m1", "photo.png")

    assert uploaded.number == 1
    assert await material.get(uploaded.id) == uploaded
    assert await generated.get(uploaded.id) is None


@pytest.mark.anyio
async def test_prune_orphans_and_clear(repository, generated) -> None:
    kept = await generated.add("kept")
    orphan = await generated.add("orphan")
    await repository.delete_blob(GENERATED_SPACE, orphan.blob_handle)

    assert await generated.prune_orphans() == 1
    assert [asset.id for asset in await generated.list()] == [kept.id]

    assert await generated.clear() == 1
    assert await generated.list() == []
    assert await generated.get_blob(kept.blob_handle) is None


def test_unknown_space_is_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        AssetIndex(StudioRepository(tmp_path / "x.db"), "thumbnails")
