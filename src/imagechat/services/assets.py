"""Numbered asset index over the blob store."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from ..repository import StudioRepository, utc_timestamp

logger = logging.getLogger(__name__)

GENERATED_SPACE = "generated"
MATERIAL_SPACE = "material"
INDEX_SPACES = (GENERATED_SPACE, MATERIAL_SPACE)


class AssetNotFound(LookupError):
    """Raised when an asset id is unknown within its index space."""

    def __init__(self, space: str, asset_id: str):
        super().__init__(f"Asset {asset_id} not found in {space} index")
        self.space = space
        self.asset_id = asset_id


@dataclass(frozen=True)
class Asset:
    id: str
    space: str
    blob_handle: str
    number: int
    created_at: str
    label: str = ""
    originating_message_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Asset":
        return cls(
            id=record["id"],
            space=record["space"],
            blob_handle=record["blob_handle"],
            number=int(record["number"]),
            created_at=record["created_at"],
            label=record.get("label") or "",
            originating_message_id=record.get("originating_message_id"),
        )


class AssetIndex:
    """Ordered asset records for one index space.

    ``number`` is a view: ranks are recomputed from creation time on every
    read, so a removal renumbers every survivor. Callers holding numbers must
    re-resolve them through ``numbers()`` after any deletion.
    """

    def __init__(self, repository: StudioRepository, space: str):
        if space not in INDEX_SPACES:
            raise ValueError(f"Unknown asset index space: {space}")
        self._repo = repository
        self.space = space

    async def add(
        self,
        blob: str,
        label: str = "",
        *,
        originating_message_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Asset:
        """Store ``blob`` and index it. Storage errors propagate unchanged."""

        asset_id = uuid.uuid4().hex
        handle = uuid.uuid4().hex
        async with self._repo.space_lock(self.space):
            await self._repo.put_blob(self.space, handle, blob)
            await self._repo.insert_asset(
                self.space,
                asset_id=asset_id,
                blob_handle=handle,
                label=label,
                created_at=utc_timestamp(created_at),
                originating_message_id=originating_message_id,
            )
            record = await self._repo.fetch_asset(self.space, asset_id)
        assert record is not None
        asset = Asset.from_record(record)
        logger.info("Indexed %s asset #%d (%s)", self.space, asset.number, asset.id)
        return asset

    async def remove(self, asset_id: str) -> Asset:
        """Delete the record and its blob, returning the removed asset."""

        async with self._repo.space_lock(self.space):
            record = await self._repo.fetch_asset(self.space, asset_id)
            if record is None:
                raise AssetNotFound(self.space, asset_id)
            asset = Asset.from_record(record)
            if not await self._repo.delete_blob(self.space, asset.blob_handle):
                logger.warning(
                    "Blob %s for asset %s was already missing",
                    asset.blob_handle,
                    asset_id,
                )
            await self._repo.delete_asset_record(self.space, asset_id)
        logger.info("Removed %s asset #%d (%s)", self.space, asset.number, asset_id)
        return asset

    async def list(self) -> list[Asset]:
        records = await self._repo.fetch_assets(self.space)
        return [Asset.from_record(record) for record in records]

    async def get(self, asset_id: str) -> Asset | None:
        record = await self._repo.fetch_asset(self.space, asset_id)
        return Asset.from_record(record) if record is not None else None

    async def next_number(self) -> int:
        return await self._repo.count_assets(self.space) + 1

    async def numbers(self) -> dict[str, int]:
        return {asset.id: asset.number for asset in await self.list()}

    async def get_blob(self, handle: str) -> str | None:
        return await self._repo.get_blob(self.space, handle)

    async def load(self, asset_id: str) -> str | None:
        """Return the blob behind an asset id, or None if either is gone."""

        asset = await self.get(asset_id)
        if asset is None:
            return None
        return await self.get_blob(asset.blob_handle)

    async def prune_orphans(self) -> int:
        """Drop index records whose blob no longer exists."""

        removed = 0
        async with self._repo.space_lock(self.space):
            for record in await self._repo.fetch_assets(self.space):
                if await self._repo.get_blob(self.space, record["blob_handle"]) is None:
                    await self._repo.delete_asset_record(self.space, record["id"])
                    removed += 1
        if removed:
            logger.info("Pruned %d orphaned %s asset(s)", removed, self.space)
        return removed

    async def clear(self) -> int:
        async with self._repo.space_lock(self.space):
            removed = await self._repo.clear_space(self.space)
        logger.info("Cleared %d %s asset(s)", removed, self.space)
        return removed


__all__ = [
    "Asset",
    "AssetIndex",
    "AssetNotFound",
    "GENERATED_SPACE",
    "INDEX_SPACES",
    "MATERIAL_SPACE",
]
