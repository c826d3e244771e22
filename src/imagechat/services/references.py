"""Bounded working set of references injected into the next request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional

from .assets import GENERATED_SPACE, MATERIAL_SPACE, Asset

logger = logging.getLogger(__name__)

MAX_REFERENCES = 14

_LABEL_PREFIXES = {GENERATED_SPACE: "生图", MATERIAL_SPACE: "素材"}


def display_label(space: str, number: int) -> str:
    return f"{_LABEL_PREFIXES.get(space, space)}{number}"


@dataclass(frozen=True)
class Reference:
    type: str
    asset_id: str
    display_name: str

    @classmethod
    def for_asset(cls, asset: Asset) -> "Reference":
        return cls(asset.space, asset.id, display_label(asset.space, asset.number))


class ReferenceAddStatus(str, Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    IS_PRIMARY = "is_primary"
    CAPACITY = "capacity"


@dataclass
class BatchAddResult:
    succeeded: int = 0
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)


class ReferenceList:
    """Ordered, duplicate-free references plus an optional primary asset.

    The primary (edit target) counts against the same cap as the list, so the
    list alone holds at most ``max_references - 1`` entries while a primary is
    selected. Display numbers are derived on demand from list order.
    """

    def __init__(self, max_references: int = MAX_REFERENCES):
        if max_references < 1:
            raise ValueError("max_references must be positive")
        self._max = max_references
        self._items: list[Reference] = []
        self._primary: Optional[Reference] = None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Reference]:
        return iter(list(self._items))

    def __contains__(self, asset_id: object) -> bool:
        return any(item.asset_id == asset_id for item in self._items)

    @property
    def items(self) -> tuple[Reference, ...]:
        return tuple(self._items)

    @property
    def primary(self) -> Optional[Reference]:
        return self._primary

    @property
    def capacity(self) -> int:
        """How many entries the list may hold given the current primary."""

        return self._max - (1 if self._primary is not None else 0)

    def add(self, ref: Reference) -> ReferenceAddStatus:
        if ref.asset_id in self:
            return ReferenceAddStatus.DUPLICATE
        if self._primary is not None and self._primary.asset_id == ref.asset_id:
            return ReferenceAddStatus.IS_PRIMARY
        if len(self._items) >= self.capacity:
            logger.warning(
                "Reference list full (%d); rejected %s", self.capacity, ref.asset_id
            )
            return ReferenceAddStatus.CAPACITY
        self._items.append(ref)
        return ReferenceAddStatus.ADDED

    def add_batch(self, refs: Iterable[Reference]) -> BatchAddResult:
        result = BatchAddResult()
        capacity_hit = False
        for ref in refs:
            status = self.add(ref)
            if status is ReferenceAddStatus.ADDED:
                result.succeeded += 1
                continue
            result.skipped += 1
            if status is ReferenceAddStatus.CAPACITY and not capacity_hit:
                capacity_hit = True
                result.warnings.append(
                    f"最多只能添加{self._max}张参考图片"
                    if self._primary is None
                    else f"最多只能添加{self._max}张参考图片(含主图)"
                )
        if result.skipped and not capacity_hit:
            result.warnings.append(f"{result.skipped}张图片已在参考列表中")
        return result

    def remove(self, asset_id: str) -> bool:
        for position, item in enumerate(self._items):
            if item.asset_id == asset_id:
                del self._items[position]
                return True
        return False

    def clear(self) -> None:
        self._items.clear()

    def select_primary(self, ref: Reference) -> Optional[Reference]:
        """Make ``ref`` the edit target, returning a reference evicted for room.

        An asset already in the list moves out of it. When a primary is newly
        selected while the list is full, the most recently added reference is
        evicted.
        """

        if self._primary is not None and self._primary.asset_id == ref.asset_id:
            self._primary = ref
            return None
        self.remove(ref.asset_id)
        self._primary = ref
        if len(self._items) > self.capacity:
            evicted = self._items.pop()
            logger.info(
                "Evicted reference %s to make room for primary %s",
                evicted.asset_id,
                ref.asset_id,
            )
            return evicted
        return None

    def clear_primary(self) -> Optional[Reference]:
        previous, self._primary = self._primary, None
        return previous

    def resolve_numbers(
        self, has_primary_selection: Optional[bool] = None
    ) -> dict[str, int]:
        if has_primary_selection is None:
            has_primary_selection = self._primary is not None
        numbers: dict[str, int] = {}
        start = 1
        if has_primary_selection:
            if self._primary is not None:
                numbers[self._primary.asset_id] = 1
            start = 2
        for offset, item in enumerate(self._items):
            numbers[item.asset_id] = start + offset
        return numbers

    def relabel(self, space: str, numbers: Mapping[str, int]) -> None:
        """Refresh display names of one space after its assets were renumbered."""

        def refreshed(item: Reference) -> Reference:
            if item.type != space or item.asset_id not in numbers:
                return item
            return replace(
                item, display_name=display_label(space, numbers[item.asset_id])
            )

        self._items = [refreshed(item) for item in self._items]
        if self._primary is not None:
            self._primary = refreshed(self._primary)


__all__ = [
    "BatchAddResult",
    "MAX_REFERENCES",
    "Reference",
    "ReferenceAddStatus",
    "ReferenceList",
    "display_label",
]
