"""Client-local services: asset index, reference list and preferences."""

from .assets import (
    GENERATED_SPACE,
    MATERIAL_SPACE,
    Asset,
    AssetIndex,
    AssetNotFound,
)
from .preferences import PreferencesStore
from .references import (
    MAX_REFERENCES,
    BatchAddResult,
    Reference,
    ReferenceAddStatus,
    ReferenceList,
)

__all__ = [
    "Asset",
    "AssetIndex",
    "AssetNotFound",
    "BatchAddResult",
    "GENERATED_SPACE",
    "MATERIAL_SPACE",
    "MAX_REFERENCES",
    "PreferencesStore",
    "Reference",
    "ReferenceAddStatus",
    "ReferenceList",
]
