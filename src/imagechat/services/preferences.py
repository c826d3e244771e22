"""JSON-file store owning the studio preferences lifecycle."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..schemas.preferences import StudioPreferences, StudioPreferencesUpdate

logger = logging.getLogger(__name__)


class PreferencesStore:
    """Load, merge with defaults and save preferences for one workspace."""

    def __init__(self, path: Path):
        self.path = path
        self._cache: Optional[StudioPreferences] = None

    def _load_json(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object preferences in {self.path}")
            return None
        return data

    def load(self) -> StudioPreferences:
        """Return stored preferences layered over the defaults."""
        if self._cache is not None:
            return self._cache

        merged = StudioPreferences().model_dump()
        stored = self._load_json()
        if stored:
            merged.update({k: v for k, v in stored.items() if k in merged})
        try:
            preferences = StudioPreferences.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Invalid preferences in {self.path}: {e}")
            preferences = StudioPreferences()

        self._cache = preferences
        return preferences

    def save(self, preferences: StudioPreferences) -> StudioPreferences:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(preferences.model_dump(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.debug(f"Saved {self.path}")
        self._cache = preferences
        return preferences

    def update(self, update: StudioPreferencesUpdate) -> StudioPreferences:
        """Apply a partial update and persist the result."""
        current = self.load()
        merged = current.model_copy(update=update.model_dump(exclude_none=True))
        return self.save(StudioPreferences.model_validate(merged.model_dump()))

    def reset(self) -> StudioPreferences:
        return self.save(StudioPreferences())


__all__ = ["PreferencesStore"]
