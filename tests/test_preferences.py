from __future__ import annotations

import json

from imagechat.schemas.preferences import StudioPreferences, StudioPreferencesUpdate
from imagechat.services.preferences import PreferencesStore


def test_missing_file_yields_defaults(tmp_path) -> None:
    store = PreferencesStore(tmp_path / "preferences.json")
    assert store.load() == StudioPreferences()


def test_stored_values_merge_over_defaults(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text(
        json.dumps({"model": "gemini-3-pro-image", "resolution": "2k", "unknown": 1}),
        encoding="utf-8",
    )

    preferences = PreferencesStore(path).load()

    assert preferences.model == "gemini-3-pro-image"
    assert preferences.resolution == "2k"
    assert preferences.aspect_ratio == "16:9"


def test_invalid_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text("{not json", encoding="utf-8")
    assert PreferencesStore(path).load() == StudioPreferences()

    path.write_text(json.dumps({"history_turns": -5}), encoding="utf-8")
    assert PreferencesStore(path).load() == StudioPreferences()


def test_update_persists_partial_changes(tmp_path) -> None:
    path = tmp_path / "nested" / "preferences.json"
    store = PreferencesStore(path)

    updated = store.update(
        StudioPreferencesUpdate(api_key="secret", system_style="水彩", history_turns=4)
    )

    assert updated.api_key == "secret"
    assert updated.history_turns == 4
    reloaded = PreferencesStore(path).load()
    assert reloaded == updated
    assert json.loads(path.read_text(encoding="utf-8"))["system_style"] == "水彩"


def test_reset(tmp_path) -> None:
    store = PreferencesStore(tmp_path / "preferences.json")
    store.update(StudioPreferencesUpdate(model="gemini-3-pro"))
    assert store.reset() == StudioPreferences()
