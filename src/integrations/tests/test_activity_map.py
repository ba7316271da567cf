"""Tests for activity_map.py — loading, validation and lookup fallback."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.integrations.activity_map import (
    ActivityMapError,
    ActivityTypeMap,
    get_activity_map,
    load_activity_map,
    reload_activity_map,
)

CLOSED_SET = {
    "running",
    "cycling",
    "swimming",
    "walking",
    "hiking",
    "rowing",
    "strength_training",
    "hiit",
    "yoga",
    "cross_training",
    "skills",
    "recovery",
    "other",
}


@pytest.fixture
def activity_map() -> ActivityTypeMap:
    return load_activity_map()


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "activity_map.yaml"
    path.write_text(text)
    return path


class TestBundledMap:
    def test_categories_are_the_closed_set(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.categories == CLOSED_SET

    def test_every_mapped_value_is_in_closed_set(self, activity_map: ActivityTypeMap) -> None:
        for table in activity_map.tables.values():
            assert set(table.values()) <= CLOSED_SET

    def test_has_whoop_and_strava_tables(self, activity_map: ActivityTypeMap) -> None:
        assert {"whoop", "strava"} <= set(activity_map.tables)

    def test_singleton_is_cached(self) -> None:
        assert get_activity_map() is get_activity_map()


class TestLookup:
    def test_whoop_integer_sport_id(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("whoop", 0) == "running"
        assert activity_map.lookup("whoop", 45) == "strength_training"
        assert activity_map.lookup("whoop", 33) == "swimming"

    def test_whoop_sport_id_as_string(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("whoop", "0") == "running"

    def test_whoop_negative_generic_activity(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("whoop", -1) == "other"

    def test_strava_sport_type(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("strava", "Run") == "running"
        assert activity_map.lookup("strava", "WeightTraining") == "strength_training"

    def test_unmapped_code_falls_back_to_other(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("whoop", 9999) == "other"
        assert activity_map.lookup("strava", "Kitesurf") == "other"

    def test_none_code_is_other(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("whoop", None) == "other"

    def test_unknown_provider_is_other(self, activity_map: ActivityTypeMap) -> None:
        assert activity_map.lookup("garmin", "running") == "other"


class TestValidation:
    def test_unknown_category_rejected(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "categories: [running, other]\nproviders:\n  whoop:\n    0: jogging\n",
        )
        with pytest.raises(ActivityMapError, match="jogging"):
            load_activity_map(path)

    def test_missing_categories_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "providers:\n  whoop:\n    0: running\n")
        with pytest.raises(ActivityMapError, match="categories"):
            load_activity_map(path)

    def test_fallback_category_required(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "categories: [running]\nproviders: {}\n")
        with pytest.raises(ActivityMapError, match="other"):
            load_activity_map(path)

    def test_non_mapping_table_rejected(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path, "categories: [running, other]\nproviders:\n  whoop: [running]\n"
        )
        with pytest.raises(ActivityMapError):
            load_activity_map(path)

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "categories: [running\n")
        with pytest.raises(ActivityMapError, match="YAML"):
            load_activity_map(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_activity_map(tmp_path / "nope.yaml")


class TestReload:
    def test_reload_swaps_the_singleton(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            'version: "9.9"\ncategories: [running, other]\n'
            "providers:\n  whoop:\n    0: running\n",
        )
        try:
            reloaded = reload_activity_map(path)
            assert reloaded.version == "9.9"
            assert get_activity_map() is reloaded
        finally:
            reload_activity_map()

    def test_failed_reload_keeps_previous_map(self, tmp_path: Path) -> None:
        before = get_activity_map()
        path = _write(tmp_path, "categories: []\n")
        with pytest.raises(ActivityMapError):
            reload_activity_map(path)
        assert get_activity_map() is before
