"""
Tests for overrides.json loading, validation and merging.
"""

import json
import logging
import unicodedata
import pytest
from datetime import date
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from classifier import Taxonomy
from errors import FatalConfigError
from overrides import OverrideStore, apply_override, sanitize_override


@pytest.fixture
def taxonomy() -> Taxonomy:
    return Taxonomy.default()


@pytest.fixture
def overrides_path(temp_dir: Path) -> Path:
    return temp_dir / "overrides.json"


def write_overrides(path: Path, payload):
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")


def auto_values(**changes) -> dict:
    values = {
        "routes": ["letters"],
        "mood_ids": [],
        "birthday_bucket": None,
        "written_at": date(2023, 5, 20),
        "written_at_source": "content-line",
        "title": "親愛的老婆",
    }
    values.update(changes)
    return values


class TestSanitizeOverride:
    """Tests for per-field validation."""

    def test_valid_entry(self, taxonomy):
        entry = {
            "routes": ["diary", "mood"],
            "moodIds": ["calm"],
            "writtenAt": "2024-09-29",
            "birthdayBucket": "future",
            "title": "  新標題  ",
        }

        assert sanitize_override(entry, taxonomy) == {
            "routes": ["diary", "mood"],
            "mood_ids": ["calm"],
            "written_at": date(2024, 9, 29),
            "birthday_bucket": "future",
            "title": "新標題",
        }

    def test_unknown_route_dropped(self, taxonomy):
        """Test unknown ids are filtered out and duplicates removed."""
        result = sanitize_override({"routes": ["diary", "poems", "diary"]}, taxonomy)

        assert result == {"routes": ["diary"]}

    def test_invalid_field_does_not_poison_entry(self, taxonomy, caplog):
        """Test a bad date only drops writtenAt and is logged."""
        with caplog.at_level(logging.WARNING, logger="pool_indexer.overrides"):
            result = sanitize_override({"writtenAt": "2024-02-30", "title": "留下"}, taxonomy, "a.txt")

        assert result == {"title": "留下"}
        assert "writtenAt" in caplog.text

    @pytest.mark.parametrize("entry", [
        {"routes": "diary"},
        {"routes": []},
        {"moodIds": ["angry"]},
        {"writtenAt": 20240929},
        {"writtenAt": "someday"},
        {"birthdayBucket": "past"},
        {"title": "   "},
    ])
    def test_invalid_values(self, taxonomy, entry):
        assert sanitize_override(entry, taxonomy) == {}

    def test_non_object_entry(self, taxonomy):
        assert sanitize_override(["diary"], taxonomy, "a.txt") == {}


class TestOverrideStore:
    """Tests for OverrideStore."""

    def test_missing_file(self, overrides_path, taxonomy):
        store = OverrideStore(overrides_path, taxonomy)

        assert store.overrides == {}
        assert store.lookup("12-日記/0929.txt") == {}

    def test_lookup_exact(self, overrides_path, taxonomy):
        write_overrides(overrides_path, {"overrides": {"12-日記/0929.txt": {"routes": ["memo"]}}})

        store = OverrideStore(overrides_path, taxonomy)

        assert store.lookup("12-日記/0929.txt") == {"routes": ["memo"]}
        assert store.lookup("12-日記/0930.txt") == {}

    def test_lookup_normalized_key(self, overrides_path, taxonomy):
        """Test keys written with backslashes or ./ still match."""
        write_overrides(overrides_path, {"overrides": {"./12-日記\\0929.txt": {"routes": ["memo"]}}})

        store = OverrideStore(overrides_path, taxonomy)

        assert store.lookup("12-日記/0929.txt") == {"routes": ["memo"]}

    def test_lookup_unicode_normalized_key(self, overrides_path, taxonomy):
        """Test a decomposed (NFD) key matches the composed path."""
        key = unicodedata.normalize("NFD", "30-café/a.txt")
        write_overrides(overrides_path, {"overrides": {key: {"title": "咖啡"}}})

        store = OverrideStore(overrides_path, taxonomy)

        assert store.lookup(unicodedata.normalize("NFC", "30-café/a.txt")) == {"title": "咖啡"}

    def test_missing_overrides_key(self, overrides_path, taxonomy):
        write_overrides(overrides_path, {"version": 1})

        assert OverrideStore(overrides_path, taxonomy).overrides == {}

    @pytest.mark.parametrize("content", [
        "{not json",
        "[]",
        '{"overrides": []}',
        '{"overrides": "x"}',
    ])
    def test_malformed_file_is_fatal(self, overrides_path, taxonomy, content):
        overrides_path.write_text(content, encoding="utf-8")

        with pytest.raises(FatalConfigError):
            OverrideStore(overrides_path, taxonomy)

    def test_save_preserves_entries(self, overrides_path, taxonomy):
        """Test the rewrite refreshes metadata and keeps entries byte-for-byte."""
        entries = {
            "12-日記/0929.txt": {"routes": ["memo"], "unknownField": 1},
            "gone/old.txt": {"title": "已刪除的檔案"},
        }
        write_overrides(overrides_path, {"overrides": entries, "routeGuide": [], "custom": "keep"})

        OverrideStore(overrides_path, taxonomy).save("2025-01-01T00:00:00.000Z")
        saved = json.loads(overrides_path.read_text(encoding="utf-8"))

        assert saved["overrides"] == entries
        assert saved["custom"] == "keep"
        assert saved["updatedAt"] == "2025-01-01T00:00:00.000Z"
        assert saved["routeGuide"] == taxonomy.route_guide()
        assert saved["moodGuide"] == taxonomy.mood_guide()
        assert "sourceRelPath" in saved["note"]

    def test_save_new_file(self, overrides_path, taxonomy):
        OverrideStore(overrides_path, taxonomy).save("2025-01-01T00:00:00.000Z")

        saved = json.loads(overrides_path.read_text(encoding="utf-8"))

        assert saved["version"] == 1
        assert saved["overrides"] == {}


class TestApplyOverride:
    """Tests for merging overrides over derived values."""

    def test_no_override(self, taxonomy):
        assert apply_override(auto_values(), {}, taxonomy) == auto_values()

    def test_routes_replaced(self, taxonomy):
        result = apply_override(auto_values(), {"routes": ["diary"]}, taxonomy)

        assert result["routes"] == ["diary"]

    def test_mood_ids_cleared_without_mood_route(self, taxonomy):
        """Test mood tags never survive when the final routes lack mood."""
        auto = auto_values(routes=["mood"], mood_ids=["calm"])

        result = apply_override(auto, {"routes": ["memo"], "mood_ids": ["night"]}, taxonomy)

        assert result["routes"] == ["memo"]
        assert result["mood_ids"] == []

    def test_mood_route_added_gets_default(self, taxonomy):
        result = apply_override(auto_values(), {"routes": ["letters", "mood"]}, taxonomy)

        assert result["mood_ids"] == ["daily"]

    def test_mood_ids_override(self, taxonomy):
        auto = auto_values(routes=["mood"], mood_ids=["daily"])

        assert apply_override(auto, {"mood_ids": ["night", "calm"]}, taxonomy)["mood_ids"] == ["night", "calm"]

    def test_unclassified_fallback(self, taxonomy):
        result = apply_override(auto_values(routes=[]), {}, taxonomy)

        assert result["routes"] == ["unclassified"]

    def test_written_at_wins(self, taxonomy):
        """Test an override date replaces even a birthday-normalized one."""
        auto = auto_values(
            routes=["birthday"],
            birthday_bucket="current",
            written_at=date(2025, 9, 15),
            written_at_source="birthday-normalized-2025-09",
        )

        result = apply_override(auto, {"written_at": date(2019, 3, 15)}, taxonomy)

        assert result["written_at"] == date(2019, 3, 15)
        assert result["written_at_source"] == "override"

    def test_birthday_bucket(self, taxonomy):
        auto = auto_values(routes=["birthday"], birthday_bucket="current")

        assert apply_override(auto, {"birthday_bucket": "future"}, taxonomy)["birthday_bucket"] == "future"

    def test_birthday_bucket_requires_route(self, taxonomy):
        result = apply_override(auto_values(), {"birthday_bucket": "future"}, taxonomy)

        assert result["birthday_bucket"] is None

    def test_birthday_route_added_defaults_current(self, taxonomy):
        assert apply_override(auto_values(), {"routes": ["birthday"]}, taxonomy)["birthday_bucket"] == "current"

    def test_title(self, taxonomy):
        assert apply_override(auto_values(), {"title": "新標題"}, taxonomy)["title"] == "新標題"
