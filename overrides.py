#!/usr/bin/env python3
"""
Override management for the Master Pool indexer.

overrides.json holds hand-written corrections keyed by sourceRelPath:

    {
      "overrides": {
        "12-日記/0929.txt": {"routes": ["diary"], "writtenAt": "2024-09-29"}
      }
    }

Each field is validated on its own; an unknown route id or a malformed date
drops that field only, never the rest of the entry. The file itself is
rewritten every run with fresh routeGuide/moodGuide metadata, leaving the
override entries untouched.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

from artifacts import write_json
from classifier import (
    BIRTHDAY_BUCKETS,
    BIRTHDAY_ROUTE,
    MOOD_ROUTE,
    UNCLASSIFIED_ROUTE,
    Taxonomy,
)
from date_inference import SOURCE_OVERRIDE, parse_full_date
from errors import FatalConfigError
from sources import normalize_rel_path

logger = logging.getLogger("pool_indexer.overrides")

OVERRIDES_VERSION = 1
OVERRIDES_NOTE = "key 用 sourceRelPath；可覆蓋 routes/moodIds/writtenAt/birthdayBucket/title"


# ==============================================================================
# FIELD VALIDATION
# ==============================================================================

def _sanitize_ids(value, allowed) -> list[str]:
    if not isinstance(value, list):
        return []
    ids = []
    for item in value:
        if isinstance(item, str) and item in allowed and item not in ids:
            ids.append(item)
    return ids


def sanitize_routes(value, taxonomy: Taxonomy) -> list[str]:
    """Known route ids from an override, deduplicated, in the given order."""
    return _sanitize_ids(value, taxonomy.route_ids)


def sanitize_mood_ids(value, taxonomy: Taxonomy) -> list[str]:
    return _sanitize_ids(value, taxonomy.mood_ids)


def sanitize_written_at(value) -> Optional[date]:
    """Parse an override date with the same strategies used for documents."""
    if not isinstance(value, str):
        return None
    return parse_full_date(value)


def sanitize_birthday_bucket(value) -> Optional[str]:
    return value if value in BIRTHDAY_BUCKETS else None


def sanitize_title(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def sanitize_override(entry, taxonomy: Taxonomy, key: str = "") -> dict:
    """Validate one override entry field by field.

    Returns:
        Dict with any of routes, mood_ids, written_at, birthday_bucket, title.
        Fields that are absent or invalid are left out.
    """
    if not isinstance(entry, dict):
        logger.warning(f"Ignoring override for {key!r}: expected an object")
        return {}

    checks = (
        ("routes", "routes", lambda v: sanitize_routes(v, taxonomy)),
        ("moodIds", "mood_ids", lambda v: sanitize_mood_ids(v, taxonomy)),
        ("writtenAt", "written_at", sanitize_written_at),
        ("birthdayBucket", "birthday_bucket", sanitize_birthday_bucket),
        ("title", "title", sanitize_title),
    )

    result = {}
    for field, target, sanitize in checks:
        if field not in entry:
            continue
        value = sanitize(entry[field])
        if value:
            result[target] = value
        else:
            logger.warning(f"Ignoring invalid override field {field!r} for {key!r}")
    return result


# ==============================================================================
# OVERRIDE STORE
# ==============================================================================

class OverrideStore:
    """Loads, queries and rewrites overrides.json."""

    def __init__(self, path: str | Path, taxonomy: Taxonomy):
        """Initialize the store; loads the file if it exists.

        Raises:
            FatalConfigError: If the file exists but is not a valid overrides document
        """
        self.path = Path(path)
        self.taxonomy = taxonomy
        self._data = {
            "version": OVERRIDES_VERSION,
            "updatedAt": None,
            "note": OVERRIDES_NOTE,
            "routeGuide": taxonomy.route_guide(),
            "moodGuide": taxonomy.mood_guide(),
            "overrides": {},
        }
        self._keys = {}

        if self.path.exists():
            self.load()

    @property
    def overrides(self) -> dict:
        """Raw override entries, exactly as read from disk."""
        return self._data["overrides"]

    def load(self):
        """Read and structurally validate the overrides file."""
        try:
            with open(self.path, "r", encoding="utf-8-sig") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise FatalConfigError(f"Overrides file is not valid JSON: {self.path}: {e}") from e
        except OSError as e:
            raise FatalConfigError(f"Could not read overrides file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise FatalConfigError(f"Overrides file must contain a JSON object: {self.path}")
        if "overrides" not in data or data["overrides"] is None:
            data["overrides"] = {}
        if not isinstance(data["overrides"], dict):
            raise FatalConfigError(f"'overrides' in {self.path} must be an object keyed by sourceRelPath")

        self._data = data
        self._keys = {}
        for key in data["overrides"]:
            self._keys.setdefault(normalize_rel_path(key), key)
        logger.debug(f"Loaded {len(self._keys)} overrides from {self.path}")

    def lookup(self, rel_path: str) -> dict:
        """Validated override fields for a document ({} if none)."""
        key = rel_path if rel_path in self.overrides else self._keys.get(normalize_rel_path(rel_path))
        if key is None:
            return {}
        return sanitize_override(self.overrides[key], self.taxonomy, key)

    def save(self, updated_at: str):
        """Rewrite the file with refreshed guide metadata; entries are kept as-is."""
        self._data["version"] = OVERRIDES_VERSION
        self._data["updatedAt"] = updated_at
        self._data["note"] = OVERRIDES_NOTE
        self._data["routeGuide"] = self.taxonomy.route_guide()
        self._data["moodGuide"] = self.taxonomy.mood_guide()
        write_json(self.path, self._data)


# ==============================================================================
# MERGING
# ==============================================================================

def apply_override(auto: dict, override: dict, taxonomy: Taxonomy) -> dict:
    """Layer validated override fields over automatically derived values.

    Args:
        auto: Dict with routes, mood_ids, birthday_bucket, written_at,
            written_at_source and title as derived by the pipeline
        override: Output of OverrideStore.lookup()
        taxonomy: Category tables (for the default mood)

    Returns:
        Dict with the same keys holding the final values
    """
    routes = list(override.get("routes") or auto["routes"])

    mood_ids = []
    if MOOD_ROUTE in routes:
        mood_ids = list(override.get("mood_ids") or auto["mood_ids"] or [taxonomy.default_mood])

    if not routes:
        routes = [UNCLASSIFIED_ROUTE]

    written_at = auto["written_at"]
    written_at_source = auto["written_at_source"]
    if override.get("written_at"):
        written_at = override["written_at"]
        written_at_source = SOURCE_OVERRIDE

    birthday_bucket = None
    if BIRTHDAY_ROUTE in routes:
        birthday_bucket = override.get("birthday_bucket") or auto["birthday_bucket"] or "current"

    return {
        "routes": routes,
        "mood_ids": mood_ids,
        "birthday_bucket": birthday_bucket,
        "written_at": written_at,
        "written_at_source": written_at_source,
        "title": override.get("title") or auto["title"],
    }
