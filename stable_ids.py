"""
Stable document ids.

An id is "doc-<hash of the relative path>-<slug of the filename>". The same
path always gives the same id. When two documents would still end up with
the same id, the later one (in walker order) gets "-2", "-3", ...; since the
walker order is fixed, so is the suffix each document receives.
"""

import hashlib
import re

ID_PREFIX = "doc"
HASH_LENGTH = 8
SLUG_MAX_LENGTH = 48
SLUG_FALLBACK = "entry"

_SLUG_INVALID_RE = re.compile(r"[^a-z0-9\u4e00-\u9fff]+")


def slugify(text: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Convert text to a slug for ids.

    Lowercases, turns every run of characters other than ASCII letters,
    digits and CJK ideographs into "-", trims dashes, then truncates.
    Returns "" if nothing usable is left.
    """
    if not text:
        return ""
    slug = _SLUG_INVALID_RE.sub("-", text.lower()).strip("-")
    return slug[:max_length]


def short_hash(text: str) -> str:
    """First HASH_LENGTH hex digits of the SHA256 of the text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def base_id(rel_path: str, stem: str) -> str:
    return f"{ID_PREFIX}-{short_hash(rel_path)}-{slugify(stem) or SLUG_FALLBACK}"


class StableIdAssigner:
    """Hands out ids for one run, resolving collisions in first-seen order."""

    def __init__(self):
        self._used = set()

    def assign(self, rel_path: str, stem: str) -> str:
        """Id for a document given its relative path and filename without extension."""
        candidate = base_id(rel_path, stem)
        if candidate not in self._used:
            self._used.add(candidate)
            return candidate

        index = 2
        while f"{candidate}-{index}" in self._used:
            index += 1
        unique = f"{candidate}-{index}"
        self._used.add(unique)
        return unique
