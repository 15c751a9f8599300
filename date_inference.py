#!/usr/bin/env python3
"""
Date inference - picking a "written at" date for each document.

Full dates are read by an ordered list of DateStrategy objects. Each one is a
regex plus the order of its year/month/day groups; a match only counts once
the numbers form a real calendar date (no 2024-02-30, no month 13).

Selection order for a document, first hit wins:
1. A full date in any candidate text, scanned in this order: path below the
   top folder, filename, filename without extension, derived title, first
   three content lines, last two content lines.
2. A month/day seen in a candidate, combined with the folder's year (or, if
   the folder has no date, the first bare year seen in the candidates). An
   undated top folder still lends its own month/day or bare year when the
   document has none.
3. The folder's own date, either read from its name or borrowed from a
   sibling folder with the same numeric code and month/day.
4. The birthday window policy (normalize_birthday_date).
"""

import re
from datetime import date, datetime
from typing import Optional

_LEAD = r"(?:^|[^0-9])"
_TRAIL = r"(?=\Z|[^0-9])"
_SEP = r"[\s_./-]*"
_YEAR = r"((?:19|20)[0-9]{2})"
_MONTH = r"(1[0-2]|0?[1-9])"
_DAY = r"(3[01]|[12][0-9]|0?[1-9])"
_MONTH_2 = r"(1[0-2]|0[1-9])"
_DAY_2 = r"(3[01]|[12][0-9]|0[1-9])"

FOLDER_CODE_RE = re.compile(r"^([0-9]{1,4})(?=[-_－—:：、.。\s]|\Z)")

# Published provenance tags
SOURCE_FILENAME = "filename"
SOURCE_TITLE = "title"
SOURCE_CONTENT_LINE = "content-line"
SOURCE_MONTH_DAY = "monthday+year"
SOURCE_FOLDER = "folder-name"
SOURCE_FOLDER_INFERRED = "folder-name-inferred"
SOURCE_BIRTHDAY_NORMALIZED = "birthday-normalized-2025-09"
SOURCE_BIRTHDAY_DEFAULT = "birthday-default-2025-09"
SOURCE_OVERRIDE = "override"

# Birthday letters (except the "future" bucket) belong to September 2025
BIRTHDAY_TARGET_YEAR = 2025
BIRTHDAY_TARGET_MONTH = 9
BIRTHDAY_MAX_DAY = 30


def to_date(year: int, month: int, day: int) -> Optional[date]:
    """Build a calendar date, or None if the combination doesn't exist."""
    try:
        return date(year, month, day)
    except ValueError:
        return None


def to_timestamp_ms(value: Optional[date]) -> Optional[int]:
    """Epoch milliseconds of local midnight on the given date."""
    if value is None:
        return None
    return int(datetime(value.year, value.month, value.day).timestamp() * 1000)


def format_ymd(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


# ==============================================================================
# DATE STRATEGIES
# ==============================================================================

class DateStrategy:
    """A single way of reading a full year-month-day out of text."""

    def __init__(self, name: str, pattern: str, order: tuple = ("year", "month", "day")):
        self.name = name
        self.pattern = re.compile(pattern)
        self.order = order

    def try_parse(self, text: str) -> Optional[date]:
        match = self.pattern.search(text)
        if not match:
            return None
        parts = dict(zip(self.order, (int(group) for group in match.groups())))
        return to_date(parts["year"], parts["month"], parts["day"])

    def __repr__(self):
        return f"DateStrategy({self.name!r})"


FULL_DATE_STRATEGIES = (
    # 2024-09-29, 2024.9.29, 2024年9月29日, 2024_0929
    DateStrategy(
        "separated-ymd",
        _LEAD + _YEAR + _SEP + "年?" + _SEP + _MONTH + _SEP + "月?" + _SEP + _DAY + r"\s*日?" + _TRAIL,
    ),
    # 20240929
    DateStrategy("compact-ymd", _LEAD + _YEAR + _MONTH_2 + _DAY_2 + _TRAIL),
    # 20260-0214 -> 2026-02-14 (one stray digit typed after the year)
    DateStrategy("stray-digit-year", _LEAD + _YEAR + "[0-9]" + _SEP + _MONTH_2 + _SEP + _DAY_2 + _TRAIL),
    # 09/29/2024
    DateStrategy(
        "month-day-year",
        _LEAD + _MONTH + "[/._-]" + _DAY + "[/._-]" + _YEAR + _TRAIL,
        order=("month", "day", "year"),
    ),
)

# Explicit separator first so folder codes like "59" aren't read as month/day
_MONTH_DAY_PATTERNS = (
    re.compile(_LEAD + _MONTH + "[/._-]" + _DAY + _TRAIL),
    re.compile(_LEAD + _MONTH_2 + _DAY_2 + _TRAIL),
)
_YEAR_PATTERN = re.compile(_LEAD + _YEAR + _TRAIL)


def parse_full_date(text: str, strategies=FULL_DATE_STRATEGIES) -> Optional[date]:
    """Try each strategy in order and return the first valid date."""
    text = (text or "").strip()
    if not text:
        return None
    for strategy in strategies:
        parsed = strategy.try_parse(text)
        if parsed:
            return parsed
    return None


def parse_month_day(text: str) -> Optional[tuple[int, int]]:
    """Find a (month, day) pair such as 09/29 or 0929. Not validated against a year."""
    text = (text or "").strip()
    if not text:
        return None
    for pattern in _MONTH_DAY_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1)), int(match.group(2))
    return None


def parse_year(text: str) -> Optional[int]:
    """Find a standalone 19xx/20xx year."""
    text = (text or "").strip()
    if not text:
        return None
    match = _YEAR_PATTERN.search(text)
    return int(match.group(1)) if match else None


# ==============================================================================
# FOLDER DATES
# ==============================================================================

def parse_folder_code(folder_name: str) -> Optional[str]:
    """Leading numeric code of a folder name ("59-0301-xxx" -> "59")."""
    match = FOLDER_CODE_RE.match(folder_name)
    return match.group(1) if match else None


def _code_month_day_key(code: str, month_day: tuple[int, int]) -> str:
    return f"{code}-{month_day[0]:02d}{month_day[1]:02d}"


def empty_folder_meta() -> dict:
    return {
        "folder_code": None,
        "folder_date": None,
        "folder_date_source": None,
        "month_day": None,
        "year_hint": None,
    }


def build_folder_index(folder_names: list[str]) -> dict:
    """Resolve code and date for every top-level folder.

    A folder that only carries a month/day ("59-0301-...") borrows the full
    date of a sibling with the same code and month/day ("59-2024-0301-...").

    Args:
        folder_names: Top-level folder names in collation order

    Returns:
        Dict of folder name -> {folder_code, folder_date, folder_date_source, month_day}
    """
    index = {}
    full_dates = {}

    for name in folder_names:
        code = parse_folder_code(name)
        folder_date = parse_full_date(name)
        month_day = (folder_date.month, folder_date.day) if folder_date else parse_month_day(name)
        index[name] = {
            "folder_code": code,
            "folder_date": folder_date,
            "folder_date_source": SOURCE_FOLDER if folder_date else None,
            "month_day": month_day,
            "year_hint": parse_year(name),
        }
        if folder_date and code:
            full_dates[_code_month_day_key(code, month_day)] = folder_date

    for meta in index.values():
        if meta["folder_date"] or not meta["folder_code"] or not meta["month_day"]:
            continue
        inferred = full_dates.get(_code_month_day_key(meta["folder_code"], meta["month_day"]))
        if inferred:
            meta["folder_date"] = inferred
            meta["folder_date_source"] = SOURCE_FOLDER_INFERRED

    return index


# ==============================================================================
# DOCUMENT DATES
# ==============================================================================

def build_date_candidates(parsed: dict) -> list[tuple[str, str]]:
    """Candidate texts for a parsed document, in scan order, with provenance tags."""
    lines = parsed["lines"]
    candidates = [
        (SOURCE_FILENAME, parsed["folder_path"]),
        (SOURCE_FILENAME, parsed["file_name"]),
        (SOURCE_FILENAME, parsed["fallback_title"]),
        (SOURCE_TITLE, parsed["title"]),
    ]
    candidates.extend((SOURCE_CONTENT_LINE, line) for line in lines[:3])
    candidates.extend((SOURCE_CONTENT_LINE, line) for line in lines[-2:])
    return candidates


def infer_written_date(candidates: list[tuple[str, str]], folder_meta: dict) -> tuple[Optional[date], Optional[str]]:
    """Select one date for a document.

    Args:
        candidates: (provenance tag, text) pairs from build_date_candidates()
        folder_meta: The document's top folder entry from build_folder_index()

    Returns:
        Tuple of (date or None, provenance tag or None)
    """
    year_hint = None
    month_day = None
    for source, text in candidates:
        if year_hint is None:
            year_hint = parse_year(text)
        if month_day is None:
            month_day = parse_month_day(text)
        found = parse_full_date(text)
        if found:
            return found, source

    folder_date = folder_meta.get("folder_date")
    if folder_date is None:
        month_day = month_day or folder_meta.get("month_day")
        year_hint = year_hint or folder_meta.get("year_hint")

    if month_day:
        year = folder_date.year if folder_date else year_hint
        if year is not None:
            combined = to_date(year, month_day[0], month_day[1])
            if combined:
                return combined, SOURCE_MONTH_DAY

    if folder_date:
        return folder_date, folder_meta.get("folder_date_source") or SOURCE_FOLDER

    return None, None


# ==============================================================================
# BIRTHDAY WINDOW POLICY
# ==============================================================================

def in_birthday_window(value: Optional[date]) -> bool:
    return value is not None and value.year == BIRTHDAY_TARGET_YEAR and value.month == BIRTHDAY_TARGET_MONTH


def normalize_birthday_date(written_at: Optional[date], source: Optional[str], routes: list[str],
                            is_future: bool) -> tuple[Optional[date], Optional[str]]:
    """Move current birthday letters into September 2025.

    Documents routed to "birthday" that are not in the future bucket keep
    their day of month (clamped to 1..30) but take the target year/month.
    Undated ones land on the 1st.
    """
    if "birthday" not in routes or is_future or in_birthday_window(written_at):
        return written_at, source

    if written_at is None:
        return date(BIRTHDAY_TARGET_YEAR, BIRTHDAY_TARGET_MONTH, 1), SOURCE_BIRTHDAY_DEFAULT

    day = min(max(written_at.day, 1), BIRTHDAY_MAX_DAY)
    return date(BIRTHDAY_TARGET_YEAR, BIRTHDAY_TARGET_MONTH, day), SOURCE_BIRTHDAY_NORMALIZED
