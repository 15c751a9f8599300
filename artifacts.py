#!/usr/bin/env python3
"""
Artifact writing for the Master Pool indexer.

Everything here is recomputed from the full record list on each run:

    <output>/content/<id>.txt   normalized body of every document
    <output>/index.json         summary, folder groups and all records
    <output>/review.json        records that need a human look
    <output>/views/<route>.json ids per route (+ birthday-current/future)

Content files that were not written by the current run are deleted.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from sources import collation_key

logger = logging.getLogger("pool_indexer.artifacts")

PAYLOAD_VERSION = 1
CONTENT_DIRNAME = "content"
VIEWS_DIRNAME = "views"

BIRTHDAY_VIEWS = (
    ("birthday-current", "生日信（現在）", "current"),
    ("birthday-future", "生日信（未來）", "future"),
)

ISSUE_EMPTY_BODY = "正文為空"
ISSUE_MISSING_DATE = "缺少日期"
ISSUE_UNCLASSIFIED = "未分類"


# ==============================================================================
# FILE HELPERS
# ==============================================================================

def write_json(path: str | Path, payload):
    """Write pretty-printed UTF-8 JSON with a trailing newline."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        f.write("\n")


def get_output_paths(output_dir: str | Path) -> dict:
    """Paths of every artifact below the output directory."""
    output = Path(output_dir)
    return {
        "output": output,
        "content": output / CONTENT_DIRNAME,
        "views": output / VIEWS_DIRNAME,
        "index": output / "index.json",
        "review": output / "review.json",
        "overrides": output / "overrides.json",
    }


def ensure_output_dirs(paths: dict):
    for key in ("output", "content", "views"):
        paths[key].mkdir(parents=True, exist_ok=True)


def content_file_name(doc_id: str) -> str:
    return f"{doc_id}.txt"


# ==============================================================================
# CONTENT FILES
# ==============================================================================

def write_content_file(content_dir: Path, doc_id: str, text: str) -> str:
    """Write one document body; returns the file name."""
    name = content_file_name(doc_id)
    with open(content_dir / name, "w", encoding="utf-8", newline="\n") as f:
        f.write(f"{text}\n")
    return name


def remove_stale_content(content_dir: Path, keep: set) -> list[str]:
    """Delete .txt files in content_dir that are not in keep.

    Returns:
        Sorted names of the deleted files
    """
    stale = sorted(
        entry.name
        for entry in content_dir.iterdir()
        if entry.is_file() and entry.name.lower().endswith(".txt") and entry.name not in keep
    )
    for name in stale:
        (content_dir / name).unlink(missing_ok=True)
        logger.info(f"Removed stale content file {name}")
    return stale


# ==============================================================================
# REVIEW MANIFEST
# ==============================================================================

def review_issues(record: dict, extraction_error: Optional[str]) -> list[str]:
    issues = []
    if extraction_error:
        issues.append(extraction_error)
    if record["contentLength"] == 0:
        issues.append(ISSUE_EMPTY_BODY)
    if record["writtenAt"] is None:
        issues.append(ISSUE_MISSING_DATE)
    if "unclassified" in record["routes"]:
        issues.append(ISSUE_UNCLASSIFIED)
    return issues


def build_suggestion(record: dict, extraction_error: Optional[str]) -> str:
    """Point the reader at the overrides.json fields that would resolve the issues."""
    fields = []
    hints = []
    if "unclassified" in record["routes"]:
        fields.append("routes")
    if record["writtenAt"] is None:
        fields.append("writtenAt")
        hints.append("或在檔名、正文前段補上 YYYY-MM-DD / YYYY年MM月DD日")
    if extraction_error or record["contentLength"] == 0:
        fields.extend(f for f in ("routes", "title") if f not in fields)
        hints.append("或確認原始檔能正常開啟")
    if not fields:
        fields = ["routes", "writtenAt", "moodIds", "birthdayBucket", "title"]

    suggestion = f"可在 overrides.json 指定 {' / '.join(fields)}"
    if hints:
        suggestion += f"（{'；'.join(hints)}）"
    return suggestion


def build_review_item(record: dict, extraction_error: Optional[str] = None) -> Optional[dict]:
    """Review entry for a record, or None if nothing about it is uncertain."""
    issues = review_issues(record, extraction_error)
    if not issues:
        return None
    return {
        "sourceRelPath": record["sourceRelPath"],
        "title": record["title"],
        "issues": issues,
        "suggestion": build_suggestion(record, extraction_error),
    }


# ==============================================================================
# AGGREGATES
# ==============================================================================

def sort_records(records: list[dict]) -> list[dict]:
    """Newest first, undated last, ties broken by relative path."""
    def sort_key(record):
        written_at = record["writtenAt"]
        dated = written_at is not None
        return (0 if dated else 1, -written_at if dated else 0, collation_key(record["sourceRelPath"]))

    return sorted(records, key=sort_key)


def build_route_index(records: list[dict], taxonomy) -> dict:
    """Route id -> ids of its records, for every declared route."""
    by_route = {route["id"]: [] for route in taxonomy.routes}
    for record in records:
        for route in record["routes"]:
            if route in by_route:
                by_route[route].append(record["id"])
    return by_route


def build_folder_groups(records: list[dict]) -> list[dict]:
    """One entry per top folder; newest folder date first, then by name."""
    groups = {}
    for record in records:
        folder = record["sourceFolder"]
        group = groups.get(folder)
        if group is None:
            group = {
                "folder": folder,
                "folderCode": record["sourceFolderCode"],
                "folderDate": record["sourceFolderDate"],
                "count": 0,
                "ids": [],
            }
            groups[folder] = group
        group["count"] += 1
        group["ids"].append(record["id"])

    dated = sorted(
        (g for g in groups.values() if g["folderDate"]),
        key=lambda g: collation_key(g["folder"]),
    )
    # Stable sort: name order survives within the same date
    dated.sort(key=lambda g: g["folderDate"], reverse=True)
    undated = sorted(
        (g for g in groups.values() if not g["folderDate"]),
        key=lambda g: collation_key(g["folder"]),
    )
    return dated + undated


def build_summary(records: list[dict], review: list[dict], by_route: dict) -> dict:
    dated_count = sum(1 for r in records if r["writtenAt"] is not None)
    return {
        "total": len(records),
        "datedCount": dated_count,
        "undatedCount": len(records) - dated_count,
        "reviewCount": len(review),
        "routeCounts": {route: len(ids) for route, ids in by_route.items()},
        "birthdayCurrent": sum(1 for r in records if r["birthdayBucket"] == "current"),
        "birthdayFuture": sum(1 for r in records if r["birthdayBucket"] == "future"),
    }


# ==============================================================================
# PAYLOADS
# ==============================================================================

def build_index_payload(records: list[dict], review: list[dict], taxonomy, source_dir: str,
                        generated_at: str) -> dict:
    """index.json payload. Records must already be sorted."""
    by_route = build_route_index(records, taxonomy)
    return {
        "version": PAYLOAD_VERSION,
        "generatedAt": generated_at,
        "sourceDir": source_dir,
        "routes": taxonomy.route_guide(),
        "moodGuide": taxonomy.mood_guide(),
        "summary": build_summary(records, review, by_route),
        "folders": build_folder_groups(records),
        "docs": records,
    }


def build_review_payload(review: list[dict], generated_at: str) -> dict:
    return {
        "version": PAYLOAD_VERSION,
        "generatedAt": generated_at,
        "unresolvedCount": len(review),
        "unresolved": review,
    }


def _view_payload(route: str, label: str, ids: list[str], generated_at: str) -> dict:
    return {
        "version": PAYLOAD_VERSION,
        "generatedAt": generated_at,
        "route": route,
        "label": label,
        "total": len(ids),
        "ids": ids,
    }


def build_view_payloads(records: list[dict], taxonomy, generated_at: str) -> dict:
    """View name -> payload for every route plus the two birthday buckets."""
    by_route = build_route_index(records, taxonomy)
    views = {
        route["id"]: _view_payload(route["id"], route["label"], by_route[route["id"]], generated_at)
        for route in taxonomy.routes
    }
    for name, label, bucket in BIRTHDAY_VIEWS:
        ids = [r["id"] for r in records if r["birthdayBucket"] == bucket]
        views[name] = _view_payload(name, label, ids, generated_at)
    return views


def write_aggregates(paths: dict, records: list[dict], review: list[dict], taxonomy,
                     source_dir: str, generated_at: str) -> dict:
    """Write index.json, review.json and every view file.

    Returns:
        The index payload that was written
    """
    records = sort_records(records)
    index_payload = build_index_payload(records, review, taxonomy, source_dir, generated_at)
    write_json(paths["index"], index_payload)
    write_json(paths["review"], build_review_payload(review, generated_at))

    for name, payload in build_view_payloads(records, taxonomy, generated_at).items():
        write_json(paths["views"] / f"{name}.json", payload)

    return index_payload
