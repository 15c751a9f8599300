#!/usr/bin/env python3
"""
Source handling - finding documents and turning them into normalized text.

Two halves:
- File walker: enumerates .txt/.md/.doc/.docx files below the top-level
  folders of the source root, plus auxiliary directories mounted under a
  virtual subfolder of one top-level folder. Output order is a collation
  sort of the relative paths, so it never depends on filesystem order.
- Text extractor: reads plain text directly and hands Word documents to an
  injected converter. A failing document is carried forward with empty text
  and an error string.
"""

import logging
import os
import re
import unicodedata
from functools import lru_cache
from pathlib import Path
from urllib.parse import unquote

from pyuca import Collator

from converters import ExtractionError
from errors import FatalConfigError

logger = logging.getLogger("pool_indexer.sources")

SUPPORTED_EXTENSIONS = {".txt", ".md", ".doc", ".docx"}
PLAIN_TEXT_EXTENSIONS = {".txt", ".md"}
RICH_EXTENSIONS = {".doc", ".docx"}

_EXTENSION_RE = re.compile(r"\.(docx?|txt|md)$", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_LINE_BREAKS_RE = re.compile(r"\n+")
_BAD_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")

TITLE_MIN_LENGTH = 4
TITLE_MAX_LENGTH = 80


# ==============================================================================
# TEXT HELPERS
# ==============================================================================

def normalize_text(text: str) -> str:
    """Collapse non-breaking spaces, unify newlines to \\n and trim."""
    text = text.replace("\u00a0", " ")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.strip()


def normalize_line(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_lines(text: str) -> list[str]:
    """Split text into non-empty, whitespace-collapsed lines."""
    lines = (normalize_line(line) for line in _LINE_BREAKS_RE.split(text))
    return [line for line in lines if line]


def strip_extension(name: str) -> str:
    """Remove a supported document extension from a filename."""
    return _EXTENSION_RE.sub("", name).strip()


def is_supported(name: str) -> bool:
    return Path(name).suffix.lower() in SUPPORTED_EXTENSIONS


def safe_decode(name: str) -> str:
    """Percent-decode a path, returning it unchanged if it isn't valid encoding."""
    if _BAD_PERCENT_RE.search(name):
        return name
    try:
        return unquote(name, errors="strict")
    except UnicodeDecodeError:
        return name


def normalize_rel_path(rel_path: str) -> str:
    """Canonical form of a relative path used for override keys."""
    path = rel_path.replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    return unicodedata.normalize("NFC", path)


def extract_title(text: str, fallback_title: str) -> str:
    """Use the first content line as title when it has a sensible length."""
    lines = split_lines(text)
    if not lines:
        return fallback_title
    candidate = lines[0]
    if TITLE_MIN_LENGTH <= len(candidate) <= TITLE_MAX_LENGTH:
        return candidate
    return fallback_title


@lru_cache(maxsize=1)
def get_collator() -> Collator:
    """Unicode Collation Algorithm collator (loaded once, it parses a large table)."""
    return Collator()


def collation_key(text: str) -> tuple:
    """Sort key giving the same order on every OS and locale setting."""
    return (get_collator().sort_key(text), text)


def to_posix(path) -> str:
    return str(path).replace("\\", "/")


# ==============================================================================
# FILE WALKER
# ==============================================================================

def make_mount(source_dir, top_folder: str, virtual_subdir: str) -> dict:
    """Describe an auxiliary directory spliced in as <top_folder>/<virtual_subdir>."""
    return {
        "source_dir": Path(source_dir),
        "top_folder": top_folder,
        "virtual_subdir": virtual_subdir,
    }


def check_source_root(source_dir: Path):
    """Fail the run if the primary source root cannot be read."""
    if not source_dir.exists():
        raise FatalConfigError(f"Source folder not found: {source_dir}")
    if not source_dir.is_dir():
        raise FatalConfigError(f"Source path is not a folder: {source_dir}")
    if not os.access(source_dir, os.R_OK | os.X_OK):
        raise FatalConfigError(f"Source folder is not readable: {source_dir}")


def list_top_folders(source_dir: Path, mounts: list) -> list[str]:
    """Top-level folder names of the source root plus every mount's top folder."""
    try:
        folders = [entry.name for entry in source_dir.iterdir() if entry.is_dir()]
    except OSError as e:
        raise FatalConfigError(f"Cannot list source folder {source_dir}: {e}") from e

    for mount in mounts:
        if mount["top_folder"] not in folders:
            folders.append(mount["top_folder"])
    return sorted(folders, key=collation_key)


def iter_tree(base_dir: Path):
    """Yield supported files below base_dir using an explicit work-list.

    Entries are sorted before being pushed, so traversal order is fixed
    regardless of how the filesystem lists directories.
    """
    stack = [base_dir]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda p: collation_key(p.name))
        except OSError as e:
            logger.warning(f"Skipping unreadable folder {current}: {e}")
            continue

        subdirs = []
        for entry in entries:
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file() and is_supported(entry.name):
                yield entry
        # Reversed so the first subdirectory is popped first
        stack.extend(reversed(subdirs))


def _relative_to_root(abs_path: Path, root_dir: Path) -> str:
    return to_posix(os.path.relpath(abs_path, root_dir))


def walk_sources(source_dir: Path, mounts: list, root_dir: Path) -> tuple[list[str], list[dict]]:
    """Enumerate every source document.

    Args:
        source_dir: Primary source root (must exist)
        mounts: Auxiliary directories from make_mount(); missing ones are skipped
        root_dir: Project root used for the published sourcePath

    Returns:
        Tuple of (top folder names, source documents sorted by relative path).
        Each document is a dict with abs_path, rel_path and source_path.

    Raises:
        FatalConfigError: If the primary source root is missing or unreadable
    """
    source_dir = Path(source_dir)
    check_source_root(source_dir)
    top_folders = list_top_folders(source_dir, mounts)

    documents = []
    for folder_name in top_folders:
        folder_abs = source_dir / folder_name
        if not folder_abs.is_dir():
            continue
        for abs_path in iter_tree(folder_abs):
            documents.append({
                "abs_path": abs_path,
                "rel_path": to_posix(abs_path.relative_to(source_dir)),
                "source_path": _relative_to_root(abs_path, root_dir),
            })

    for mount in mounts:
        mount_dir = Path(mount["source_dir"])
        if not mount_dir.is_dir():
            logger.info(f"Auxiliary source not found, skipping: {mount_dir}")
            continue
        for abs_path in iter_tree(mount_dir):
            rel_from_mount = to_posix(abs_path.relative_to(mount_dir))
            documents.append({
                "abs_path": abs_path,
                "rel_path": f"{mount['top_folder']}/{mount['virtual_subdir']}/{rel_from_mount}",
                "source_path": _relative_to_root(abs_path, root_dir),
            })

    documents.sort(key=lambda doc: collation_key(doc["rel_path"]))
    return top_folders, documents


# ==============================================================================
# TEXT EXTRACTOR
# ==============================================================================

def extract_text(file_path, converter=None) -> dict:
    """Extract normalized plain text from a document.

    Args:
        file_path: Path of the document
        converter: Object with convert(path) -> str raising ExtractionError,
            used for .doc/.docx files

    Returns:
        Dict with "text" (possibly empty) and "error" (None on success)
    """
    path = Path(file_path)
    suffix = path.suffix.lower()

    if suffix in PLAIN_TEXT_EXTENSIONS:
        try:
            return {"text": normalize_text(path.read_text(encoding="utf-8-sig", errors="replace")), "error": None}
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            return {"text": "", "error": f"無法讀取檔案：{e}"}

    if suffix in RICH_EXTENSIONS:
        if converter is None:
            return {"text": "", "error": "無法解析 Word：未設定轉換器"}
        try:
            return {"text": normalize_text(converter.convert(str(path)) or ""), "error": None}
        except ExtractionError as e:
            logger.warning(f"Conversion failed for {path.name}: {e}")
            return {"text": "", "error": f"無法解析 Word：{e}"}

    return {"text": "", "error": "不支援的副檔名"}


def parse_document(source_doc: dict, converter=None) -> dict:
    """Extract a document and derive everything later stages read from it.

    Returns:
        Dict with rel_path (decoded), top_folder, folder_path (path below the
        top folder), file_name, fallback_title, title, text, lines and error.
    """
    rel_path = safe_decode(source_doc["rel_path"])
    parts = rel_path.split("/")
    file_name = parts[-1]
    fallback_title = strip_extension(file_name)

    extracted = extract_text(source_doc["abs_path"], converter)
    text = extracted["text"]

    return {
        "rel_path": rel_path,
        "top_folder": parts[0],
        "folder_path": "/".join(parts[1:]),
        "file_name": file_name,
        "fallback_title": fallback_title,
        "title": extract_title(text, fallback_title),
        "text": text,
        "lines": split_lines(text),
        "error": extracted["error"],
    }
