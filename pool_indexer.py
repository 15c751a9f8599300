#!/usr/bin/env python3
"""
Master Pool Indexer - Build the master-pool data set from a folder of letters

This script walks the source folders and, for every .txt/.md/.doc/.docx file:
1. Extracts normalized plain text (Word files go through a pluggable converter)
2. Infers the date it was written from the path, title, content and folder name
3. Classifies it into routes (diary, letters, birthday, ...) and mood tags
4. Applies hand-written corrections from overrides.json
5. Writes content/<id>.txt, index.json, review.json and views/<route>.json

Usage:
    python pool_indexer.py
    python pool_indexer.py --source ./letters --output ./public/data/master-pool

Every run recomputes everything; re-running on unchanged input produces the
same output apart from the generatedAt timestamps.
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from artifacts import (
    build_review_item,
    content_file_name,
    ensure_output_dirs,
    get_output_paths,
    remove_stale_content,
    write_aggregates,
    write_content_file,
)
from classifier import Taxonomy, classify_document, is_future_birthday
from converters import CONVERTERS, get_converter, list_converters
from date_inference import (
    build_date_candidates,
    build_folder_index,
    empty_folder_meta,
    format_ymd,
    infer_written_date,
    normalize_birthday_date,
    to_timestamp_ms,
)
from errors import FatalConfigError
from overrides import OverrideStore, apply_override
from sources import make_mount, parse_document, to_posix, walk_sources
from stable_ids import StableIdAssigner

# Load environment variables from .env file (if it exists and is accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    pass


# ==============================================================================
# CONFIGURATION LOADING
# ==============================================================================

SOURCE_ROOT_DIR = "重要-參考資料-勿刪"


def default_config() -> dict:
    return {
        "paths": {
            "root_dir": "",
            "source_dir": f"{SOURCE_ROOT_DIR}/情書整理2",
            "output_dir": "public/data/master-pool",
        },
        "mounts": [
            {
                "name": "mood",
                "source_dir": f"{SOURCE_ROOT_DIR}/心情信",
                "top_folder": "80-2026-0211-牙醫",
                "virtual_subdir": "__心情信__",
            },
            {
                "name": "annual",
                "source_dir": f"{SOURCE_ROOT_DIR}/年度信件",
                "top_folder": "82-2026-0212-婚禮-30年的信",
                "virtual_subdir": "__年度信件__",
            },
        ],
        "converter": "auto",
        "logging": {
            "level": "",
            "file": "",
        },
    }


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml on top of the built-in defaults.

    Looks for config.local.yaml, then config.yaml, in the working directory
    unless an explicit path is given. The first file found wins.
    """
    config = default_config()

    if config_path:
        config_paths = [Path(config_path)]
    else:
        config_paths = [Path.cwd() / "config.local.yaml", Path.cwd() / "config.yaml"]

    for path in config_paths:
        if not path.exists():
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: Could not load {path}: {e}", file=sys.stderr)
            continue

        if not isinstance(yaml_config, dict):
            print(f"Warning: Ignoring {path}: expected a mapping", file=sys.stderr)
            continue

        if isinstance(yaml_config.get("paths"), dict):
            for key, value in yaml_config["paths"].items():
                if value:
                    config["paths"][key] = str(value)
        if isinstance(yaml_config.get("mounts"), list):
            config["mounts"] = [m for m in yaml_config["mounts"] if isinstance(m, dict) and m.get("name")]
        if yaml_config.get("converter"):
            config["converter"] = str(yaml_config["converter"])
        if isinstance(yaml_config.get("logging"), dict):
            config["logging"].update(yaml_config["logging"])

        break  # Use first found config

    return config


def resolve_path(value: str, root_dir: Path) -> Path:
    """Absolute path for a config value; relative values hang off root_dir."""
    path = Path(os.path.expanduser(value))
    if not path.is_absolute():
        path = root_dir / path
    return Path(os.path.abspath(path))


def resolve_source_path(arg_value: Optional[str], env_key: str, fallback: str, root_dir: Path) -> Path:
    """Command-line flag, then environment variable, then the configured default."""
    from_arg = (arg_value or "").strip()
    if from_arg:
        return resolve_path(from_arg, root_dir)

    from_env = os.getenv(env_key, "").strip()
    if from_env:
        return resolve_path(from_env, root_dir)

    return resolve_path(fallback, root_dir)


def mount_env_key(name: str) -> str:
    return f"MASTER_POOL_{name.upper().replace('-', '_')}_SOURCE_DIR"


def resolve_settings(args: argparse.Namespace, config: dict) -> dict:
    """Combine CLI arguments, environment and config into the run settings."""
    root_value = (args.root or "").strip() or os.getenv("MASTER_POOL_ROOT", "").strip() or config["paths"]["root_dir"]
    root_dir = Path(os.path.abspath(os.path.expanduser(root_value))) if root_value else Path.cwd()

    mounts = []
    for mount in config["mounts"]:
        arg_value = getattr(args, f"{mount['name'].replace('-', '_')}_source", None)
        mounts.append(make_mount(
            resolve_source_path(arg_value, mount_env_key(mount["name"]), mount["source_dir"], root_dir),
            mount["top_folder"],
            mount["virtual_subdir"],
        ))

    converter = args.converter or os.getenv("MASTER_POOL_CONVERTER", "").strip() or config["converter"]

    return {
        "root_dir": root_dir,
        "source_dir": resolve_source_path(args.source, "MASTER_POOL_SOURCE_DIR", config["paths"]["source_dir"], root_dir),
        "output_dir": resolve_source_path(args.output, "MASTER_POOL_OUTPUT_DIR", config["paths"]["output_dir"], root_dir),
        "mounts": mounts,
        "converter": converter,
    }


# ==============================================================================
# LOGGING CONFIGURATION
# ==============================================================================

def setup_logging() -> logging.Logger:
    """Configure logging based on environment variables."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file = os.getenv("LOG_FILE", "")

    logger = logging.getLogger("pool_indexer")
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Prevent duplicate handlers on reimport
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

    if log_file:
        add_file_handler(logger, log_file)

    return logger


def add_file_handler(logger: logging.Logger, log_file: str):
    # One handler per file, however often logging is reconfigured
    path = os.path.abspath(log_file)
    if any(isinstance(h, logging.FileHandler) and h.baseFilename == path for h in logger.handlers):
        return

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    ))
    logger.addHandler(file_handler)


logger = setup_logging()


def apply_logging_config(level: Optional[str], log_file: Optional[str] = None):
    """Apply --log-level / config.yaml logging settings on top of the env defaults."""
    if level:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if log_file and not os.getenv("LOG_FILE"):
        add_file_handler(logger, log_file)


# ==============================================================================
# DOCUMENT PIPELINE
# ==============================================================================

def utc_timestamp() -> str:
    """Current time as ISO 8601 UTC with milliseconds, e.g. 2025-09-01T08:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def process_document(source_doc: dict, folder_index: dict, converter, taxonomy: Taxonomy,
                     override_store: OverrideStore, id_assigner: StableIdAssigner) -> dict:
    """Run one document through extraction, dating, classification and overrides.

    Returns:
        Dict with "record" (the published document entry), "text" (body to
        write) and "error" (extraction error or None)
    """
    parsed = parse_document(source_doc, converter)
    rel_path = parsed["rel_path"]
    folder_meta = folder_index.get(parsed["top_folder"]) or empty_folder_meta()

    written_at, written_at_source = infer_written_date(build_date_candidates(parsed), folder_meta)
    classification = classify_document(parsed, folder_meta["folder_code"], taxonomy)
    written_at, written_at_source = normalize_birthday_date(
        written_at, written_at_source, classification["routes"], is_future_birthday(rel_path)
    )

    final = apply_override(
        {
            "routes": classification["routes"],
            "mood_ids": classification["mood_ids"],
            "birthday_bucket": classification["birthday_bucket"],
            "written_at": written_at,
            "written_at_source": written_at_source,
            "title": parsed["title"],
        },
        override_store.lookup(rel_path),
        taxonomy,
    )

    doc_id = id_assigner.assign(rel_path, parsed["fallback_title"])
    record = {
        "id": doc_id,
        "title": final["title"],
        "sourcePath": source_doc["source_path"],
        "sourceRelPath": rel_path,
        "sourceFolder": parsed["top_folder"],
        "sourceFolderCode": folder_meta["folder_code"],
        "sourceFolderDate": format_ymd(folder_meta["folder_date"]),
        "routes": final["routes"],
        "moodIds": final["mood_ids"],
        "moodLabels": [taxonomy.mood_label(mood_id) for mood_id in final["mood_ids"]],
        "birthdayBucket": final["birthday_bucket"],
        "writtenAt": to_timestamp_ms(final["written_at"]),
        "writtenAtSource": final["written_at_source"],
        "contentPath": f"content/{content_file_name(doc_id)}",
        "contentLength": len(parsed["text"]),
    }
    logger.debug(f"{rel_path} -> {doc_id} routes={record['routes']} date={format_ymd(final['written_at'])}")

    return {"record": record, "text": parsed["text"], "error": parsed["error"]}


def build_pool(settings: dict, converter=None, taxonomy: Optional[Taxonomy] = None,
               generated_at: Optional[str] = None) -> dict:
    """Run the whole batch and write every artifact.

    Args:
        settings: Output of resolve_settings() (root_dir, source_dir,
            output_dir, mounts)
        converter: Rich-document converter; defaults to get_converter()
        taxonomy: Category tables; defaults to Taxonomy.default()
        generated_at: Timestamp stamped into the artifacts; defaults to now

    Returns:
        Dict with paths, index (payload written to index.json), content_count
        and stale (names of removed content files)

    Raises:
        FatalConfigError: Missing source root or malformed overrides file.
            Raised before anything is written.
    """
    taxonomy = taxonomy or Taxonomy.default()
    if converter is None:
        converter = get_converter(settings.get("converter"))

    root_dir = Path(settings["root_dir"])
    paths = get_output_paths(settings["output_dir"])

    top_folders, source_docs = walk_sources(settings["source_dir"], settings.get("mounts", []), root_dir)
    override_store = OverrideStore(paths["overrides"], taxonomy)
    logger.info(f"Found {len(source_docs)} documents in {len(top_folders)} folders")

    ensure_output_dirs(paths)
    folder_index = build_folder_index(top_folders)
    id_assigner = StableIdAssigner()

    records = []
    review = []
    written = set()
    for source_doc in source_docs:
        result = process_document(source_doc, folder_index, converter, taxonomy, override_store, id_assigner)
        record = result["record"]
        written.add(write_content_file(paths["content"], record["id"], result["text"]))
        records.append(record)

        item = build_review_item(record, result["error"])
        if item:
            review.append(item)

    stale = remove_stale_content(paths["content"], written)

    generated_at = generated_at or utc_timestamp()
    source_label = to_posix(os.path.relpath(settings["source_dir"], root_dir))
    index_payload = write_aggregates(paths, records, review, taxonomy, source_label, generated_at)
    override_store.save(generated_at)

    return {
        "paths": paths,
        "index": index_payload,
        "content_count": len(written),
        "stale": stale,
    }


def format_summary(summary: dict) -> str:
    """One-line human-readable run summary."""
    route_counts = ", ".join(f"{route} {count}" for route, count in summary["routeCounts"].items())
    return (
        f"📌 Total {summary['total']} | dated {summary['datedCount']} | undated {summary['undatedCount']}"
        f" | review {summary['reviewCount']}"
        f" | birthday current/future {summary['birthdayCurrent']}/{summary['birthdayFuture']}"
        f" | routes: {route_counts}"
    )


def print_report(result: dict):
    paths = result["paths"]
    print(f"✅ Wrote {paths['index']}")
    print(f"✅ Wrote {paths['review']}")
    print(f"✅ Updated {paths['overrides']}")
    print(f"✅ Wrote content: {paths['content']} ({result['content_count']} files)")
    print(f"✅ Wrote views: {paths['views']}")
    if result["stale"]:
        print(f"🧹 Removed {len(result['stale'])} stale content files")
    print(format_summary(result["index"]["summary"]))


# ==============================================================================
# CLI
# ==============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build the master-pool index from a folder of letters and notes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Outputs (below --output):
  content/<id>.txt     normalized text of each document
  index.json           all documents, folder groups and summary
  review.json          documents that need an override
  views/<route>.json   ids per route, plus birthday-current / birthday-future
  overrides.json       hand-written corrections (read, then rewritten)

Sources resolve in order: flag, environment variable, config.yaml, default.
  --source          MASTER_POOL_SOURCE_DIR
  --mood-source     MASTER_POOL_MOOD_SOURCE_DIR
  --annual-source   MASTER_POOL_ANNUAL_SOURCE_DIR
  --output          MASTER_POOL_OUTPUT_DIR
  --root            MASTER_POOL_ROOT

Examples:
  python pool_indexer.py
  python pool_indexer.py --source=./letters --output=./out
  python pool_indexer.py --converter python-docx --log-level DEBUG
        """
    )

    parser.add_argument("--source", "-s", help="Primary source folder")
    parser.add_argument("--mood-source", help="Mood letters folder (mounted under the dentist folder)")
    parser.add_argument("--annual-source", help="Annual letters folder (mounted under the wedding folder)")
    parser.add_argument("--output", "-o", help="Output folder for the generated data")
    parser.add_argument("--root", help="Project root; relative paths and published source paths use it")
    parser.add_argument("--config", "-c", help="Path to a YAML config file")
    parser.add_argument("--converter", choices=sorted(CONVERTERS.keys()),
                        help="Word document converter (default: auto)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level (default: LOG_LEVEL env or INFO)")
    parser.add_argument("--list-converters", action="store_true",
                        help="Show which converters are installed and exit")
    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_converters:
        for name, info in list_converters().items():
            status = "available" if info["available"] else "not installed"
            print(f"{name:12} {info['display_name']} ({status})")
        return 0

    config = load_config(args.config)
    apply_logging_config(
        args.log_level or os.getenv("LOG_LEVEL") or config["logging"].get("level"),
        config["logging"].get("file"),
    )

    settings = resolve_settings(args, config)
    try:
        converter = get_converter(settings["converter"])
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    logger.info(f"Source: {settings['source_dir']}")
    logger.info(f"Output: {settings['output_dir']}")

    try:
        result = build_pool(settings, converter)
    except FatalConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    print_report(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
