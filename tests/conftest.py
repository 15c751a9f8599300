"""
Pytest configuration and shared fixtures for Master Pool indexer tests.
"""

import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Generator

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from converters import ExtractionError  # noqa: E402
from sources import make_mount  # noqa: E402


class FakeConverter:
    """Converter stand-in that serves canned text by file name."""

    name = "fake"

    def __init__(self, texts=None, failures=()):
        self.texts = texts or {}
        self.failures = set(failures)
        self.calls = []

    def convert(self, file_path: str) -> str:
        name = Path(file_path).name
        self.calls.append(name)
        if name in self.failures:
            raise ExtractionError("broken file")
        return self.texts.get(name, "")


def write_doc(base: Path, rel_path: str, text: str) -> Path:
    """Create a document below base, making parent folders as needed."""
    path = base / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_root(temp_dir: Path) -> Path:
    """Project root that published sourcePath values are relative to."""
    root = temp_dir / "project"
    root.mkdir()
    return root


@pytest.fixture
def source_dir(project_root: Path) -> Path:
    """Primary source tree covering every route the pipeline assigns."""
    source = project_root / "letters"
    write_doc(source, "12-2024-0929-日記/0929.txt", "今天的日記\n天氣很好")
    write_doc(source, "20-情書/給妳的信.txt", "親愛的老婆\n2023年5月20日 寫給妳")
    (source / "20-情書" / "卡片.docx").write_bytes(b"PK fake docx")
    write_doc(source, "30-雜物/random.txt", "abc")
    (source / "30-雜物" / "broken.docx").write_bytes(b"PK broken docx")
    write_doc(source, "30-雜物/ignored.pdf", "not a supported type")
    write_doc(source, "45-生日/2019-03-15.txt", "生日快樂 老婆")
    write_doc(source, "45-生日/未來生日/2030-09-01.txt", "生日快樂")
    write_doc(source, "59-心情/時光信-1.txt", "主旨：想你\n今晚睡不著")
    write_doc(source, "59-心情/時光信-2.txt", "今天很好")
    return source


@pytest.fixture
def mood_source(project_root: Path) -> Path:
    """Auxiliary folder mounted under the dentist top folder."""
    mood = project_root / "mood-letters"
    write_doc(mood, "a.txt", "想你")
    return mood


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter(
        texts={"卡片.docx": "2022/02/14 情人節快樂，寫給妳"},
        failures={"broken.docx"},
    )


@pytest.fixture
def settings(project_root: Path, source_dir: Path, mood_source: Path) -> dict:
    """Run settings as resolve_settings() would produce them."""
    return {
        "root_dir": project_root,
        "source_dir": source_dir,
        "output_dir": project_root / "public" / "data" / "master-pool",
        "mounts": [
            make_mount(mood_source, "80-2026-0211-牙醫", "__心情信__"),
            make_mount(project_root / "missing-annual", "82-2026-0212-婚禮-30年的信", "__年度信件__"),
        ],
        "converter": "auto",
    }


@pytest.fixture(autouse=True)
def reset_env_vars():
    """Reset environment variables before each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def utc_timezone():
    """Pin the local timezone to UTC so epoch-millisecond dates are predictable."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset not available on this platform")
    original = os.environ.get("TZ")
    os.environ["TZ"] = "UTC"
    time.tzset()
    yield
    if original is None:
        os.environ.pop("TZ", None)
    else:
        os.environ["TZ"] = original
    time.tzset()
