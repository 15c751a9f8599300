#!/usr/bin/env python3
"""
Converter Module - Pluggable backends for turning Word documents into plain text.

The indexer never talks to a specific converter directly. It receives an
object with a ``convert(path) -> str`` method that raises ``ExtractionError``
on failure, so backends can be swapped without touching the pipeline.

Supported backends:
- Docling (.docx)
- python-docx (.docx, plus legacy .doc through a LibreOffice round-trip)
- Fallback chain (tries each available backend in order)

Usage:
    from converters import get_converter

    converter = get_converter("auto")
    text = converter.convert("letters/0929.docx")
"""

import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

try:
    from docling.document_converter import DocumentConverter
except ImportError:
    DocumentConverter = None

try:
    import docx
except ImportError:
    docx = None

# Load environment variables from .env file (if it exists and is accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    pass


class ExtractionError(Exception):
    """Raised when a converter cannot produce text for a document."""


# ==============================================================================
# BASE CONVERTER CLASS
# ==============================================================================

class TextConverter(ABC):
    """Abstract base class for rich-document converters."""

    name: str = "base"
    display_name: str = "Base Converter"
    extensions: frozenset = frozenset()

    @abstractmethod
    def convert(self, file_path: str) -> str:
        """
        Convert a document to plain text.

        Args:
            file_path: Absolute path of the source document

        Returns:
            The document body as plain text

        Raises:
            ExtractionError: If the document cannot be converted
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this converter's backend is installed."""
        pass

    def supports(self, file_path: str) -> bool:
        """Check if this converter handles the file's extension."""
        return Path(file_path).suffix.lower() in self.extensions

    def _require_support(self, file_path: str):
        if not self.is_available():
            raise ExtractionError(f"{self.display_name} is not installed")
        if not self.supports(file_path):
            suffix = Path(file_path).suffix.lower() or "(none)"
            raise ExtractionError(f"{self.display_name} cannot read {suffix} files")


# ==============================================================================
# DOCLING CONVERTER
# ==============================================================================

class DoclingConverter(TextConverter):
    """Docling-based converter for .docx files."""

    name = "docling"
    display_name = "Docling"
    extensions = frozenset({".docx"})

    def __init__(self):
        self._converter = None

    def is_available(self) -> bool:
        return DocumentConverter is not None

    def convert(self, file_path: str) -> str:
        self._require_support(file_path)
        try:
            if self._converter is None:
                self._converter = DocumentConverter()
            result = self._converter.convert(file_path)
            return result.document.export_to_text()
        except Exception as e:
            raise ExtractionError(str(e)) from e


# ==============================================================================
# PYTHON-DOCX CONVERTER
# ==============================================================================

class PythonDocxConverter(TextConverter):
    """python-docx converter; legacy .doc files go through LibreOffice first."""

    name = "python-docx"
    display_name = "python-docx"
    extensions = frozenset({".docx", ".doc"})

    def is_available(self) -> bool:
        return docx is not None

    def convert(self, file_path: str) -> str:
        self._require_support(file_path)
        if Path(file_path).suffix.lower() == ".doc":
            return self._convert_legacy(file_path)
        return self._read_docx(file_path)

    def _read_docx(self, file_path: str) -> str:
        try:
            document = docx.Document(str(file_path))
        except Exception as e:
            raise ExtractionError(str(e)) from e

        parts = [p.text for p in document.paragraphs if p.text]
        for table in document.tables:
            for row in table.rows:
                row_text = "\t".join(cell.text or "" for cell in row.cells)
                if row_text.strip():
                    parts.append(row_text)
        return "\n".join(parts)

    def _convert_legacy(self, file_path: str) -> str:
        """Convert a .doc file to .docx with LibreOffice, then read it."""
        soffice = find_soffice()
        if not soffice:
            raise ExtractionError("LibreOffice (soffice) not found; cannot read .doc files")

        with tempfile.TemporaryDirectory() as tmpdir:
            cmd = [soffice, "--headless", "--convert-to", "docx", "--outdir", tmpdir, str(file_path)]
            try:
                subprocess.run(cmd, check=True, capture_output=True, timeout=120)
            except (subprocess.SubprocessError, OSError) as e:
                raise ExtractionError(f"LibreOffice conversion failed: {e}") from e

            candidates = sorted(Path(tmpdir).glob("*.docx"))
            if not candidates:
                raise ExtractionError("LibreOffice produced no output")
            return self._read_docx(str(candidates[0]))


def find_soffice() -> Optional[str]:
    """Locate the LibreOffice binary (SOFFICE_PATH env var wins)."""
    configured = os.getenv("SOFFICE_PATH", "").strip()
    if configured:
        return configured
    return shutil.which("soffice") or shutil.which("soffice.exe")


# ==============================================================================
# FALLBACK CHAIN
# ==============================================================================

class FallbackConverter(TextConverter):
    """Try each available converter that supports the file, in order."""

    name = "auto"
    display_name = "Auto (Docling, then python-docx)"

    def __init__(self, converters: Optional[list] = None):
        if converters is None:
            converters = [DoclingConverter(), PythonDocxConverter()]
        self.converters = converters
        self.extensions = frozenset().union(*(c.extensions for c in converters))

    def is_available(self) -> bool:
        return any(c.is_available() for c in self.converters)

    def convert(self, file_path: str) -> str:
        errors = []
        for converter in self.converters:
            if not converter.is_available() or not converter.supports(file_path):
                continue
            try:
                return converter.convert(file_path)
            except ExtractionError as e:
                errors.append(f"{converter.name}: {e}")

        if not errors:
            suffix = Path(file_path).suffix.lower() or "(none)"
            raise ExtractionError(f"No installed converter can read {suffix} files")
        raise ExtractionError("; ".join(errors))


# ==============================================================================
# CONVERTER REGISTRY
# ==============================================================================

CONVERTERS = {
    "auto": FallbackConverter,
    "docling": DoclingConverter,
    "python-docx": PythonDocxConverter,
}


def list_converters() -> dict:
    """List all converters and whether their backend is installed."""
    result = {}
    for name, converter_class in CONVERTERS.items():
        converter = converter_class()
        result[name] = {
            "display_name": converter.display_name,
            "available": converter.is_available(),
        }
    return result


def get_converter(name: Optional[str] = None) -> TextConverter:
    """
    Get a converter instance.

    Args:
        name: Converter name. If None, uses MASTER_POOL_CONVERTER env var or "auto".

    Returns:
        A TextConverter instance.

    Raises:
        ValueError: If the specified converter is not found.
    """
    if name is None:
        name = os.getenv("MASTER_POOL_CONVERTER", "").strip().lower()
    if not name:
        name = "auto"

    if name not in CONVERTERS:
        available = ", ".join(CONVERTERS.keys())
        raise ValueError(f"Unknown converter '{name}'. Available: {available}")

    return CONVERTERS[name]()
