"""Turn a local document into a payload the extraction service accepts.

- .pdf  -> raw bytes (application/pdf); the service reads PDFs natively
- .docx -> plain text via python-docx (text/plain)
- .doc  -> plain text via the `antiword` binary (text/plain)
"""

from __future__ import annotations

import shutil
import subprocess
import zipfile
from dataclasses import dataclass
from pathlib import Path

import docx
from docx.opc.exceptions import PackageNotFoundError

from logging_utils import get_logger
from utils.errors import ContentExtractionError, UnsupportedContentError

logger = get_logger(__name__)

MIME_TYPE_PDF = "application/pdf"
MIME_TYPE_TEXT_PLAIN = "text/plain"


@dataclass(frozen=True)
class DocumentContent:
    data: bytes
    mime_type: str


def _docx_text(path: Path) -> str:
    document = docx.Document(str(path))
    parts = [p.text for p in document.paragraphs if p.text and p.text.strip()]
    # Representative tables are common in registry filings.
    for table in document.tables:
        for row in table.rows:
            cells = [c.text.strip() for c in row.cells if c.text and c.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def _doc_text(path: Path) -> str:
    exe = shutil.which("antiword")
    if exe is None:
        raise ContentExtractionError(
            f"Cannot convert legacy .doc without antiword: {path.name}"
        )
    proc = subprocess.run(
        [exe, "-w", "0", str(path)],
        capture_output=True,
        timeout=120,
        check=False,
    )
    if proc.returncode != 0:
        raise ContentExtractionError(
            f"antiword failed for {path.name}: {proc.stderr.decode('utf-8', errors='replace').strip()}"
        )
    return proc.stdout.decode("utf-8", errors="replace")


def extract_content(path: Path | str) -> DocumentContent:
    """Read `path` and return the payload for the extraction call.

    Raises:
        UnsupportedContentError: unknown extension
        ContentExtractionError: conversion of an office document failed
        OSError: the file could not be read
    """

    p = Path(path)
    ext = p.suffix.lower()

    if ext == ".pdf":
        return DocumentContent(data=p.read_bytes(), mime_type=MIME_TYPE_PDF)

    if ext in (".docx", ".doc"):
        try:
            text = _docx_text(p) if ext == ".docx" else _doc_text(p)
        except ContentExtractionError:
            raise
        except (
            PackageNotFoundError,
            zipfile.BadZipFile,
            KeyError,
            ValueError,
            subprocess.SubprocessError,
        ) as e:
            raise ContentExtractionError(f"Failed to convert {p.name}: {e}") from e
        logger.debug("Converted to text | file=%s chars=%s", p.name, len(text))
        return DocumentContent(data=text.encode("utf-8"), mime_type=MIME_TYPE_TEXT_PLAIN)

    raise UnsupportedContentError(f"Unsupported document type: {p.name}")
