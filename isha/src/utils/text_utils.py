"""
Isha - Text Utilities
======================
Text extraction from uploaded files, whitespace normalisation and
filename → source-type detection.

These utilities are consumed by the upload route and the
``IngestionPipeline`` and should remain stateless and side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path

import fitz  # PyMuPDF

from isha.src.core.errors import EmptyInputError, UnsupportedFileTypeError, ValidationError
from isha.src.core.models import SourceType

# ── Non-printable character pattern ────────────────────────────────────
# Control characters except \n, \r, \t, plus BOM, zero-width chars and
# soft hyphens.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")

# ── Extension → source type ────────────────────────────────────────────
_EXTENSION_MAP: dict[str, SourceType] = {
    "pdf": SourceType.PDF,
    "md": SourceType.MARKDOWN,
    "markdown": SourceType.MARKDOWN,
    "txt": SourceType.TEXT,
    "text": SourceType.TEXT,
}

_FILE_TYPE_LABELS: dict[SourceType, str] = {
    SourceType.PDF: "PDF documents",
    SourceType.MARKDOWN: "Markdown files",
    SourceType.TEXT: "Plain text files",
}


# ── Public API ─────────────────────────────────────────────────────────

def clean_text(text: str) -> str:
    """
    Sanitise raw document text for chunking.

    Steps:
        1. Unicode NFC normalisation.
        2. CRLF / CR → LF.
        3. Strip non-printable / zero-width characters.
        4. Collapse runs of horizontal whitespace into a single space,
           *preserving* newlines.
        5. Strip every line and collapse 3+ consecutive newlines to 2.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def detect_source_type(filename: str) -> SourceType:
    """
    Map a filename (or a bare extension such as ``"md"``) to its
    ``SourceType``.

    Raises
    ------
    UnsupportedFileTypeError
        For any extension other than pdf, md/markdown, txt/text.
    """
    suffix = Path(filename).suffix.lstrip(".").lower() or filename.lower()
    try:
        return _EXTENSION_MAP[suffix]
    except KeyError:
        raise UnsupportedFileTypeError(f"Unsupported file type: {suffix}") from None


def get_supported_file_types() -> list[dict[str, str]]:
    """Extension list shown by ``GET /upload``."""
    return [
        {"extension": f".{ext}", "type": source_type.value, "description": _FILE_TYPE_LABELS[source_type]}
        for ext, source_type in _EXTENSION_MAP.items()
    ]


def extract_text(data: bytes, source_type: SourceType | str) -> str:
    """
    Extract and clean the text of an uploaded file.

    Raises
    ------
    EmptyInputError
        If the file holds no text.
    """
    source_type = SourceType(source_type)
    if source_type is SourceType.PDF:
        raw = _extract_pdf_text(data)
    else:
        raw = data.decode("utf-8", errors="replace")

    text = clean_text(raw)
    if not text:
        raise EmptyInputError(f"No content found in {source_type.value} file")
    return text


def _extract_pdf_text(data: bytes) -> str:
    """Concatenate the text layer of every page, one page per paragraph."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text("text") for page in doc]
    except (fitz.FileDataError, RuntimeError) as exc:
        raise ValidationError(f"Could not read PDF: {exc}") from exc
    return "\n\n".join(pages)
