"""
Isha - Chunker
===============
Sliding-window chunker with sentence-boundary preference.

Each step takes a window of up to ``chunk_size`` characters.  Unless the
window already reaches the end of the text, the rightmost ``.``, ``?``,
``!`` or newline inside the last 30 % of the window becomes the cut
point; otherwise the window is cut at its hard boundary.  The cursor then
steps back by ``overlap`` characters so consecutive chunks share context.

The chunker is pure: the same text and parameters always produce the
same boundaries, which is what makes re-ingestion reproducible.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.errors import ConfigError, EmptyInputError
from isha.src.core.models import ChunkSpan, SourceType, TextChunk
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)

_BREAK_CHARS = (".", "?", "!", "\n")
# Only break if the boundary sits in the trailing 30% of the window
_BREAK_REGION = 0.7


class TextChunker:
    """
    Split text into overlapping ``ChunkSpan`` / ``TextChunk`` records.

    Parameters
    ----------
    chunk_size
        Window length in characters.  Defaults to ``settings.CHUNK_SIZE``.
    overlap
        Characters shared between consecutive chunks.  Defaults to
        ``settings.CHUNK_OVERLAP``.
    """

    __slots__ = ("chunk_size", "overlap")

    def __init__(self, chunk_size: int | None = None, overlap: int | None = None, settings: Settings | None = None) -> None:
        cfg = settings or default_settings
        self.chunk_size = chunk_size if chunk_size is not None else cfg.CHUNK_SIZE
        self.overlap = overlap if overlap is not None else cfg.CHUNK_OVERLAP
        _validate_params(self.chunk_size, self.overlap)


    def chunk(self, text: str, chunk_size: int | None = None, overlap: int | None = None) -> list[ChunkSpan]:
        """Split *text* with this chunker's (or the given) parameters."""
        return chunk_text(
            text,
            self.chunk_size if chunk_size is None else chunk_size,
            self.overlap if overlap is None else overlap,
        )


    def chunk_document(self, text: str, source_file: str, source_type: SourceType = SourceType.TEXT, size_bytes: int | None = None, uploaded_at: datetime | None = None) -> list[TextChunk]:
        """
        Chunk a whole document and attach identity and source metadata.

        ``chunk_index`` is contiguous from 0 in text order; every chunk of
        one call shares the same ``uploaded_at`` timestamp.
        """
        spans = self.chunk(text)
        uploaded_at = uploaded_at or datetime.now(timezone.utc)
        size = size_bytes if size_bytes is not None else len(text.encode("utf-8"))

        chunks = [
            TextChunk(
                id=uuid.uuid4().hex,
                text=span.text,
                start_index=span.start_index,
                length=span.length,
                chunk_index=idx,
                source_file=source_file,
                source_type=source_type,
                uploaded_at=uploaded_at,
                size_bytes=size,
            )
            for idx, span in enumerate(spans)
        ]
        logger.info("Document '%s' → %d chunk(s) (size=%d, overlap=%d).", source_file, len(chunks), self.chunk_size, self.overlap)
        return chunks


def _validate_params(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ConfigError(f"chunk_size must be > 0, got {chunk_size}")
    if overlap < 0:
        raise ConfigError(f"overlap must be ≥ 0, got {overlap}")
    if chunk_size <= overlap:
        raise ConfigError(f"chunk_size ({chunk_size}) must be greater than overlap ({overlap})")


def _find_break(text: str, start: int, end: int, chunk_size: int) -> int | None:
    """Return the absolute index of the preferred break character, if any."""
    window = text[start:end]
    best = max(window.rfind(ch) for ch in _BREAK_CHARS)
    if best > chunk_size * _BREAK_REGION:
        return start + best
    return None


def chunk_text(text: str, chunk_size: int, overlap: int) -> list[ChunkSpan]:
    """
    Split *text* into overlapping spans.

    Raises
    ------
    ConfigError
        If ``chunk_size`` ≤ ``overlap`` (the cursor could never advance).
    EmptyInputError
        If *text* is empty or only whitespace.
    """
    _validate_params(chunk_size, overlap)
    if not text or not text.strip():
        raise EmptyInputError("Cannot chunk empty text.")

    spans: list[ChunkSpan] = []
    length = len(text)
    cursor = 0

    while cursor < length:
        end = min(cursor + chunk_size, length)
        cut = end

        if end < length:
            boundary = _find_break(text, cursor, end, chunk_size)
            if boundary is not None:
                cut = boundary + 1

        raw = text[cursor:cut]
        stripped = raw.strip()
        if stripped:
            leading = len(raw) - len(raw.lstrip())
            spans.append(ChunkSpan(text=stripped, start_index=cursor + leading, length=len(stripped)))

        if cut >= length:
            break

        next_cursor = max(0, cut - overlap)
        # A short sentence cut plus a large overlap could step backwards
        cursor = next_cursor if next_cursor > cursor else cut

    return spans
