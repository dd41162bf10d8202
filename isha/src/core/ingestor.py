"""
Isha - IngestionPipeline
=========================
Bulk ingestion of a directory of documents into the knowledge base.

    • Receives a ``RAGOrchestrator`` (embedding and storage) and a
      ``TextChunker``; nothing here talks to LanceDB directly.
    • Only ``.pdf``, ``.md``/``.markdown`` and ``.txt``/``.text`` files are
      picked up; anything else in the directory is ignored.
    • Files are processed concurrently, at most ``settings.MAX_WORKERS``
      at a time.
    • ``FileHashCache`` remembers the MD5 of every ingested file so an
      unchanged file is skipped on the next run.  A file is always
      re-ingested from scratch: its stored chunks are removed first.

Usage:
    pipeline = IngestionPipeline(orchestrator)
    summary  = await pipeline.run()
    print(summary.files_processed, summary.total_chunks)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from pathlib import Path

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.chunker import TextChunker
from isha.src.core.errors import IshaError, UnsupportedFileTypeError
from isha.src.core.models import WireModel
from isha.src.core.rag_engine import RAGOrchestrator
from isha.src.utils.logger import get_logger
from isha.src.utils.text_utils import detect_source_type, extract_text

logger = get_logger(__name__)


class IngestionSummary(WireModel):
    total_files: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    total_chunks: int = 0
    elapsed_seconds: float = 0.0


class FileHashCache:
    """``{filename: md5}`` persisted as JSON next to the processed data."""

    __slots__ = ("path", "_hashes")

    def __init__(self, path: Path) -> None:
        self.path = path
        self._hashes: dict[str, str] = {}
        if path.exists():
            try:
                self._hashes = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Ignoring unreadable hash cache %s: %s", path, exc)


    @staticmethod
    def digest(data: bytes) -> str:
        return hashlib.md5(data).hexdigest()


    def matches(self, name: str, digest: str) -> bool:
        return self._hashes.get(name) == digest


    def remember(self, name: str, digest: str) -> None:
        self._hashes[name] = digest


    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._hashes, indent=2, ensure_ascii=False), encoding="utf-8")


    def clear(self) -> None:
        self._hashes.clear()
        self.path.unlink(missing_ok=True)


    def __len__(self) -> int:
        return len(self._hashes)


class IngestionPipeline:
    """
    Directory ingestion: read → extract → chunk → embed → store.

    Parameters
    ----------
    orchestrator
        ``RAGOrchestrator`` that embeds and stores the chunks.
    chunker
        ``TextChunker``; defaults to one built from *settings*.
    source_dir
        Directory to scan.  Defaults to ``settings.DATA_RAW_DIR``.
    hash_cache_path
        Location of the hash cache.  Defaults to
        ``settings.DATA_PROCESSED_DIR / "ingestion_hashes.json"``.
    """

    __slots__ = ("_orchestrator", "_chunker", "source_dir", "_max_workers", "_max_file_size", "hash_cache")

    def __init__(self, orchestrator: RAGOrchestrator, chunker: TextChunker | None = None, source_dir: Path | None = None, hash_cache_path: Path | None = None, settings: Settings | None = None) -> None:
        cfg = settings or default_settings
        self._orchestrator = orchestrator
        self._chunker = chunker or TextChunker(settings=cfg)
        self.source_dir = Path(source_dir or cfg.DATA_RAW_DIR)
        self._max_workers = cfg.MAX_WORKERS
        self._max_file_size = cfg.MAX_FILE_SIZE
        self.hash_cache = FileHashCache(Path(hash_cache_path or cfg.DATA_PROCESSED_DIR / "ingestion_hashes.json"))

    # ══════════════════════════════════════════════════════════════════
    #  RUN
    # ══════════════════════════════════════════════════════════════════

    async def run(self) -> IngestionSummary:
        """Ingest every supported file in ``source_dir``.  Per-file failures are counted, not raised."""
        t_run = time.perf_counter()
        files = self.discover()
        if not files:
            logger.warning("Nothing to ingest in %s", self.source_dir)
            return IngestionSummary()

        logger.info("Ingesting %d file(s) from %s with up to %d worker(s)", len(files), self.source_dir, self._max_workers)
        gate = asyncio.Semaphore(self._max_workers)

        async def _one(path: Path) -> int | None:
            async with gate:
                return await self._ingest_file(path)

        outcomes = await asyncio.gather(*(_one(path) for path in files), return_exceptions=True)

        summary = IngestionSummary(total_files=len(files))
        for path, outcome in zip(files, outcomes):
            if isinstance(outcome, IshaError):
                logger.error("Could not ingest %s: %s", path.name, outcome)
                summary.files_failed += 1
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome is None:
                summary.files_skipped += 1
            else:
                summary.files_processed += 1
                summary.total_chunks += outcome

        self.hash_cache.save()
        summary.elapsed_seconds = round(time.perf_counter() - t_run, 2)
        logger.info(
            "Ingestion finished in %.2fs: %d processed, %d unchanged, %d failed, %d chunk(s) stored.",
            summary.elapsed_seconds, summary.files_processed, summary.files_skipped, summary.files_failed, summary.total_chunks,
        )
        return summary


    def discover(self) -> list[Path]:
        """Supported files directly under ``source_dir``, sorted by name."""
        if not self.source_dir.is_dir():
            logger.warning("Source directory does not exist: %s", self.source_dir)
            return []
        return sorted(path for path in self.source_dir.iterdir() if path.is_file() and _is_supported(path))


    def clear_hash_cache(self) -> None:
        """Forget every hash so the next run re-ingests all files."""
        self.hash_cache.clear()
        logger.info("Hash cache cleared: %s", self.hash_cache.path)

    # ══════════════════════════════════════════════════════════════════
    #  ONE FILE
    # ══════════════════════════════════════════════════════════════════

    async def _ingest_file(self, path: Path) -> int | None:
        """Chunks stored for *path*, or ``None`` when it is unchanged since the last run."""
        data = await asyncio.to_thread(path.read_bytes)
        digest = FileHashCache.digest(data)
        if self.hash_cache.matches(path.name, digest):
            logger.debug("Unchanged, skipping: %s", path.name)
            return None

        if len(data) > self._max_file_size:
            logger.warning("Skipping %s: %d bytes is over the %d byte limit.", path.name, len(data), self._max_file_size)
            return 0

        t_file = time.perf_counter()
        source_type = detect_source_type(path.name)
        text = await asyncio.to_thread(extract_text, data, source_type)

        removed = await self._orchestrator.delete_document(path.name)
        if removed:
            logger.info("Removed %d stale chunk(s) of '%s'.", removed, path.name)

        chunks = self._chunker.chunk_document(text, source_file=path.name, source_type=source_type, size_bytes=len(data))
        result = await self._orchestrator.add_document_to_knowledge_base(chunks)
        self.hash_cache.remember(path.name, digest)

        logger.info("'%s': %d/%d chunk(s) stored in %.1fms", path.name, result.chunks_added, result.total_chunks, (time.perf_counter() - t_file) * 1000)
        return result.chunks_added


def _is_supported(path: Path) -> bool:
    try:
        detect_source_type(path.name)
    except UnsupportedFileTypeError:
        return False
    return True
