"""
Isha - Knowledge Base Setup
============================
Command-line ingestion of a document directory into LanceDB.

    1. Load settings; an invalid ``.env`` aborts with exit code 1.
    2. Open the collection, optionally resetting it first.
    3. Run ``IngestionPipeline`` over the source directory.
    4. Print what happened and how long each stage took.

Only the embedder and the vector store are started; the LLM is not
contacted.  Exit code is 1 if any file failed to ingest.

Flags:
    --drop       Reset the collection before ingesting (hash cache kept).
    --purge      Reset the collection and clear the hash cache.
    --drop-only  Reset the collection and stop.
    --source     Directory to ingest instead of ``DATA_RAW_DIR``.

Usage:
    isha-setup-db
    python -m isha.scripts.setup_db --purge
    python -m isha.scripts.setup_db --source ./docs
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Make ``isha`` importable when the file is run by path ──────────────
_REPO_ROOT = Path(__file__).resolve().parents[2]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="isha-setup-db", description="Build or refresh the Isha knowledge base from a directory of documents.")
    reset = parser.add_mutually_exclusive_group()
    reset.add_argument("--drop", action="store_true", help="reset the collection before ingesting; unchanged files are still skipped")
    reset.add_argument("--purge", action="store_true", help="reset the collection and forget file hashes, re-ingesting everything")
    reset.add_argument("--drop-only", action="store_true", help="reset the collection and exit without ingesting")
    parser.add_argument("--source", type=Path, default=None, metavar="DIR", help="directory to ingest (default: DATA_RAW_DIR)")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    stages: dict[str, float] = {}
    t_total = time.perf_counter()

    t_stage = time.perf_counter()
    try:
        from isha.config.settings import settings
    except Exception as exc:
        print(f"\n[FATAL] Invalid configuration, check your environment and .env file:\n  {exc}\n")
        return 1
    stages["settings"] = time.perf_counter() - t_stage

    from isha.src.core.chunker import TextChunker
    from isha.src.core.embedder import HashFeatureEmbedder
    from isha.src.core.ingestor import IngestionPipeline
    from isha.src.core.llm_client import LLMClient
    from isha.src.core.rag_engine import RAGOrchestrator
    from isha.src.database.vector_store import IshaVectorStore
    from isha.src.utils.logger import get_logger, quiet_third_party

    quiet_third_party()
    logger = get_logger("isha.setup_db")
    source_dir = args.source or settings.DATA_RAW_DIR
    _print_banner(settings, source_dir)

    t_stage = time.perf_counter()
    embedder = HashFeatureEmbedder(settings=settings)
    store = IshaVectorStore(settings=settings)
    await asyncio.gather(asyncio.to_thread(embedder.initialize), asyncio.to_thread(store.initialize))
    stages["storage"] = time.perf_counter() - t_stage
    logger.info("Collection '%s' at %s holds %d chunk(s).", store.name, store.uri, store.count())

    chunker = TextChunker(settings=settings)
    rag = RAGOrchestrator(llm=LLMClient(settings=settings), embedder=embedder, vector_store=store, chunker=chunker, settings=settings)
    pipeline = IngestionPipeline(rag, chunker=chunker, source_dir=source_dir, settings=settings)

    if args.drop or args.purge or args.drop_only:
        await rag.clear_knowledge_base()
        if args.purge:
            pipeline.clear_hash_cache()

    if args.drop_only:
        _print_report(None, stages, time.perf_counter() - t_total)
        return 0

    t_stage = time.perf_counter()
    summary = await pipeline.run()
    stages["ingestion"] = time.perf_counter() - t_stage

    _print_report(summary, stages, time.perf_counter() - t_total)
    return 1 if summary.files_failed else 0


def main(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(_run(_parse_args(argv))))

# ── Console output ─────────────────────────────────────────────────────

_RULE = "=" * 60


def _print_banner(cfg, source_dir: Path) -> None:
    rows = [
        ("Environment", cfg.ENV),
        ("Embedder", f"{cfg.EMBEDDING_MODEL}, {cfg.EMBEDDING_DIMENSION} dims"),
        ("Collection", f"{cfg.LANCEDB_TABLE_NAME} @ {cfg.LANCEDB_URI}"),
        ("Source", source_dir),
        ("Chunks", f"{cfg.CHUNK_SIZE} chars, {cfg.CHUNK_OVERLAP} overlap"),
        ("Workers", cfg.MAX_WORKERS),
    ]
    print(f"\n{_RULE}\n  Isha knowledge base setup\n{_RULE}")
    for label, value in rows:
        print(f"  {label:<12}: {value}")
    print(f"{_RULE}\n")


def _print_report(summary, stages: dict[str, float], elapsed: float) -> None:
    print(f"\n{_RULE}")
    if summary is None:
        print("  Collection reset; ingestion skipped.")
    else:
        print(f"  Files found     : {summary.total_files}")
        print(f"  Ingested        : {summary.files_processed}")
        print(f"  Unchanged       : {summary.files_skipped}")
        print(f"  Failed          : {summary.files_failed}")
        print(f"  Chunks stored   : {summary.total_chunks}")
    print("-" * 60)
    for stage, seconds in stages.items():
        print(f"  {stage:<16}: {seconds * 1000:>9.1f}ms")
    print(f"  {'total':<16}: {elapsed * 1000:>9.1f}ms")
    print(f"{_RULE}\n")


if __name__ == "__main__":
    main()
