import pytest

from isha.src.core.ingestor import IngestionPipeline


@pytest.fixture
def raw_dir(test_settings):
    raw = test_settings.DATA_RAW_DIR
    raw.mkdir(parents=True)
    (raw / "a.txt").write_text("Alpha notes about the solar system and its eight planets.", encoding="utf-8")
    (raw / "b.md").write_text("# Beta\n\nMarkdown notes about ocean currents.", encoding="utf-8")
    (raw / "c.exe").write_bytes(b"MZ\x90\x00")
    return raw


@pytest.fixture
def pipeline(rag, test_settings, raw_dir) -> IngestionPipeline:
    return IngestionPipeline(rag, settings=test_settings)


async def test_first_run_ingests_supported_files(pipeline, rag):
    summary = await pipeline.run()

    assert summary.total_files == 2
    assert summary.files_processed == 2
    assert summary.files_skipped == 0
    assert summary.files_failed == 0
    assert {d.filename for d in await rag.list_documents()} == {"a.txt", "b.md"}


async def test_unchanged_files_are_skipped(pipeline, rag, test_settings):
    first = await pipeline.run()

    summary = await IngestionPipeline(rag, settings=test_settings).run()

    assert summary.files_processed == 0
    assert summary.files_skipped == 2
    assert (await rag.get_knowledge_base_stats()).document_count == first.total_chunks


async def test_changed_file_replaces_its_chunks(pipeline, rag, raw_dir):
    await pipeline.run()
    (raw_dir / "a.txt").write_text("Alpha notes rewritten to talk about comets.", encoding="utf-8")

    summary = await pipeline.run()

    assert summary.files_processed == 1
    assert summary.files_skipped == 1
    docs = {d.filename: d for d in await rag.list_documents()}
    assert docs["a.txt"].chunk_count == 1
    assert docs["a.txt"].total_text_length == len("Alpha notes rewritten to talk about comets.")


async def test_unreadable_file_counts_as_failure(pipeline, raw_dir):
    (raw_dir / "empty.txt").write_text("   \n", encoding="utf-8")

    summary = await pipeline.run()

    assert summary.files_failed == 1
    assert summary.files_processed == 2


async def test_corrupt_pdf_is_counted_and_run_finishes(pipeline, raw_dir):
    (raw_dir / "broken.pdf").write_bytes(b"this is not a pdf")

    summary = await pipeline.run()

    assert summary.total_files == 3
    assert summary.files_failed == 1
    assert summary.files_processed == 2
    assert pipeline.hash_cache.path.exists()


async def test_clear_hash_cache_forces_reingest_without_duplicates(pipeline, rag):
    first = await pipeline.run()
    pipeline.clear_hash_cache()
    assert not pipeline.hash_cache.path.exists()

    summary = await pipeline.run()

    assert summary.files_processed == 2
    assert (await rag.get_knowledge_base_stats()).document_count == first.total_chunks


async def test_missing_source_dir_is_empty_summary(rag, test_settings, tmp_path):
    summary = await IngestionPipeline(rag, source_dir=tmp_path / "nowhere", settings=test_settings).run()

    assert summary.total_files == 0
