import pytest

from isha.src.core.errors import DimensionMismatchError, EmptyBatchError, QueryError, ValidationError
from isha.src.database.vector_store import IshaVectorStore

TEXTS = {
    "c1": ("Photosynthesis converts light into chemical energy.", "biology.txt", 0),
    "c2": ("Chlorophyll absorbs mostly blue and red light.", "biology.txt", 1),
    "c3": ("The stock market closed higher on Friday.", "finance.md", 0),
}


@pytest.fixture
def populated(store, embedder):
    items = [
        {
            "id": doc_id,
            "text": text,
            "embedding": embedder.embed(text),
            "metadata": {"source_file": source, "source_type": "text", "chunk_index": idx, "uploaded_at": "2024-01-01T00:00:00+00:00", "size_bytes": 120},
        }
        for doc_id, (text, source, idx) in TEXTS.items()
    ]
    assert store.add_documents(items) == 3
    return store


def test_table_is_created_lazily(store):
    assert store.count() == 0
    assert store.check_health() is True


def test_search_returns_exact_match_first(populated, embedder):
    results = populated.search(embedder.embed(TEXTS["c3"][0]), k=3)

    assert results[0].id == "c3"
    assert results[0].distance == pytest.approx(0.0, abs=1e-4)
    assert results[0].relevance == 100
    assert results[0].metadata["source_file"] == "finance.md"


def test_search_distances_are_non_decreasing(populated, embedder):
    results = populated.search(embedder.embed("light energy in plants"), k=3)

    distances = [r.distance for r in results]
    assert len(results) == 3
    assert distances == sorted(distances)


def test_search_respects_k(populated, embedder):
    assert len(populated.search(embedder.embed("anything at all"), k=2)) == 2


def test_search_with_metadata_filter(populated, embedder):
    results = populated.search(embedder.embed("light"), k=5, filter_dict={"source_file": "biology.txt"})

    assert {r.id for r in results} == {"c1", "c2"}


def test_search_rejects_unknown_filter_column(populated, embedder):
    with pytest.raises(ValidationError):
        populated.search(embedder.embed("light"), filter_dict={"author": "me"})


def test_search_validates_query_embedding(store):
    with pytest.raises(QueryError):
        store.search(None)
    with pytest.raises(DimensionMismatchError):
        store.search([0.1, 0.2, 0.3])


def test_add_skips_malformed_items(store, embedder):
    items = [
        {"id": "ok", "text": "valid text", "embedding": embedder.embed("valid text")},
        {"id": "no-text", "text": "", "embedding": embedder.embed("x")},
        {"id": "short", "text": "wrong dims", "embedding": [0.5, 0.5]},
        {"text": "no id", "embedding": embedder.embed("no id")},
    ]

    assert store.add_documents(items) == 1
    assert store.count() == 1


def test_add_with_nothing_valid_raises(store):
    with pytest.raises(EmptyBatchError):
        store.add_documents([{"id": "x", "text": "t", "embedding": None}])
    with pytest.raises(EmptyBatchError):
        store.add_documents([])


def test_delete_documents_reports_removed_count(populated):
    assert populated.delete_documents(["c1", "missing"]) == 1
    assert populated.count() == 2

    with pytest.raises(ValidationError):
        populated.delete_documents([])


def test_delete_by_source(populated):
    assert populated.delete_by_source("biology.txt") == 2
    assert populated.delete_by_source("biology.txt") == 0
    assert populated.count() == 1


def test_list_documents_groups_by_source(populated):
    docs = {d.filename: d for d in populated.list_documents()}

    assert set(docs) == {"biology.txt", "finance.md"}
    assert docs["biology.txt"].chunk_count == 2
    assert docs["biology.txt"].chunk_ids == ["c1", "c2"]
    assert docs["biology.txt"].total_text_length == len(TEXTS["c1"][0]) + len(TEXTS["c2"][0])
    assert docs["finance.md"].file_size == 120


def test_reset_collection_empties_table(populated):
    populated.reset_collection()

    assert populated.count() == 0
    info = populated.get_collection_info()
    assert info.name == "test_documents"
    assert info.count == 0


def test_reopening_sees_existing_rows(populated, test_settings):
    reopened = IshaVectorStore(settings=test_settings)
    assert reopened.count() == 3
