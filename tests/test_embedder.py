import math

import pytest

from isha.src.core.embedder import HashFeatureEmbedder, string_hash
from isha.src.core.errors import DimensionMismatchError, EmbeddingError, EmptyBatchError, MissingInputError


def _norm(vec):
    return math.sqrt(sum(v * v for v in vec))


def test_string_hash_matches_32bit_polynomial_hash():
    assert string_hash("") == 0
    assert string_hash("a") == 97
    assert string_hash("hello") == 99162322


def test_embedding_has_configured_dimension(embedder):
    assert len(embedder.embed("The cat sat on the mat.")) == 384
    assert len(HashFeatureEmbedder(dimension=64).embed("short")) == 64


def test_embedding_is_bit_identical_across_calls(embedder):
    text = "Deterministic vectors make re-ingestion reproducible."
    assert embedder.embed(text) == embedder.embed(text)
    assert HashFeatureEmbedder().embed(text) == embedder.embed(text)


def test_embedding_is_unit_length(embedder):
    for text in ["a", "The end.", "Mixed CASE and 123 numbers, with punctuation!?"]:
        assert _norm(embedder.embed(text)) == pytest.approx(1.0, abs=1e-6)


def test_sentence_punctuation_shapes_the_vector(embedder):
    assert embedder.embed("One. Two. Three.") != embedder.embed("One Two Three")


def test_self_similarity_is_one(embedder):
    vec = embedder.embed("Knowledge bases answer questions.")
    assert HashFeatureEmbedder.similarity(vec, vec) == pytest.approx(1.0, abs=1e-6)


def test_similarity_is_clamped_to_unit_interval(embedder):
    a = embedder.embed("Solar panels convert sunlight into electricity.")
    b = embedder.embed("zzz qqq xxx")
    score = HashFeatureEmbedder.similarity(a, b)
    assert 0.0 <= score <= 1.0
    assert HashFeatureEmbedder.similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0


def test_similarity_of_zero_vector_is_zero():
    assert HashFeatureEmbedder.similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_similarity_requires_both_inputs():
    with pytest.raises(MissingInputError):
        HashFeatureEmbedder.similarity(None, [1.0])
    with pytest.raises(MissingInputError):
        HashFeatureEmbedder.similarity([], [1.0])


def test_similarity_rejects_dimension_mismatch():
    with pytest.raises(DimensionMismatchError):
        HashFeatureEmbedder.similarity([1.0, 0.0], [1.0, 0.0, 0.0])


@pytest.mark.parametrize("bad", ["", "   ", None, 42])
def test_embed_rejects_blank_or_non_string(embedder, bad):
    with pytest.raises(EmbeddingError):
        embedder.embed(bad)


def test_embed_batch_marks_failed_items_with_none(embedder):
    vectors = embedder.embed_batch(["first text", "   ", "third text"])

    assert vectors[1] is None
    assert vectors[0] == embedder.embed("first text")
    assert vectors[2] == embedder.embed("third text")


def test_embed_batch_rejects_empty_batch(embedder):
    with pytest.raises(EmptyBatchError):
        embedder.embed_batch([])


def test_langchain_interface_delegates_to_embed(embedder):
    assert embedder.embed_query("hello") == embedder.embed("hello")
    assert embedder.embed_documents(["a", "b"]) == [embedder.embed("a"), embedder.embed("b")]


def test_dimension_must_hold_feature_block():
    with pytest.raises(ValueError):
        HashFeatureEmbedder(dimension=40)


def test_model_info_reports_initialization(embedder):
    assert embedder.get_model_info()["is_initialized"] is False
    embedder.initialize()
    info = embedder.get_model_info()
    assert info == {"model": "simple", "is_initialized": True, "dimensions": 384}
