import pytest
from pydantic import ValidationError as SettingsValidationError

from isha.config.settings import Settings
from isha.src.core.chunker import TextChunker, chunk_text
from isha.src.core.errors import ConfigError, EmptyInputError
from isha.src.core.models import SourceType

LONG_TEXT = (
    "Retrieval augmented generation grounds answers in stored documents. "
    "Each document is split into overlapping chunks! Why overlap? So context survives the cut.\n"
    "The embedder turns every chunk into a vector and the store keeps them for search. "
) * 12


def test_short_sentences_cut_at_window_when_no_boundary_in_tail():
    spans = chunk_text("A cat sat. A dog ran. The sun rose.", 20, 5)

    assert [s.text for s in spans] == ["A cat sat. A dog ran", "g ran. The sun rose."]
    assert [s.start_index for s in spans] == [0, 15]


def test_prefers_sentence_end_in_trailing_window():
    spans = chunk_text("The quick brown fox. Jumps over it.", 25, 5)

    assert spans[0].text == "The quick brown fox."
    assert spans[1].text == "fox. Jumps over it."
    assert spans[1].start_index == 16


def test_chunking_is_deterministic():
    first = chunk_text(LONG_TEXT, 300, 60)
    second = chunk_text(LONG_TEXT, 300, 60)

    assert [(s.start_index, s.text) for s in first] == [(s.start_index, s.text) for s in second]


def test_spans_cover_every_non_whitespace_character():
    spans = chunk_text(LONG_TEXT, 250, 50)

    covered = set()
    for span in spans:
        assert LONG_TEXT[span.start_index:span.start_index + span.length] == span.text
        covered.update(range(span.start_index, span.start_index + span.length))

    missing = [i for i, ch in enumerate(LONG_TEXT) if not ch.isspace() and i not in covered]
    assert missing == []


def test_chunks_respect_size_and_overlap():
    spans = chunk_text(LONG_TEXT, 250, 50)

    assert all(s.length <= 250 for s in spans)
    for prev, nxt in zip(spans, spans[1:]):
        assert nxt.start_index > prev.start_index
        assert nxt.start_index < prev.start_index + prev.length


def test_text_shorter_than_window_is_one_chunk():
    spans = chunk_text("  Just one line.  ", 100, 10)

    assert len(spans) == 1
    assert spans[0].text == "Just one line."
    assert spans[0].start_index == 2


@pytest.mark.parametrize("size, overlap", [(10, 10), (10, 20), (0, 0), (10, -1)])
def test_invalid_parameters_raise_config_error(size, overlap):
    with pytest.raises(ConfigError):
        chunk_text("some text", size, overlap)


@pytest.mark.parametrize("text", ["", "   \n\t  "])
def test_blank_text_raises_empty_input(text):
    with pytest.raises(EmptyInputError):
        chunk_text(text, 100, 10)


def test_chunk_document_attaches_metadata(test_settings):
    chunker = TextChunker(settings=test_settings)
    chunks = chunker.chunk_document(LONG_TEXT, source_file="guide.md", source_type=SourceType.MARKDOWN)

    assert len(chunks) > 1
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert len({c.id for c in chunks}) == len(chunks)
    assert {c.uploaded_at for c in chunks} == {chunks[0].uploaded_at}
    assert all(c.source_file == "guide.md" and c.source_type is SourceType.MARKDOWN for c in chunks)
    assert chunks[0].size_bytes == len(LONG_TEXT.encode("utf-8"))

    meta = chunks[1].to_metadata()
    assert meta["source_file"] == "guide.md"
    assert meta["source_type"] == "markdown"
    assert meta["chunk_index"] == 1


def test_chunker_rejects_overlap_not_below_size():
    with pytest.raises(ConfigError):
        TextChunker(chunk_size=50, overlap=50)


def test_settings_reject_overlap_not_below_chunk_size():
    with pytest.raises(SettingsValidationError):
        Settings(CHUNK_SIZE=100, CHUNK_OVERLAP=100)
