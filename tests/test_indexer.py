import pytest

from docqa.indexer import Indexer, build_index
from docqa.ingest.chunking import chunk_text, page_marker
from docqa.ingest.models import Chunk
from docqa.tokenizer import tokenize


def _chunks(document_id: str = "doc"):
    text = "\n\n".join(
        [
            page_marker(1),
            "The tenant pays rent monthly.",
            page_marker(2),
            "The landlord repairs the roof. Rent increases yearly.",
        ]
    )
    return chunk_text(text, max_chunk_chars=60, overlap_chars=0, document_id=document_id)


def test_tokenizer_lowercases_and_drops_stopwords() -> None:
    assert tokenize("The Cats, and THE dogs are 2 friends!") == ["cats", "dogs", "2", "friends"]


def test_postings_reference_only_indexed_chunks() -> None:
    chunks = _chunks()
    index = build_index("doc", chunks)

    chunk_ids = {chunk.id for chunk in index.chunks}
    assert index.chunk_count == len(chunks) == 2
    for postings in index.postings.values():
        assert postings
        assert all(posting.chunk_id in chunk_ids for posting in postings)
    assert "the" not in index.postings
    assert index.document_frequency("rent") == 2
    assert index.document_frequency("roof") == 1
    assert index.pages_covered == (1, 2)


def test_rebuilding_yields_identical_postings() -> None:
    chunks = _chunks()

    first = Indexer().build("doc", chunks)
    second = Indexer().build("doc", list(reversed(chunks)))

    assert dict(first.postings) == dict(second.postings)
    assert list(first.postings) == list(second.postings)
    assert repr(dict(first.postings)).encode() == repr(dict(second.postings)).encode()


def test_keyword_count_matches_distinct_terms() -> None:
    index = build_index("doc", _chunks())

    expected = set()
    for chunk in index.chunks:
        expected.update(tokenize(chunk.text))
    assert index.keyword_count == len(expected)


def test_empty_chunk_sequence_builds_empty_index() -> None:
    index = build_index("doc", [])

    assert index.chunk_count == 0
    assert index.keyword_count == 0
    assert index.pages_covered == ()


def test_foreign_or_duplicate_chunks_are_rejected() -> None:
    chunks = _chunks()
    with pytest.raises(ValueError):
        build_index("other", chunks)

    duplicate = Chunk(
        id=chunks[0].id,
        document_id="doc",
        ordinal=5,
        text="copy",
        page_start=1,
        page_end=1,
    )
    with pytest.raises(ValueError):
        build_index("doc", [*chunks, duplicate])
