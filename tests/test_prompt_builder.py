from pathlib import Path

import pytest

from docqa.ingest.models import Chunk, RetrievedChunk
from docqa.prompt_builder import build_context, build_prompt, cited_pages

PROMPTS_DIR = Path(__file__).resolve().parents[1] / "src" / "docqa" / "prompts"


def _retrieved(ordinal: int, text: str, pages=(1, 1), score: float = 1.0) -> RetrievedChunk:
    chunk = Chunk(
        id=f"chunk-{ordinal}",
        document_id="doc",
        ordinal=ordinal,
        text=text,
        page_start=pages[0],
        page_end=pages[1],
    )
    return RetrievedChunk(chunk=chunk, score=score)


def test_prompt_contains_system_text_context_and_question() -> None:
    retrieval = (
        _retrieved(2, "The deposit is two months of rent.", pages=(3, 3), score=2.0),
        _retrieved(0, "Rent is due on the first day.", pages=(1, 2), score=1.0),
    )

    prompt = build_prompt("  How large is the deposit?  ", retrieval)

    system_text = (PROMPTS_DIR / "system.txt").read_text(encoding="utf-8").strip()
    assert prompt.text.startswith(system_text)
    assert prompt.text.index("two months") < prompt.text.index("first day")
    assert "[Page 3]" in prompt.text
    assert "[Pages 1-2]" in prompt.text
    assert "Question: How large is the deposit?" in prompt.text
    assert prompt.pages == (3, 1, 2)
    assert prompt.fallback is False


def test_empty_retrieval_uses_no_context_prompt() -> None:
    prompt = build_prompt("What is on page eleven?", ())

    assert prompt.fallback is True
    assert prompt.pages == ()
    assert prompt.context == ""
    assert "No relevant context was found" in prompt.text
    assert "What is on page eleven?" in prompt.text


def test_context_is_bounded_and_flags_truncation() -> None:
    retrieval = tuple(_retrieved(index, "word " * 40, pages=(index + 1, index + 1)) for index in range(5))

    context, used, truncated = build_context(retrieval, max_context_chars=450)

    assert len(context) <= 450
    assert truncated is True
    assert [chunk.ordinal for chunk in used] == [0, 1]


def test_oversized_first_chunk_is_cut_not_dropped() -> None:
    retrieval = (_retrieved(0, "x" * 500, pages=(4, 4)),)

    prompt = build_prompt("question", retrieval, max_context_chars=100)

    assert len(prompt.context) <= 100
    assert prompt.truncated is True
    assert prompt.pages == (4,)


def test_cited_pages_are_deduplicated_in_order() -> None:
    chunks = [
        _retrieved(0, "a", pages=(2, 3)).chunk,
        _retrieved(1, "b", pages=(3, 4)).chunk,
        _retrieved(2, "c", pages=(1, 1)).chunk,
    ]

    assert cited_pages(chunks) == (2, 3, 4, 1)


def test_none_question_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_prompt(None, ())  # type: ignore[arg-type]
