import pytest

from conftest import FakeLLM
from docqa.composer import AnswerComposer
from docqa.errors import ModelNotReady
from docqa.ingest.models import Chunk, RetrievedChunk
from docqa.llm_provider import LLMGenerationError, LLMStub


def _retrieval():
    chunks = [
        Chunk(id="a", document_id="doc", ordinal=0, text="Fur keeps cats warm.", page_start=2, page_end=2),
        Chunk(id="b", document_id="doc", ordinal=1, text="Cats shed fur in spring.", page_start=2, page_end=3),
    ]
    return tuple(RetrievedChunk(chunk=chunk, score=1.0) for chunk in chunks)


@pytest.mark.anyio
async def test_answer_forwards_prompt_and_deduplicates_sources() -> None:
    llm = FakeLLM(answer="  Cats have fur.  ")
    composer = AnswerComposer(llm)

    result = await composer.answer("Do cats have fur?", _retrieval(), "doc")

    assert result.answer == "Cats have fur."
    assert [source.page for source in result.sources] == [2, 3]
    assert [source.label for source in result.sources] == ["Page 2", "Page 3"]
    assert result.fallback is False
    assert result.model_used == "fake-llm"
    assert "Fur keeps cats warm." in llm.prompts[0]
    assert llm.contexts[0] and "Cats shed fur" in llm.contexts[0]


@pytest.mark.anyio
async def test_empty_retrieval_still_asks_the_model() -> None:
    llm = FakeLLM(answer="The document does not say.")

    result = await AnswerComposer(llm).answer("What about dogs?", (), "doc")

    assert result.sources == ()
    assert result.fallback is True
    assert result.answer == "The document does not say."
    assert len(llm.prompts) == 1
    assert llm.contexts == [None]


@pytest.mark.anyio
async def test_model_not_ready_is_raised_before_generation() -> None:
    llm = FakeLLM(ready=False)

    with pytest.raises(ModelNotReady):
        await AnswerComposer(llm).answer("Anything?", _retrieval(), "doc")
    assert llm.prompts == []

    with pytest.raises(ModelNotReady):
        await AnswerComposer(LLMStub()).answer("Anything?", _retrieval(), "doc")


@pytest.mark.anyio
async def test_unexpected_generation_errors_are_wrapped() -> None:
    llm = FakeLLM(raises=ValueError("boom"))

    with pytest.raises(LLMGenerationError):
        await AnswerComposer(llm).answer("Anything?", _retrieval(), "doc")
