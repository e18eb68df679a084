"""Turn retrieved passages into a grounded answer with page sources."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from docqa.errors import ModelNotReady
from docqa.ingest.models import RetrievalResult
from docqa.llm_provider import LLM, LLMError, LLMGenerationError, LLMNotReadyError
from docqa.prompt_builder import build_prompt
from docqa.telemetry import (
    emit_empty_retrieval,
    emit_inference_request,
    emit_inference_result,
    emit_prompt_event,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Source:
    page: int

    @property
    def label(self) -> str:
        return f"Page {self.page}"


@dataclass(slots=True, frozen=True)
class AnswerResult:
    answer: str
    sources: Tuple[Source, ...]
    document_id: str
    fallback: bool = False
    model_used: str = ""

    @property
    def pages(self) -> Tuple[int, ...]:
        return tuple(source.page for source in self.sources)


class AnswerComposer:
    """Build the prompt for a question and forward it to the inference engine."""

    def __init__(
        self,
        llm: LLM,
        *,
        max_context_chars: int = 3000,
        max_tokens: int = 256,
        temperature: float = 0.0,
    ) -> None:
        self.llm = llm
        self.max_context_chars = max_context_chars
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def answer(self, question: str, retrieval: RetrievalResult, document_id: str) -> AnswerResult:
        if not self.llm.is_ready():
            raise ModelNotReady("The language model is not loaded; load it before asking questions")

        if not retrieval:
            emit_empty_retrieval(document_id=document_id, query=question)

        prompt = build_prompt(question, retrieval, self.max_context_chars)
        sources = tuple(Source(page=page) for page in prompt.pages)
        emit_prompt_event(
            document_id=document_id,
            sources=[source.label for source in sources],
            context_chars=len(prompt.context),
            truncated=prompt.truncated,
            fallback=prompt.fallback,
        )

        req_id = uuid.uuid4().hex
        emit_inference_request(
            req_id=req_id,
            document_id=document_id,
            prompt_preview=prompt.text,
            prompt_len=len(prompt.text),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        started = time.perf_counter()
        try:
            text = await self._complete(prompt.text, prompt.context or None)
        except LLMNotReadyError as error:
            raise ModelNotReady(str(error), cause=error) from error
        except LLMError:
            raise
        except Exception as error:
            LOGGER.exception("Inference request %s failed", req_id)
            raise LLMGenerationError("LLM generation failed") from error

        answer = str(text or "").strip()
        emit_inference_result(
            req_id=req_id,
            document_id=document_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=self.llm.model_name,
            answer_preview=answer,
            fallback=prompt.fallback,
        )
        return AnswerResult(
            answer=answer,
            sources=sources,
            document_id=document_id,
            fallback=prompt.fallback,
            model_used=self.llm.model_name,
        )

    async def _complete(self, prompt: str, context: Optional[str]) -> str:
        kwargs = {"max_tokens": self.max_tokens, "temperature": self.temperature}
        if inspect.iscoroutinefunction(self.llm.complete):
            return await self.llm.complete(prompt, context, **kwargs)
        return await asyncio.to_thread(self.llm.complete, prompt, context, **kwargs)


__all__ = ["AnswerComposer", "AnswerResult", "Source"]
