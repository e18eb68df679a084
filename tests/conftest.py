"""Shared fakes for the external collaborators of the document QA core."""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from docqa.config import Settings
from docqa.ingest.extractors import OCRFallbackAdapter, OCRPageResult, StructuredText
from docqa.ingest.pipeline import IngestPipeline
from docqa.llm_provider import LLM


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeTextExtractor:
    """Structured extractor returning a canned response."""

    def __init__(
        self,
        text: str = "",
        *,
        page_count: int = 1,
        success: bool = True,
        image_based: bool = False,
        error: Optional[str] = None,
        raises: Optional[Exception] = None,
    ) -> None:
        self.response = StructuredText(
            success=success,
            text=text,
            char_count=len(text),
            page_count=page_count,
            error=error,
            image_based=image_based,
        )
        self.raises = raises
        self.calls = 0

    def extract_text(self, data: bytes) -> StructuredText:
        self.calls += 1
        if self.raises is not None:
            raise self.raises
        return self.response


class FakeRenderer:
    """Renderer whose ``capture`` returns the page number that was rendered."""

    def __init__(
        self,
        total_pages: int,
        *,
        failing_pages: Iterable[int] = (),
        hanging_pages: Iterable[int] = (),
    ) -> None:
        self.total_pages = total_pages
        self.failing_pages = set(failing_pages)
        self.hanging_pages = set(hanging_pages)
        self.rendered: List[int] = []
        self.resets = 0
        self.render_started = asyncio.Event()
        self._current: Optional[int] = None

    def page_count(self, data: bytes) -> int:
        return self.total_pages

    async def render(self, data: bytes, page_number: int) -> None:
        self.rendered.append(page_number)
        self.render_started.set()
        if page_number in self.hanging_pages:
            await asyncio.Event().wait()
        if page_number in self.failing_pages:
            raise RuntimeError(f"render failed for page {page_number}")
        self._current = page_number

    def capture(self) -> int:
        if self._current is None:
            raise RuntimeError("nothing rendered")
        return self._current

    def reset(self) -> None:
        self.resets += 1
        self._current = None


class FakeOCREngine:
    """OCR engine mapping an image handle (page number) to text."""

    def __init__(self, texts: Dict[object, str], *, failing: Iterable[object] = ()) -> None:
        self.texts = texts
        self.failing = set(failing)
        self.calls: List[object] = []

    def recognize(self, image: object) -> OCRPageResult:
        self.calls.append(image)
        if image in self.failing:
            raise RuntimeError(f"OCR failed for {image}")
        text = self.texts.get(image, "")
        return OCRPageResult(text=text, block_count=1 if text else 0, word_count=len(text.split()), confidence=0.9)


def page_texts(count: int, template: str = "Page {page} discusses topic{page} in considerable detail for testing.") -> Dict[int, str]:
    return {page: template.format(page=page) for page in range(1, count + 1)}


def make_ocr(
    total_pages: int,
    texts: Optional[Dict[object, str]] = None,
    *,
    failing_render: Sequence[int] = (),
    failing_ocr: Sequence[int] = (),
    hanging_pages: Sequence[int] = (),
    render_timeout: float = 1.0,
) -> OCRFallbackAdapter:
    renderer = FakeRenderer(total_pages, failing_pages=failing_render, hanging_pages=hanging_pages)
    engine = FakeOCREngine(texts if texts is not None else page_texts(total_pages), failing=failing_ocr)
    return OCRFallbackAdapter(renderer, engine, render_timeout=render_timeout)


class FakeLLM(LLM):
    """Ready model echoing how much context it received."""

    def __init__(self, *, ready: bool = True, answer: str = "MOCK_ANSWER", raises: Optional[Exception] = None) -> None:
        self.ready = ready
        self.answer = answer
        self.raises = raises
        self.prompts: List[str] = []
        self.contexts: List[Optional[str]] = []

    @property
    def model_loaded(self) -> bool:
        return self.ready

    @property
    def model_name(self) -> str:
        return "fake-llm"

    def complete(self, prompt, context=None, *, max_tokens=256, temperature=0.0) -> str:
        self.prompts.append(prompt)
        self.contexts.append(context)
        if self.raises is not None:
            raise self.raises
        return self.answer


class FakeLanguageDetector:
    def detect(self, text: str) -> Optional[str]:
        return "en" if text.strip() else None


def make_pipeline(
    *,
    text_extractor: Optional[FakeTextExtractor] = None,
    ocr: Optional[OCRFallbackAdapter] = None,
    settings: Optional[Settings] = None,
) -> IngestPipeline:
    return IngestPipeline(
        settings or Settings(),
        text_extractor=text_extractor or FakeTextExtractor(),
        ocr=ocr or make_ocr(1),
        language_detector=FakeLanguageDetector(),
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()
