"""Structured-first text extraction with a page-by-page OCR fallback."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from docqa.asyncutils import maybe_await
from docqa.telemetry import emit_extraction_event, emit_ocr_page_event, log_event

from .chunking import page_marker
from .extractors import OCRFallbackAdapter, StructuredText, StructuredTextExtractor
from .models import ExtractionMethod, ExtractionResult

LOGGER = logging.getLogger(__name__)

PageCallback = Callable[[int, int], Union[None, Awaitable[None]]]


class ExtractionState(str, Enum):
    IDLE = "idle"
    EXTRACTING_STRUCTURED = "extracting-structured"
    NEEDS_FALLBACK = "needs-fallback"
    EXTRACTING_OCR = "extracting-ocr"
    DONE = "done"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    ExtractionState.IDLE: {ExtractionState.EXTRACTING_STRUCTURED},
    ExtractionState.EXTRACTING_STRUCTURED: {
        ExtractionState.DONE,
        ExtractionState.NEEDS_FALLBACK,
        ExtractionState.CANCELLED,
    },
    ExtractionState.NEEDS_FALLBACK: {
        ExtractionState.EXTRACTING_OCR,
        ExtractionState.DONE,
        ExtractionState.CANCELLED,
    },
    ExtractionState.EXTRACTING_OCR: {ExtractionState.DONE, ExtractionState.CANCELLED},
    ExtractionState.DONE: set(),
    ExtractionState.CANCELLED: set(),
}


@dataclass(slots=True)
class ExtractionOptions:
    max_ocr_pages: int = 10
    min_viable_chars: int = 50

    def __post_init__(self) -> None:
        if self.max_ocr_pages < 0:
            raise ValueError("max_ocr_pages must be a non-negative integer")
        if self.min_viable_chars < 0:
            raise ValueError("min_viable_chars must be a non-negative integer")


@dataclass(slots=True)
class _PageAccumulator:
    """OCR text collected for one ingestion; discarded with the coordinator."""

    parts: List[str] = field(default_factory=list)
    content_chars: int = 0
    pages_processed: int = 0
    pages_skipped: List[int] = field(default_factory=list)

    def add(self, page: int, text: str) -> None:
        self.pages_processed += 1
        cleaned = text.strip()
        if not cleaned:
            return
        self.parts.append(f"{page_marker(page)}\n{cleaned}")
        self.content_chars += len(cleaned)

    def skip(self, page: int) -> None:
        self.pages_skipped.append(page)

    @property
    def text(self) -> str:
        return "\n\n".join(self.parts)


class ExtractionCoordinator:
    """Single-use state machine turning document bytes into an :class:`ExtractionResult`.

    Structured extraction runs first. When it yields fewer than
    ``min_viable_chars`` characters, reports an error or flags the document as
    image based, the coordinator OCRs pages ``1..min(total, max_ocr_pages)``
    one at a time, prefixing each page with a ``--- Page N ---`` marker.

    :meth:`extract` never raises for adapter faults; failures come back as
    ``ExtractionResult(success=False)``. Cancellation resets the renderer and
    propagates.
    """

    def __init__(
        self,
        text_extractor: StructuredTextExtractor,
        ocr: OCRFallbackAdapter,
        options: Optional[ExtractionOptions] = None,
        *,
        on_page: Optional[PageCallback] = None,
    ) -> None:
        self.text_extractor = text_extractor
        self.ocr = ocr
        self.options = options or ExtractionOptions()
        self.on_page = on_page
        self._state = ExtractionState.IDLE

    @property
    def state(self) -> ExtractionState:
        return self._state

    def _transition(self, target: ExtractionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid extraction transition {self._state.value} -> {target.value}")
        LOGGER.debug("Extraction state %s -> %s", self._state.value, target.value)
        self._state = target

    async def extract(self, data: bytes) -> ExtractionResult:
        if self._state is not ExtractionState.IDLE:
            raise RuntimeError("ExtractionCoordinator instances cannot be reused")

        self._transition(ExtractionState.EXTRACTING_STRUCTURED)
        try:
            structured = await self._extract_structured(data)
            if self._is_viable(structured):
                result = ExtractionResult(
                    success=True,
                    text=structured.text,
                    char_count=len(structured.text.strip()),
                    method=ExtractionMethod.STRUCTURED,
                    page_count=max(structured.page_count, 1),
                    pages_processed=max(structured.page_count, 1),
                )
                self._finish(result)
                return result

            self._transition(ExtractionState.NEEDS_FALLBACK)
            emit_extraction_event(
                "extraction.fallback",
                method=ExtractionMethod.STRUCTURED.value,
                char_count=len(structured.text.strip()),
                success=structured.success,
                page_count=structured.page_count,
                error=structured.error or ("image-based document" if structured.image_based else None),
            )
            result = await self._extract_ocr(data, structured)
            self._finish(result)
            return result
        except asyncio.CancelledError:
            self.ocr.reset()
            if self._state is not ExtractionState.DONE:
                self._transition(ExtractionState.CANCELLED)
            log_event(LOGGER, "extraction.cancelled", level="warning")
            raise

    def _is_viable(self, structured: StructuredText) -> bool:
        if not structured.success or structured.error or structured.image_based:
            return False
        return len(structured.text.strip()) >= self.options.min_viable_chars

    async def _extract_structured(self, data: bytes) -> StructuredText:
        started = time.perf_counter()
        try:
            structured = await maybe_await(self.text_extractor.extract_text(data))
        except Exception as error:
            LOGGER.warning("Structured extraction failed: %s", error)
            structured = StructuredText(success=False, text="", char_count=0, error=str(error) or type(error).__name__)
        log_event(
            LOGGER,
            "extraction.structured",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details={
                "success": structured.success,
                "char_count": len(structured.text.strip()),
                "page_count": structured.page_count,
                "image_based": structured.image_based,
            },
        )
        return structured

    async def _extract_ocr(self, data: bytes, structured: StructuredText) -> ExtractionResult:
        try:
            total_pages = await self.ocr.page_count(data)
        except Exception as error:
            LOGGER.warning("Unable to open document for OCR: %s", error)
            return ExtractionResult(
                success=False,
                text="",
                char_count=0,
                method=ExtractionMethod.OCR,
                error=f"Unable to render document: {error}",
                page_count=structured.page_count,
                pages_processed=0,
            )

        last_page = min(total_pages, self.options.max_ocr_pages)
        accumulator = _PageAccumulator()
        self._transition(ExtractionState.EXTRACTING_OCR)
        for page in range(1, last_page + 1):
            started = time.perf_counter()
            try:
                recognised = await self.ocr.recognize_page(data, page)
            except Exception as error:
                accumulator.skip(page)
                emit_ocr_page_event(
                    page=page,
                    total=last_page,
                    char_count=0,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                    error=error,
                )
            else:
                accumulator.add(page, recognised.text)
                emit_ocr_page_event(
                    page=page,
                    total=last_page,
                    char_count=len(recognised.text.strip()),
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                    block_count=recognised.block_count,
                    word_count=recognised.word_count,
                    confidence=recognised.confidence,
                )
            if self.on_page is not None:
                await maybe_await(self.on_page(page, last_page))

        success = accumulator.content_chars >= self.options.min_viable_chars
        error = None
        if not success:
            error = (
                f"OCR recovered {accumulator.content_chars} characters from {last_page} page(s); "
                f"at least {self.options.min_viable_chars} are required"
            )
        return ExtractionResult(
            success=success,
            text=accumulator.text,
            char_count=accumulator.content_chars,
            method=ExtractionMethod.OCR,
            error=error,
            page_count=total_pages,
            pages_processed=accumulator.pages_processed,
            pages_skipped=tuple(accumulator.pages_skipped),
            truncated=total_pages > last_page,
        )

    def _finish(self, result: ExtractionResult) -> None:
        self._transition(ExtractionState.DONE)
        emit_extraction_event(
            "extraction.complete",
            method=result.method.value,
            char_count=result.char_count,
            success=result.success,
            page_count=result.page_count,
            pages_processed=result.pages_processed,
            pages_skipped=result.pages_skipped,
            truncated=result.truncated,
            error=result.error,
        )
        if result.truncated:
            LOGGER.warning(
                "OCR stopped after %s of %s pages; remaining pages are not indexed",
                result.pages_processed + len(result.pages_skipped),
                result.page_count,
            )


async def extract_document(
    data: bytes,
    text_extractor: StructuredTextExtractor,
    ocr: OCRFallbackAdapter,
    options: Optional[ExtractionOptions] = None,
) -> ExtractionResult:
    """Run a fresh :class:`ExtractionCoordinator` over ``data``."""

    return await ExtractionCoordinator(text_extractor, ocr, options).extract(data)


__all__ = [
    "ExtractionCoordinator",
    "ExtractionOptions",
    "ExtractionState",
    "PageCallback",
    "extract_document",
]
