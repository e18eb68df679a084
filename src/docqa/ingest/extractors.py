"""Adapters around the text extraction, page rendering and OCR engines."""
from __future__ import annotations

import asyncio
import io
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Protocol, Union, runtime_checkable

import fitz  # PyMuPDF
import pytesseract
from PIL import Image
from pdfminer.high_level import extract_text as pdfminer_extract_text
from pdfminer.pdfpage import PDFPage
from PyPDF2 import PdfReader

from docqa.asyncutils import maybe_await

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StructuredText:
    """Response of a structured text extractor."""

    success: bool
    text: str
    char_count: int
    page_count: int = 0
    error: Optional[str] = None
    image_based: bool = False


@dataclass(slots=True, frozen=True)
class OCRPageResult:
    """Text recognised on one raster image."""

    text: str
    block_count: int = 0
    word_count: int = 0
    confidence: float = 0.0


@runtime_checkable
class StructuredTextExtractor(Protocol):
    def extract_text(self, data: bytes) -> Union[StructuredText, Awaitable[StructuredText]]:
        """Return the text layer of a PDF."""


@runtime_checkable
class PageRenderer(Protocol):
    """Stateful, single-instance page rasteriser."""

    def page_count(self, data: bytes) -> Union[int, Awaitable[int]]:
        """Return the number of pages in the document."""

    def render(self, data: bytes, page_number: int) -> Union[None, Awaitable[None]]:
        """Render a 1-based page; completes once the page is ready for capture."""

    def capture(self) -> Any:
        """Return a raster image of the last rendered page."""

    def reset(self) -> None:
        """Drop any render state so the next ingestion starts clean."""


@runtime_checkable
class OCREngine(Protocol):
    def recognize(self, image: Any) -> Union[OCRPageResult, Awaitable[OCRPageResult]]:
        """Recognise text in a raster image."""


class PyPDF2TextExtractor:
    """Extract the text layer of a PDF with PyPDF2."""

    async def extract_text(self, data: bytes) -> StructuredText:
        return await asyncio.to_thread(self._extract, data)

    def _extract(self, data: bytes) -> StructuredText:
        try:
            reader = PdfReader(io.BytesIO(data), strict=False)
            if reader.is_encrypted:
                reader.decrypt("")
            pages = list(reader.pages)
        except Exception as error:
            LOGGER.warning("PyPDF2 failed to parse PDF: %s", error)
            return StructuredText(success=False, text="", char_count=0, error=f"PDF parse error: {error}")

        texts = []
        for index, page in enumerate(pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on PDF internals
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            if text.strip():
                texts.append(text.strip())

        combined = "\n\n".join(texts)
        char_count = len(combined)
        return StructuredText(
            success=True,
            text=combined,
            char_count=char_count,
            page_count=len(pages),
            image_based=bool(pages) and char_count == 0,
        )


class PdfMinerTextExtractor:
    """Extract the text layer of a PDF with pdfminer.six."""

    async def extract_text(self, data: bytes) -> StructuredText:
        return await asyncio.to_thread(self._extract, data)

    def _extract(self, data: bytes) -> StructuredText:
        try:
            page_count = sum(1 for _ in PDFPage.get_pages(io.BytesIO(data)))
            text = pdfminer_extract_text(io.BytesIO(data)) or ""
        except Exception as error:
            LOGGER.warning("pdfminer failed to extract text: %s", error)
            return StructuredText(success=False, text="", char_count=0, error=f"PDF parse error: {error}")

        pages = [page.strip() for page in text.split("\x0c")]
        combined = "\n\n".join(page for page in pages if page)
        return StructuredText(
            success=True,
            text=combined,
            char_count=len(combined),
            page_count=page_count,
            image_based=page_count > 0 and not combined,
        )


def create_text_extractor(backend: str = "pypdf2") -> StructuredTextExtractor:
    if backend == "pdfminer":
        return PdfMinerTextExtractor()
    if backend != "pypdf2":
        LOGGER.warning("Unknown PDF backend %r; using PyPDF2", backend)
    return PyPDF2TextExtractor()


class PyMuPDFPageRenderer:
    """Rasterise PDF pages with PyMuPDF.

    Holds one open document and one rendered pixmap at a time. Rendering runs
    in a worker thread that cannot be interrupted, so :meth:`reset` never waits
    for it: when a render is in flight the worker drops the document itself
    once it finishes.
    """

    def __init__(self, scale: float = 2.0) -> None:
        self.scale = scale
        self._lock = threading.Lock()
        self._data: Optional[bytes] = None
        self._document: Optional["fitz.Document"] = None
        self._pixmap: Optional["fitz.Pixmap"] = None
        self._reset_requested = False

    def _open(self, data: bytes) -> "fitz.Document":
        if self._document is None or self._data is not data:
            if self._document is not None:
                self._document.close()
            self._document = fitz.open(stream=data, filetype="pdf")
            self._data = data
            self._pixmap = None
        return self._document

    async def page_count(self, data: bytes) -> int:
        return await asyncio.to_thread(self._page_count, data)

    def _page_count(self, data: bytes) -> int:
        with self._lock:
            self._apply_pending_reset()
            return self._open(data).page_count

    async def render(self, data: bytes, page_number: int) -> None:
        await asyncio.to_thread(self._render, data, page_number)

    def _render(self, data: bytes, page_number: int) -> None:
        with self._lock:
            self._apply_pending_reset()
            document = self._open(data)
            page = document.load_page(page_number - 1)
            self._pixmap = page.get_pixmap(matrix=fitz.Matrix(self.scale, self.scale), alpha=False)
            # reset() was called while this page was being rasterised
            self._apply_pending_reset()

    def capture(self) -> Image.Image:
        with self._lock:
            self._apply_pending_reset()
            if self._pixmap is None:
                raise RuntimeError("capture() called before a page finished rendering")
            pixmap = self._pixmap
            return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)

    def reset(self) -> None:
        if not self._lock.acquire(blocking=False):
            self._reset_requested = True
            return
        try:
            self._close()
        finally:
            self._lock.release()

    def _apply_pending_reset(self) -> None:
        if self._reset_requested:
            self._close()

    def _close(self) -> None:
        if self._document is not None:
            self._document.close()
        self._document = None
        self._data = None
        self._pixmap = None
        self._reset_requested = False


class TesseractOCREngine:
    """Recognise text with Tesseract via pytesseract."""

    def __init__(self, language: str = "eng", config: str = "--oem 3 --psm 3") -> None:
        self.language = language
        self.config = config

    async def recognize(self, image: Any) -> OCRPageResult:
        return await asyncio.to_thread(self._recognize, image)

    def _recognize(self, image: Any) -> OCRPageResult:
        data = pytesseract.image_to_data(
            image,
            lang=self.language,
            config=self.config,
            output_type=pytesseract.Output.DICT,
        )
        return ocr_result_from_data(data)


def ocr_result_from_data(data: dict) -> OCRPageResult:
    """Rebuild page text from Tesseract's word-level ``image_to_data`` output."""

    lines: "OrderedDict[tuple[int, int, int], list[str]]" = OrderedDict()
    confidences: list[float] = []
    for index, raw_text in enumerate(data.get("text", [])):
        word = str(raw_text).strip()
        if not word:
            continue
        try:
            confidence = float(data["conf"][index])
        except (KeyError, IndexError, TypeError, ValueError):
            confidence = -1.0
        if confidence < 0:
            continue
        key = (int(data["block_num"][index]), int(data["par_num"][index]), int(data["line_num"][index]))
        lines.setdefault(key, []).append(word)
        confidences.append(confidence)

    paragraphs: "OrderedDict[tuple[int, int], list[str]]" = OrderedDict()
    for (block, paragraph, _line), words in lines.items():
        paragraphs.setdefault((block, paragraph), []).append(" ".join(words))

    text = "\n\n".join("\n".join(paragraph_lines) for paragraph_lines in paragraphs.values())
    return OCRPageResult(
        text=text,
        block_count=len({block for block, _paragraph in paragraphs}),
        word_count=len(confidences),
        confidence=(sum(confidences) / len(confidences) / 100.0) if confidences else 0.0,
    )


def load_image(data: bytes) -> Image.Image:
    """Decode camera/image bytes into an RGB image."""

    image = Image.open(io.BytesIO(data))
    image.load()
    return image.convert("RGB")


class OCRFallbackAdapter:
    """Drive render → capture → recognise for one page at a time.

    The renderer and OCR engine are single-instance; the lock keeps concurrent
    coordinators that share them from interleaving page work.
    """

    def __init__(self, renderer: PageRenderer, engine: OCREngine, *, render_timeout: float = 10.0) -> None:
        self.renderer = renderer
        self.engine = engine
        self.render_timeout = render_timeout
        self._lock = asyncio.Lock()

    async def page_count(self, data: bytes) -> int:
        async with self._lock:
            return int(await maybe_await(self.renderer.page_count(data)))

    async def recognize_page(self, data: bytes, page_number: int) -> OCRPageResult:
        async with self._lock:
            try:
                await asyncio.wait_for(maybe_await(self.renderer.render(data, page_number)), self.render_timeout)
            except asyncio.TimeoutError:
                # the timed-out worker thread keeps the renderer until it finishes,
                # so the next page may spend part of its own timeout waiting for it
                self.reset()
                raise
            image = await maybe_await(self.renderer.capture())
            return await maybe_await(self.engine.recognize(image))

    async def recognize_image(self, image: Any) -> OCRPageResult:
        return await maybe_await(self.engine.recognize(image))

    def reset(self) -> None:
        try:
            self.renderer.reset()
        except Exception:
            LOGGER.exception("Renderer reset failed")


__all__ = [
    "OCREngine",
    "OCRFallbackAdapter",
    "OCRPageResult",
    "PageRenderer",
    "PdfMinerTextExtractor",
    "PyMuPDFPageRenderer",
    "PyPDF2TextExtractor",
    "StructuredText",
    "StructuredTextExtractor",
    "TesseractOCREngine",
    "create_text_extractor",
    "load_image",
    "ocr_result_from_data",
]
