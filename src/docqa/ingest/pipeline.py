"""High level ingestion pipeline entry point."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from docqa.config import Settings
from docqa.errors import ExtractionFailure
from docqa.indexer import Indexer
from docqa.telemetry import emit_ingest_event, emit_ocr_page_event, traced_duration

from .chunking import Chunker, ChunkingConfig
from .coordinator import ExtractionCoordinator, ExtractionOptions
from .extractors import (
    OCRFallbackAdapter,
    PyMuPDFPageRenderer,
    StructuredTextExtractor,
    TesseractOCREngine,
    create_text_extractor,
    load_image,
)
from .language import LanguageDetector
from .models import Chunk, Document, DocumentIndex, DocumentSource, ExtractionMethod, ExtractionResult, SourceKind
from .normalization import normalize_text
from .progress import IngestStage, ProgressReporter
from .source_detection import SourceKindDetector

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class IngestedDocument:
    """A document together with the chunks and index built from it."""

    document: Document
    chunks: tuple[Chunk, ...]
    index: DocumentIndex


class IngestPipeline:
    """Pipeline orchestrating extraction, normalisation, chunking and indexing."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        text_extractor: Optional[StructuredTextExtractor] = None,
        ocr: Optional[OCRFallbackAdapter] = None,
        indexer: Optional[Indexer] = None,
        language_detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.text_extractor = text_extractor or create_text_extractor(self.settings.pdf_backend)
        self.ocr = ocr or OCRFallbackAdapter(
            PyMuPDFPageRenderer(scale=self.settings.render_scale),
            TesseractOCREngine(language=self.settings.ocr_language),
            render_timeout=self.settings.render_timeout,
        )
        self.chunker = Chunker(
            ChunkingConfig(
                max_chunk_chars=self.settings.max_chunk_chars,
                overlap_chars=self.settings.overlap_chars,
            )
        )
        self.indexer = indexer or Indexer()
        self.language_detector = language_detector or LanguageDetector()

    async def ingest(
        self,
        source: DocumentSource,
        *,
        document_id: Optional[str] = None,
        reporter: Optional[ProgressReporter] = None,
        session_id: Optional[str] = None,
    ) -> IngestedDocument:
        """Turn ``source`` into an indexed document.

        Raises :class:`UnsupportedSource` or :class:`ExtractionFailure`.
        """

        reporter = reporter or ProgressReporter()
        kind = SourceKindDetector.detect(source)
        document_id = document_id or uuid.uuid4().hex
        started = time.perf_counter()
        emit_ingest_event(
            "ingest.document.start",
            name=source.name,
            session_id=session_id,
            document_id=document_id,
            source_kind=kind.value,
            size_bytes=source.byte_size,
        )

        await reporter.report(IngestStage.EXTRACTING, 0, "Extracting text")
        extraction = await self._extract(source, kind, reporter)
        if not extraction.success:
            emit_ingest_event(
                "ingest.document.failed",
                name=source.name,
                session_id=session_id,
                document_id=document_id,
                source_kind=kind.value,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                method=extraction.method.value,
            )
            raise ExtractionFailure(
                extraction.error or "No usable text could be extracted",
                method=extraction.method.value,
            )

        if kind.is_pdf:
            kind = SourceKind.SCANNED_PDF if extraction.method is ExtractionMethod.OCR else SourceKind.DIGITAL_PDF
        text = normalize_text(extraction.text)
        language = self.language_detector.detect(text)
        await reporter.report(IngestStage.EXTRACTING, 100, "Text extracted")

        await reporter.report(IngestStage.CHUNKING, 0, "Splitting into passages")
        with traced_duration("chunking", logger=LOGGER, document_id=document_id, chars=len(text)):
            # only OCR page assembly inserts page markers
            chunks = tuple(self.chunker.chunk(text, document_id, page_markers=kind is SourceKind.SCANNED_PDF))
        await reporter.report(IngestStage.CHUNKING, 100, f"{len(chunks)} passages")

        await reporter.report(IngestStage.INDEXING, 0, "Building index")
        index = self.indexer.build(document_id, chunks)
        await reporter.report(IngestStage.INDEXING, 100, f"{index.keyword_count} keywords indexed")

        document = Document(
            id=document_id,
            name=source.name,
            source_kind=kind,
            page_count=extraction.page_count,
            byte_size=source.byte_size,
            raw_text=text,
            created_at=datetime.now(timezone.utc),
            language=language,
            extraction=extraction,
        )
        emit_ingest_event(
            "ingest.document.complete",
            name=source.name,
            session_id=session_id,
            document_id=document_id,
            source_kind=kind.value,
            size_bytes=source.byte_size,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            language=language,
            pages=extraction.page_count,
            method=extraction.method.value,
            truncated=extraction.truncated,
            chunks=len(chunks),
        )
        return IngestedDocument(document=document, chunks=chunks, index=index)

    async def _extract(self, source: DocumentSource, kind: SourceKind, reporter: ProgressReporter) -> ExtractionResult:
        if kind is SourceKind.PASTED_TEXT:
            return self._extract_pasted(source)
        if source.data is None:
            return ExtractionResult(
                success=False,
                text="",
                char_count=0,
                method=ExtractionMethod.STRUCTURED,
                error=f"No content supplied for {source.name!r}",
                page_count=0,
                pages_processed=0,
            )
        if kind is SourceKind.CAMERA_IMAGE:
            return await self._extract_image(source.data)

        async def on_page(page: int, total: int) -> None:
            await reporter.report(IngestStage.EXTRACTING, page * 100.0 / max(total, 1), f"OCR page {page}/{total}")

        coordinator = ExtractionCoordinator(
            self.text_extractor,
            self.ocr,
            ExtractionOptions(
                max_ocr_pages=self.settings.max_ocr_pages,
                min_viable_chars=self.settings.min_viable_chars,
            ),
            on_page=on_page,
        )
        return await coordinator.extract(source.data)

    def _extract_pasted(self, source: DocumentSource) -> ExtractionResult:
        text = source.text if source.text is not None else (source.data or b"").decode("utf-8", errors="ignore")
        cleaned = text.strip()
        success = len(cleaned) >= self.settings.min_viable_chars
        return ExtractionResult(
            success=success,
            text=cleaned,
            char_count=len(cleaned),
            method=ExtractionMethod.STRUCTURED,
            error=None if success else f"Pasted text must contain at least {self.settings.min_viable_chars} characters",
        )

    async def _extract_image(self, data: bytes) -> ExtractionResult:
        started = time.perf_counter()
        try:
            image = await asyncio.to_thread(load_image, data)
            recognised = await self.ocr.recognize_image(image)
        except Exception as error:
            emit_ocr_page_event(
                page=1,
                total=1,
                char_count=0,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            return ExtractionResult(
                success=False,
                text="",
                char_count=0,
                method=ExtractionMethod.OCR,
                error=f"Text recognition failed: {error}",
                pages_processed=0,
                pages_skipped=(1,),
            )

        cleaned = recognised.text.strip()
        emit_ocr_page_event(
            page=1,
            total=1,
            char_count=len(cleaned),
            duration_ms=(time.perf_counter() - started) * 1000.0,
            block_count=recognised.block_count,
            word_count=recognised.word_count,
            confidence=recognised.confidence,
        )
        success = len(cleaned) >= self.settings.min_camera_chars
        return ExtractionResult(
            success=success,
            text=cleaned,
            char_count=len(cleaned),
            method=ExtractionMethod.OCR,
            error=None if success else "Not enough readable text found in the image",
        )


__all__ = ["IngestPipeline", "IngestedDocument"]
