"""Data models shared by the ingestion, indexing and answering stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional


class SourceKind(str, Enum):
    """Kinds of document the pipeline accepts."""

    DIGITAL_PDF = "digital-pdf"
    SCANNED_PDF = "scanned-pdf"
    PASTED_TEXT = "pasted-text"
    CAMERA_IMAGE = "camera-image"

    @property
    def is_pdf(self) -> bool:
        return self in (SourceKind.DIGITAL_PDF, SourceKind.SCANNED_PDF)


class ExtractionMethod(str, Enum):
    STRUCTURED = "structured"
    OCR = "ocr"


@dataclass(slots=True, frozen=True)
class DocumentSource:
    """Opaque handle describing what the host wants ingested.

    ``data`` carries PDF or image bytes; ``text`` carries pasted text. ``kind``
    may be left empty, in which case it is inferred from ``mime_type`` and the
    suffix of ``name``.
    """

    name: str
    data: Optional[bytes] = None
    text: Optional[str] = None
    kind: Optional[SourceKind] = None
    mime_type: Optional[str] = None

    @property
    def byte_size(self) -> int:
        if self.data is not None:
            return len(self.data)
        if self.text is not None:
            return len(self.text.encode("utf-8"))
        return 0


@dataclass(slots=True, frozen=True)
class ExtractionResult:
    """Outcome of a single extraction attempt. Never persisted."""

    success: bool
    text: str
    char_count: int
    method: ExtractionMethod
    error: Optional[str] = None
    page_count: int = 1
    pages_processed: int = 1
    pages_skipped: tuple[int, ...] = ()
    truncated: bool = False


@dataclass(slots=True, frozen=True)
class Document:
    """An ingested document. Immutable once created."""

    id: str
    name: str
    source_kind: SourceKind
    page_count: int
    byte_size: int
    raw_text: str
    created_at: datetime
    language: Optional[str] = None
    extraction: Optional[ExtractionResult] = None

    @property
    def truncated(self) -> bool:
        return bool(self.extraction and self.extraction.truncated)


@dataclass(slots=True, frozen=True)
class Chunk:
    """A bounded passage of a document with its page span."""

    id: str
    document_id: str
    ordinal: int
    text: str
    page_start: int
    page_end: int
    term_frequencies: Mapping[str, int] = field(default_factory=dict)

    @property
    def pages(self) -> range:
        return range(self.page_start, self.page_end + 1)


@dataclass(slots=True, frozen=True)
class Posting:
    chunk_id: str
    frequency: int


@dataclass(slots=True, frozen=True)
class DocumentIndex:
    """Inverted lexical index over the chunks of one document."""

    document_id: str
    chunks: tuple[Chunk, ...]
    postings: Mapping[str, tuple[Posting, ...]]

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def keyword_count(self) -> int:
        return len(self.postings)

    @property
    def pages_covered(self) -> tuple[int, ...]:
        pages: set[int] = set()
        for chunk in self.chunks:
            pages.update(chunk.pages)
        return tuple(sorted(pages))

    def document_frequency(self, term: str) -> int:
        return len(self.postings.get(term, ()))


@dataclass(slots=True, frozen=True)
class RetrievedChunk:
    chunk: Chunk
    score: float


RetrievalResult = tuple[RetrievedChunk, ...]


@dataclass(slots=True, frozen=True)
class AnsweredQuestion:
    """Entry in a session's conversation log."""

    question: str
    answer: str
    cited_pages: tuple[int, ...]
    document_id: str
