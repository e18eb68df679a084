"""Chunking utilities for breaking document text into retrievable passages."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from docqa.tokenizer import term_frequencies

from .models import Chunk

_PAGE_MARKER_RE = re.compile(r"^--- Page (\d+) ---[ \t]*$", re.MULTILINE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_FALLBACK_SENTENCE_RE = re.compile(r"(.+?(?:[.!?](?=\s)|$))", re.DOTALL)
LOGGER = logging.getLogger(__name__)

PAGE_MARKER_TEMPLATE = "--- Page {page} ---"


def page_marker(page: int) -> str:
    return PAGE_MARKER_TEMPLATE.format(page=page)


@dataclass(slots=True)
class ChunkingConfig:
    max_chunk_chars: int = 1000
    overlap_chars: int = 100

    def __post_init__(self) -> None:
        if self.max_chunk_chars <= 0:
            raise ValueError("max_chunk_chars must be a positive integer")
        if self.overlap_chars < 0:
            raise ValueError("overlap_chars must be a non-negative integer")
        if self.overlap_chars >= self.max_chunk_chars:
            raise ValueError("overlap_chars must be smaller than max_chunk_chars")


@dataclass(slots=True)
class _Unit:
    text: str
    page: int
    joiner: str


class Chunker:
    """Split normalised text into bounded, overlapping passages.

    Paragraphs are packed greedily; paragraphs that do not fit are split into
    sentences and sentences into words. Each new chunk starts with the tail of
    the previous one so that context cut at a boundary remains searchable.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, document_id: str = "", *, page_markers: bool = True) -> List[Chunk]:
        """Chunk ``text``; with ``page_markers`` off the whole text is page 1."""

        if not text or not text.strip():
            return []

        chunks: List[Chunk] = []
        for ordinal, (chunk_text, page_start, page_end) in enumerate(self._pack(self._units(text, page_markers))):
            chunk = Chunk(
                id=_make_chunk_id(document_id, ordinal, chunk_text),
                document_id=document_id,
                ordinal=ordinal,
                text=chunk_text,
                page_start=page_start,
                page_end=page_end,
                term_frequencies=term_frequencies(chunk_text),
            )
            LOGGER.debug(
                "Chunk %s pages %s-%s length %s",  # noqa: G004 - f-string not required
                ordinal,
                page_start,
                page_end,
                len(chunk_text),
            )
            chunks.append(chunk)
        return chunks

    def _pack(self, units: Iterator[_Unit]) -> Iterator[Tuple[str, int, int]]:
        max_chars = self.config.max_chunk_chars
        buffer = ""
        page_start = page_end = 0
        for unit in units:
            if not buffer:
                buffer, page_start, page_end = unit.text, unit.page, unit.page
                continue

            candidate = f"{buffer}{unit.joiner}{unit.text}"
            if len(candidate) <= max_chars:
                buffer = candidate
                page_end = max(page_end, unit.page)
                continue

            yield buffer, page_start, page_end
            overlap = self._overlap_tail(buffer, max_chars - len(unit.text) - 1)
            if overlap:
                buffer = f"{overlap} {unit.text}"
                page_start = page_end
            else:
                buffer = unit.text
                page_start = unit.page
            page_end = max(page_start, unit.page)

        if buffer:
            yield buffer, page_start, page_end

    def _overlap_tail(self, text: str, room: int) -> str:
        limit = min(self.config.overlap_chars, room)
        if limit <= 0:
            return ""
        tail = text[-limit:]
        if len(text) > limit and not text[-limit - 1].isspace():
            boundary = tail.find(" ")
            tail = tail[boundary + 1 :] if boundary != -1 else ""
        return tail.strip()

    def _units(self, text: str, page_markers: bool) -> Iterator[_Unit]:
        pages = split_pages(text) if page_markers else [(1, text)]
        for page, page_text in pages:
            for paragraph in _PARAGRAPH_SPLIT_RE.split(page_text):
                paragraph = " ".join(paragraph.split())
                if not paragraph:
                    continue
                if len(paragraph) <= self.config.max_chunk_chars:
                    yield _Unit(paragraph, page, "\n\n")
                    continue
                joiner = "\n\n"
                for piece in self._split_long_paragraph(paragraph):
                    yield _Unit(piece, page, joiner)
                    joiner = " "

    def _split_long_paragraph(self, paragraph: str) -> Iterator[str]:
        max_chars = self.config.max_chunk_chars
        for match in _FALLBACK_SENTENCE_RE.finditer(paragraph):
            sentence = match.group(1).strip()
            if not sentence:
                continue
            if len(sentence) <= max_chars:
                yield sentence
            else:
                yield from _split_words(sentence, max_chars)


def _split_words(sentence: str, max_chars: int) -> Iterator[str]:
    current = ""
    for word in sentence.split():
        while len(word) > max_chars:
            if current:
                yield current
                current = ""
            yield word[:max_chars]
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars:
            yield current
            current = word
        else:
            current = candidate
    if current:
        yield current


def split_pages(text: str) -> List[Tuple[int, str]]:
    """Split text on ``--- Page N ---`` markers.

    Text without markers is treated as a single implicit page 1; text that
    precedes the first marker is attributed to page 1 as well.
    """

    markers = list(_PAGE_MARKER_RE.finditer(text))
    if not markers:
        return [(1, text)]

    pages: List[Tuple[int, str]] = []
    leading = text[: markers[0].start()]
    if leading.strip():
        pages.append((1, leading))
    for index, marker in enumerate(markers):
        end = markers[index + 1].start() if index + 1 < len(markers) else len(text)
        pages.append((int(marker.group(1)), text[marker.end() : end]))
    return pages


def _make_chunk_id(document_id: str, ordinal: int, text: str) -> str:
    seed = f"{document_id}:{ordinal}:{text}"
    return uuid.uuid5(uuid.NAMESPACE_URL, seed).hex


def chunk_text(text: str, max_chunk_chars: int = 1000, overlap_chars: int = 100, document_id: str = "") -> List[Chunk]:
    """Functional shortcut for :meth:`Chunker.chunk`."""

    return Chunker(ChunkingConfig(max_chunk_chars=max_chunk_chars, overlap_chars=overlap_chars)).chunk(
        text, document_id
    )


__all__ = ["Chunker", "ChunkingConfig", "chunk_text", "page_marker", "split_pages"]
