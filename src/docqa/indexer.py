"""Build the inverted lexical index for a document's chunks."""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from types import MappingProxyType
from typing import Dict, Iterable, List, Sequence

from docqa.ingest.models import Chunk, DocumentIndex, Posting
from docqa.telemetry import emit_index_event
from docqa.tokenizer import term_frequencies

LOGGER = logging.getLogger(__name__)


class Indexer:
    """Derive :class:`DocumentIndex` instances from chunk sequences.

    The postings are a pure function of the chunks: terms are inserted in
    sorted order and each posting list is ordered by chunk ordinal, so
    building twice from the same chunks yields identical mappings.
    """

    def build(self, document_id: str, chunks: Sequence[Chunk]) -> DocumentIndex:
        started = time.perf_counter()
        ordered = tuple(sorted(chunks, key=lambda chunk: chunk.ordinal))
        self._check_chunks(document_id, ordered)

        collected: Dict[str, List[Posting]] = defaultdict(list)
        for chunk in ordered:
            frequencies = chunk.term_frequencies or term_frequencies(chunk.text)
            for term in sorted(frequencies):
                frequency = frequencies[term]
                if frequency > 0:
                    collected[term].append(Posting(chunk_id=chunk.id, frequency=frequency))

        postings = MappingProxyType({term: tuple(collected[term]) for term in sorted(collected)})
        index = DocumentIndex(document_id=document_id, chunks=ordered, postings=postings)
        emit_index_event(
            document_id=document_id,
            chunks=index.chunk_count,
            terms=index.keyword_count,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return index

    @staticmethod
    def _check_chunks(document_id: str, chunks: Iterable[Chunk]) -> None:
        seen: set[str] = set()
        for chunk in chunks:
            if chunk.document_id != document_id:
                raise ValueError(
                    f"Chunk {chunk.id} belongs to document {chunk.document_id!r}, not {document_id!r}"
                )
            if chunk.id in seen:
                raise ValueError(f"Duplicate chunk id {chunk.id}")
            seen.add(chunk.id)


def build_index(document_id: str, chunks: Sequence[Chunk]) -> DocumentIndex:
    """Build a :class:`DocumentIndex` with a default :class:`Indexer`."""

    return Indexer().build(document_id, chunks)


__all__ = ["Indexer", "build_index"]
