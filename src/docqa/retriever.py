"""Rank the chunks of a document index against a question."""
from __future__ import annotations

import logging
import math
import time
from typing import Dict, List, Optional

from docqa.ingest.models import DocumentIndex, RetrievalResult, RetrievedChunk
from docqa.telemetry import emit_retriever_event
from docqa.tokenizer import tokenize

LOGGER = logging.getLogger(__name__)


class Retriever:
    """TF-IDF ranking over a :class:`DocumentIndex`.

    ``score(chunk) = sum(tf(chunk, term) * log(1 + N / df(term)))`` over the
    distinct terms of the question. Only chunks sharing at least one term
    with the question are returned; ties go to the earlier chunk.
    """

    def __init__(self, top_k: int = 4) -> None:
        self.top_k = top_k

    def retrieve(self, index: DocumentIndex, question: str, k: Optional[int] = None) -> RetrievalResult:
        """Return at most ``k`` scored chunks, best first."""

        limit = self.top_k if k is None else k
        started = time.perf_counter()
        if limit <= 0 or not index.chunks:
            return ()

        query_terms = sorted(set(tokenize(question)))
        if not query_terms:
            return ()

        total_chunks = index.chunk_count
        scores: Dict[str, float] = {}
        for term in query_terms:
            postings = index.postings.get(term)
            if not postings:
                continue
            idf = math.log(1.0 + total_chunks / index.document_frequency(term))
            for posting in postings:
                scores[posting.chunk_id] = scores.get(posting.chunk_id, 0.0) + posting.frequency * idf

        ranked: List[RetrievedChunk] = [
            RetrievedChunk(chunk=chunk, score=scores[chunk.id]) for chunk in index.chunks if chunk.id in scores
        ]
        ranked.sort(key=lambda item: (-item.score, item.chunk.ordinal))
        results = tuple(ranked[:limit])

        emit_retriever_event(
            document_id=index.document_id,
            query=question,
            top_k=limit,
            results=[
                {"ordinal": item.chunk.ordinal, "score": round(item.score, 6), "pages": [item.chunk.page_start, item.chunk.page_end]}
                for item in results
            ],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return results


__all__ = ["Retriever"]
