"""Best-effort language tagging for ingested documents."""
from __future__ import annotations

import logging
from typing import List, Optional

from langdetect import DetectorFactory, LangDetectException, detect_langs

from .chunking import split_pages

LOGGER = logging.getLogger(__name__)

# langdetect samples randomly; a fixed seed keeps tags stable between runs.
DetectorFactory.seed = 0


class LanguageDetector:
    """Tag document text with an ISO 639-1 code using ``langdetect``.

    Page markers are ignored and only the first ``sample_chars`` characters of
    page text are inspected. Guesses below ``min_probability`` yield ``None``.
    """

    def __init__(self, *, sample_chars: int = 5000, min_probability: float = 0.5) -> None:
        self.sample_chars = sample_chars
        self.min_probability = min_probability

    def detect(self, text: str) -> Optional[str]:
        sample = self._sample(text)
        if not sample:
            return None
        try:
            candidates = detect_langs(sample)
        except LangDetectException as error:
            LOGGER.info("Language undetermined for %s sampled characters: %s", len(sample), error)
            return None

        best = candidates[0]
        if best.prob < self.min_probability:
            LOGGER.debug("Discarding weak language guess %s (p=%.2f)", best.lang, best.prob)
            return None
        return best.lang

    def _sample(self, text: str) -> str:
        parts: List[str] = []
        size = 0
        for _, page_text in split_pages(text):
            cleaned = " ".join(page_text.split())
            if not cleaned:
                continue
            parts.append(cleaned)
            size += len(cleaned) + 1
            if size >= self.sample_chars:
                break
        return " ".join(parts)[: self.sample_chars]


__all__ = ["LanguageDetector"]
