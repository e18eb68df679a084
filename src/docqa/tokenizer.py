"""Tokenisation shared by the indexer and the retriever."""
from __future__ import annotations

import re
from collections import Counter
from typing import Dict, List

_TOKEN_RE = re.compile(r"[^\W_]+")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can",
        "did", "do", "does", "for", "from", "had", "has", "have", "he", "her",
        "his", "how", "i", "if", "in", "into", "is", "it", "its", "me", "my",
        "no", "not", "of", "on", "or", "our", "she", "so", "than", "that",
        "the", "their", "them", "then", "there", "these", "they", "this",
        "to", "was", "we", "were", "what", "when", "where", "which", "who",
        "why", "will", "with", "would", "you", "your",
    }
)


def tokenize(text: str) -> List[str]:
    """Return lowercase alphanumeric terms of ``text`` without stopwords."""

    return [token for token in _TOKEN_RE.findall(text.lower()) if token not in STOPWORDS]


def term_frequencies(text: str) -> Dict[str, int]:
    """Count terms, keyed in sorted order so equal inputs give equal mappings."""

    counts = Counter(tokenize(text))
    return {term: counts[term] for term in sorted(counts)}


__all__ = ["STOPWORDS", "term_frequencies", "tokenize"]
