"""Utilities for constructing grounded question-answering prompts."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from docqa.ingest.models import Chunk, RetrievedChunk

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
_SYSTEM_PROMPT_PATH = _PROMPTS_DIR / "system.txt"
_USER_PROMPT_PATH = _PROMPTS_DIR / "user.md"
_NO_CONTEXT_PROMPT_PATH = _PROMPTS_DIR / "no_context.md"

_SECTION_SEPARATOR = "\n\n"


def _load_template(path: Path) -> str:
    """Read and trim the contents of a template file."""
    return path.read_text(encoding="utf-8").strip()


_SYSTEM_TEXT = _load_template(_SYSTEM_PROMPT_PATH)
_USER_TEMPLATE = _load_template(_USER_PROMPT_PATH)
_NO_CONTEXT_TEMPLATE = _load_template(_NO_CONTEXT_PROMPT_PATH)


@dataclass(slots=True, frozen=True)
class ComposedPrompt:
    text: str
    context: str
    pages: Tuple[int, ...]
    truncated: bool = False
    fallback: bool = False


def page_label(chunk: Chunk) -> str:
    if chunk.page_start == chunk.page_end:
        return f"Page {chunk.page_start}"
    return f"Pages {chunk.page_start}-{chunk.page_end}"


def build_context(retrieval: Sequence[RetrievedChunk], max_context_chars: int) -> Tuple[str, List[Chunk], bool]:
    """Concatenate chunk texts in score order without exceeding ``max_context_chars``.

    Returns the context block, the chunks that made it in and whether anything
    was left out. The first chunk is cut rather than dropped when it alone is
    over budget.
    """

    sections: List[str] = []
    used: List[Chunk] = []
    length = 0
    truncated = False
    for item in retrieval:
        section = f"[{page_label(item.chunk)}]\n{item.chunk.text.strip()}"
        extra = len(section) + (len(_SECTION_SEPARATOR) if sections else 0)
        if length + extra > max_context_chars:
            truncated = True
            if not sections and max_context_chars > 0:
                sections.append(section[:max_context_chars].rstrip())
                used.append(item.chunk)
            break
        sections.append(section)
        used.append(item.chunk)
        length += extra
    return _SECTION_SEPARATOR.join(sections), used, truncated


def cited_pages(chunks: Sequence[Chunk]) -> Tuple[int, ...]:
    """Page numbers covered by ``chunks``, deduplicated in citation order."""

    pages: List[int] = []
    seen: set[int] = set()
    for chunk in chunks:
        for page in chunk.pages:
            if page not in seen:
                seen.add(page)
                pages.append(page)
    return tuple(pages)


def build_prompt(question: str, retrieval: Sequence[RetrievedChunk], max_context_chars: int = 3000) -> ComposedPrompt:
    """Compose the prompt for answering ``question`` from ``retrieval``.

    An empty retrieval yields the "no relevant context" prompt with no pages.
    """

    if question is None:
        raise ValueError("question must not be None")

    question = question.strip()
    context, used, truncated = build_context(retrieval, max_context_chars)
    if not used:
        user_block = _NO_CONTEXT_TEMPLATE.format(question=question)
        return ComposedPrompt(
            text=f"{_SYSTEM_TEXT}\n\n{user_block}".strip(),
            context="",
            pages=(),
            truncated=truncated,
            fallback=True,
        )

    user_block = _USER_TEMPLATE.format(context=context, question=question)
    return ComposedPrompt(
        text=f"{_SYSTEM_TEXT}\n\n{user_block}".strip(),
        context=context,
        pages=cited_pages(used),
        truncated=truncated,
    )


__all__ = ["ComposedPrompt", "build_context", "build_prompt", "cited_pages", "page_label"]
