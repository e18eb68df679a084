"""Structured lifecycle events for ingestion, retrieval and inference."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

LOGGER = logging.getLogger("docqa.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    session_id: str | None = None,
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if session_id:
        event["session_id"] = session_id
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    name: str,
    session_id: str | None,
    document_id: str | None = None,
    source_kind: str | None = None,
    size_bytes: int | None = None,
    duration_ms: float | None = None,
    language: str | None = None,
    pages: int | None = None,
    method: str | None = None,
    truncated: bool | None = None,
    chunks: int | None = None,
) -> None:
    details = {
        "name": name,
        "source_kind": source_kind,
        "size_bytes": size_bytes,
        "duration_ms": duration_ms,
        "language": language,
        "pages": pages,
        "method": method,
        "truncated": truncated,
        "chunks": chunks,
    }
    log_event(LOGGER, step, session_id=session_id, document_id=document_id, details=details)


def emit_extraction_event(
    step: str,
    *,
    method: str,
    char_count: int,
    success: bool | None = None,
    page_count: int | None = None,
    pages_processed: int | None = None,
    pages_skipped: Iterable[int] = (),
    truncated: bool | None = None,
    error: str | None = None,
) -> None:
    details = {
        "method": method,
        "char_count": char_count,
        "success": success,
        "page_count": page_count,
        "pages_processed": pages_processed,
        "pages_skipped": list(pages_skipped),
        "truncated": truncated,
        "error": error,
    }
    level = "warning" if success is False else "info"
    log_event(LOGGER, step, level=level, details=details)


def emit_ocr_page_event(
    *,
    page: int,
    total: int,
    char_count: int,
    duration_ms: float,
    block_count: int | None = None,
    word_count: int | None = None,
    confidence: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "page": page,
        "total": total,
        "char_count": char_count,
        "block_count": block_count,
        "word_count": word_count,
        "confidence": confidence,
    }
    level = "warning" if error is not None else "info"
    log_event(LOGGER, "ocr.page", level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_index_event(*, document_id: str, chunks: int, terms: int, duration_ms: float) -> None:
    details = {"chunks": chunks, "terms": terms}
    log_event(LOGGER, "index.build", document_id=document_id, duration_ms=duration_ms, details=details)


def emit_retriever_event(
    *,
    document_id: str,
    query: str,
    top_k: int,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "top_k": top_k,
        "results": results,
    }
    log_event(LOGGER, "retriever.search", document_id=document_id, duration_ms=duration_ms, details=details)


def emit_empty_retrieval(*, document_id: str, query: str) -> None:
    log_event(
        LOGGER,
        "retrieval.empty",
        document_id=document_id,
        details={"query_preview": query[:120]},
    )


def emit_prompt_event(
    *,
    document_id: str,
    sources: Iterable[str],
    context_chars: int,
    truncated: bool,
    fallback: bool,
) -> None:
    details = {
        "sources": list(sources),
        "context_chars": context_chars,
        "truncated": truncated,
        "fallback": fallback,
    }
    log_event(LOGGER, "prompt.compose", document_id=document_id, details=details)


def emit_inference_request(
    *,
    req_id: str,
    document_id: str,
    prompt_preview: str,
    prompt_len: int,
    temperature: float,
    max_tokens: int | None,
) -> None:
    details = {
        "prompt_preview": prompt_preview[:120],
        "prompt_len": prompt_len,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    log_event(LOGGER, "inference.request", req_id=req_id, document_id=document_id, details=details)


def emit_inference_result(
    *,
    req_id: str,
    document_id: str,
    duration_ms: float,
    model_used: str,
    answer_preview: str,
    fallback: bool,
) -> None:
    details = {
        "model_used": model_used,
        "answer_preview": answer_preview[:120],
        "fallback": fallback,
        "tokens_generated": len(answer_preview.split()),
    }
    log_event(
        LOGGER,
        "inference.result",
        req_id=req_id,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
    )


def emit_llm_provider_init(*, provider: str, ready: bool, reason: str | None = None) -> None:
    log_event(LOGGER, "llm.provider.init", details={"provider": provider, "ready": ready, "reason": reason})


def emit_exception(
    *,
    module: str,
    error: BaseException,
    session_id: str | None = None,
    document_id: str | None = None,
) -> None:
    log_event(
        LOGGER,
        "exception",
        level="error",
        session_id=session_id,
        document_id=document_id,
        details={"module": module},
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_empty_retrieval",
    "emit_exception",
    "emit_extraction_event",
    "emit_index_event",
    "emit_inference_request",
    "emit_inference_result",
    "emit_ingest_event",
    "emit_llm_provider_init",
    "emit_ocr_page_event",
    "emit_prompt_event",
    "emit_retriever_event",
    "log_event",
    "traced_duration",
]
