"""API router exposing document ingestion and question answering per session."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from pydantic import BaseModel, Field

from docqa.composer import AnswerResult
from docqa.errors import DocumentNotFound, ExtractionFailure, ModelNotReady, UnsupportedSource
from docqa.ingest.models import Document, DocumentIndex, DocumentSource
from docqa.ingest.source_detection import SourceKindDetector
from docqa.llm_provider import LLMGenerationError
from docqa.services.qa import DocumentQASession, SessionRegistry, get_session_registry

router = APIRouter(prefix="/sessions", tags=["documents"])


class DocumentSummary(BaseModel):
    """Metadata describing the active document of a session."""

    id: str
    name: str
    source_kind: str
    page_count: int
    byte_size: int
    language: Optional[str] = None
    method: Optional[str] = None
    truncated: bool = False
    pages_processed: int = 0
    pages_skipped: list[int] = Field(default_factory=list)
    chunk_count: int = 0
    keyword_count: int = 0
    pages_covered: list[int] = Field(default_factory=list)
    created_at: datetime


class TextDocumentRequest(BaseModel):
    name: str = Field("Pasted text", min_length=1, description="Display name for the pasted document.")
    text: str = Field(..., min_length=1, description="Document text to ingest.")


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, description="Question about the active document.")
    top_k: Optional[int] = Field(None, ge=1, le=20, description="How many passages should be considered.")


class AnswerSource(BaseModel):
    page: int
    label: str


class AnswerResponse(BaseModel):
    session_id: str
    document_id: str
    question: str
    answer: str
    sources: list[AnswerSource]
    fallback: bool
    model_used: str


class ConversationEntry(BaseModel):
    question: str
    answer: str
    cited_pages: list[int]
    document_id: str


def _session(session_id: str, registry: SessionRegistry) -> DocumentQASession:
    return registry.get(session_id)


def _summarise(document: Document, index: Optional[DocumentIndex]) -> DocumentSummary:
    extraction = document.extraction
    return DocumentSummary(
        id=document.id,
        name=document.name,
        source_kind=document.source_kind.value,
        page_count=document.page_count,
        byte_size=document.byte_size,
        language=document.language,
        method=extraction.method.value if extraction else None,
        truncated=document.truncated,
        pages_processed=extraction.pages_processed if extraction else 0,
        pages_skipped=list(extraction.pages_skipped) if extraction else [],
        chunk_count=index.chunk_count if index else 0,
        keyword_count=index.keyword_count if index else 0,
        pages_covered=list(index.pages_covered) if index else [],
        created_at=document.created_at,
    )


async def _ingest(session: DocumentQASession, source: DocumentSource) -> DocumentSummary:
    try:
        document = await session.ingest(source)
    except UnsupportedSource as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except ExtractionFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _summarise(document, session.active_index)


@router.post("/{session_id}/documents", response_model=DocumentSummary)
async def upload_document(
    session_id: str,
    file: UploadFile = File(...),
    kind: Optional[str] = Form(None),
    registry: SessionRegistry = Depends(get_session_registry),
) -> DocumentSummary:
    """Ingest an uploaded PDF or image, replacing the session's active document."""

    try:
        source_kind = SourceKindDetector.parse_kind(kind) if kind else None
    except UnsupportedSource as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    source = DocumentSource(
        name=file.filename or "upload",
        data=data,
        kind=source_kind,
        mime_type=file.content_type,
    )
    return await _ingest(_session(session_id, registry), source)


@router.post("/{session_id}/documents/text", response_model=DocumentSummary)
async def paste_document(
    session_id: str,
    request: TextDocumentRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> DocumentSummary:
    """Ingest pasted text, replacing the session's active document."""

    source = DocumentSource(name=request.name, text=request.text)
    return await _ingest(_session(session_id, registry), source)


@router.get("/{session_id}/documents/active", response_model=DocumentSummary)
def get_active_document(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> DocumentSummary:
    session = _session(session_id, registry)
    document = session.active_document
    if document is None:
        raise HTTPException(status_code=404, detail="No active document in this session")
    return _summarise(document, session.active_index)


@router.delete("/{session_id}/documents/active", status_code=204)
def discard_active_document(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    _session(session_id, registry).discard()
    return Response(status_code=204)


@router.post("/{session_id}/documents/{document_id}/ask", response_model=AnswerResponse)
async def ask_question(
    session_id: str,
    document_id: str,
    request: AskRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> AnswerResponse:
    """Answer a question using passages retrieved from the document."""

    if not request.question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    try:
        result: AnswerResult = await _session(session_id, registry).ask(
            document_id,
            request.question,
            top_k=request.top_k,
        )
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ModelNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except LLMGenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return AnswerResponse(
        session_id=session_id,
        document_id=result.document_id,
        question=request.question,
        answer=result.answer,
        sources=[AnswerSource(page=source.page, label=source.label) for source in result.sources],
        fallback=result.fallback,
        model_used=result.model_used,
    )


@router.delete("/{session_id}", status_code=204)
def close_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> Response:
    """Forget the session together with its document and conversation."""

    registry.drop(session_id)
    return Response(status_code=204)


@router.get("/{session_id}/conversation", response_model=list[ConversationEntry])
def get_conversation(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> list[ConversationEntry]:
    return [
        ConversationEntry(
            question=entry.question,
            answer=entry.answer,
            cited_pages=list(entry.cited_pages),
            document_id=entry.document_id,
        )
        for entry in _session(session_id, registry).conversation
    ]
