from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, List, Optional

from docqa.composer import AnswerComposer, AnswerResult
from docqa.config import Settings
from docqa.errors import DocumentNotFound, IngestionError
from docqa.ingest.models import AnsweredQuestion, Document, DocumentIndex, DocumentSource
from docqa.ingest.pipeline import IngestedDocument, IngestPipeline
from docqa.ingest.progress import IngestStage, ProgressCallback, ProgressReporter
from docqa.llm_provider import LLM, get_llm
from docqa.logging_config import AUDIT_LOGGER_NAME
from docqa.retriever import Retriever
from docqa.telemetry import emit_exception, log_event

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


class DocumentQASession:
    """One user's document workspace: at most one active document at a time.

    Starting a new ingestion discards the current document immediately. An
    ingestion that gets superseded while in flight finishes but never becomes
    the active document.
    """

    def __init__(
        self,
        session_id: str,
        *,
        pipeline: Optional[IngestPipeline] = None,
        llm: Optional[LLM] = None,
        retriever: Optional[Retriever] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session_id = session_id
        self.settings = settings or Settings()
        self.pipeline = pipeline or IngestPipeline(self.settings)
        self.retriever = retriever or Retriever(top_k=self.settings.top_k)
        self._llm = llm
        self._active: Optional[IngestedDocument] = None
        self._generation = 0
        self._conversation: List[AnsweredQuestion] = []

    @property
    def llm(self) -> LLM:
        return self._llm if self._llm is not None else get_llm()

    @property
    def active_document(self) -> Optional[Document]:
        return self._active.document if self._active is not None else None

    @property
    def active_index(self) -> Optional[DocumentIndex]:
        return self._active.index if self._active is not None else None

    @property
    def conversation(self) -> tuple[AnsweredQuestion, ...]:
        return tuple(self._conversation)

    def discard(self) -> None:
        """Drop the active document, its index and the conversation log."""

        self._generation += 1
        if self._active is not None:
            log_event(
                LOGGER,
                "session.document.discarded",
                session_id=self.session_id,
                document_id=self._active.document.id,
            )
        self._active = None
        self._conversation.clear()

    async def ingest(self, source: DocumentSource, on_progress: Optional[ProgressCallback] = None) -> Document:
        """Ingest ``source`` and make it the active document.

        Raises :class:`UnsupportedSource` or :class:`ExtractionFailure`.
        """

        self.discard()
        generation = self._generation
        reporter = ProgressReporter(on_progress)
        try:
            ingested = await self.pipeline.ingest(source, reporter=reporter, session_id=self.session_id)
        except IngestionError as error:
            emit_exception(module=__name__, error=error, session_id=self.session_id)
            AUDIT_LOGGER.info(
                {
                    "step": "ingest.rejected",
                    "session_id": self.session_id,
                    "name": source.name,
                    "reason": str(error),
                }
            )
            raise

        document = ingested.document
        if generation != self._generation:
            LOGGER.info(
                "Ingestion of %s was superseded in session %s; result discarded",
                document.id,
                self.session_id,
            )
            return document

        self._active = ingested
        AUDIT_LOGGER.info(
            {
                "step": "ingest.accepted",
                "session_id": self.session_id,
                "document_id": document.id,
                "name": document.name,
                "source_kind": document.source_kind.value,
                "pages": document.page_count,
                "chunks": ingested.index.chunk_count,
                "keywords": ingested.index.keyword_count,
                "truncated": document.truncated,
            }
        )
        await reporter.report(IngestStage.READY, 100, "Document ready")
        return document

    def _ingested(self, document_id: str) -> IngestedDocument:
        if self._active is None or self._active.document.id != document_id:
            raise DocumentNotFound(document_id)
        return self._active

    async def ask(self, document_id: str, question: str, top_k: Optional[int] = None) -> AnswerResult:
        """Answer ``question`` from the active document.

        Raises :class:`DocumentNotFound` or :class:`ModelNotReady`.
        """

        ingested = self._ingested(document_id)
        if question is None or not question.strip():
            raise ValueError("question must not be empty")

        retrieval = self.retriever.retrieve(ingested.index, question, top_k)
        composer = AnswerComposer(
            self.llm,
            max_context_chars=self.settings.max_context_chars,
            max_tokens=self.settings.llm_max_tokens,
            temperature=self.settings.llm_temperature,
        )
        result = await composer.answer(question, retrieval, document_id)

        # the document may have been replaced while the model was generating
        if self._active is ingested:
            self._conversation.append(
                AnsweredQuestion(
                    question=question,
                    answer=result.answer,
                    cited_pages=result.pages,
                    document_id=document_id,
                )
            )
        return result


SessionFactory = Callable[[str], DocumentQASession]


class SessionRegistry:
    """In-memory map of session id to :class:`DocumentQASession`.

    Sessions share one :class:`IngestPipeline`, and therefore one page renderer
    and OCR engine. At most ``settings.max_sessions`` are kept; the least
    recently used session is discarded when a new one would exceed the bound.
    """

    def __init__(self, settings: Optional[Settings] = None, *, factory: Optional[SessionFactory] = None) -> None:
        self.settings = settings or Settings.from_env()
        self._factory = factory
        self._pipeline: Optional[IngestPipeline] = None
        self._sessions: "OrderedDict[str, DocumentQASession]" = OrderedDict()
        self._lock = threading.Lock()

    def _create(self, session_id: str) -> DocumentQASession:
        if self._factory is not None:
            return self._factory(session_id)
        if self._pipeline is None:
            self._pipeline = IngestPipeline(self.settings)
        return DocumentQASession(session_id, pipeline=self._pipeline, settings=self.settings)

    def get(self, session_id: str) -> DocumentQASession:
        evicted: List[DocumentQASession] = []
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._create(session_id)
                self._sessions[session_id] = session
                while len(self._sessions) > self.settings.max_sessions:
                    _, oldest = self._sessions.popitem(last=False)
                    evicted.append(oldest)
            else:
                self._sessions.move_to_end(session_id)
        for oldest in evicted:
            LOGGER.info("Evicting idle session %s", oldest.session_id)
            oldest.discard()
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def drop(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.discard()

    def __len__(self) -> int:
        return len(self._sessions)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """FastAPI dependency returning the shared :class:`SessionRegistry` instance."""

    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry


__all__ = ["DocumentQASession", "SessionRegistry", "get_session_registry"]
