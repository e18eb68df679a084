"""Exceptions surfaced by the document Q&A core."""
from __future__ import annotations


class DocQAError(RuntimeError):
    """Base class for every error raised past the core's public boundary."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class IngestionError(DocQAError):
    """Closed set of failures that :meth:`DocumentQASession.ingest` may raise."""


class ExtractionFailure(IngestionError):
    """No usable text could be obtained from the document."""

    def __init__(self, message: str, *, method: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.method = method


class UnsupportedSource(IngestionError):
    """The caller passed a source kind the pipeline does not recognise."""


class ModelNotReady(DocQAError):
    """The inference engine has not been initialised."""


class DocumentNotFound(DocQAError):
    """No index exists for the requested document id."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No indexed document with id {document_id!r}")
        self.document_id = document_id


__all__ = [
    "DocQAError",
    "DocumentNotFound",
    "ExtractionFailure",
    "IngestionError",
    "ModelNotReady",
    "UnsupportedSource",
]
