"""Session-level orchestration of ingestion and question answering."""
from .qa import DocumentQASession, SessionRegistry, get_session_registry

__all__ = ["DocumentQASession", "SessionRegistry", "get_session_registry"]
