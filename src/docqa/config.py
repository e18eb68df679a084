"""Runtime configuration sourced from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields

LOGGER = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


_POSITIVE_FIELDS = (
    "max_chunk_chars",
    "top_k",
    "max_context_chars",
    "render_timeout",
    "render_scale",
    "llm_max_tokens",
    "max_sessions",
)
_NON_NEGATIVE_FIELDS = ("max_ocr_pages", "min_viable_chars", "min_camera_chars", "overlap_chars", "llm_temperature")


@dataclass(slots=True)
class Settings:
    """Tunable policy values for ingestion, retrieval and generation."""

    max_ocr_pages: int = 10
    min_viable_chars: int = 50
    min_camera_chars: int = 30
    max_chunk_chars: int = 1000
    overlap_chars: int = 100
    top_k: int = 4
    max_context_chars: int = 3000
    render_timeout: float = 10.0
    render_scale: float = 2.0
    pdf_backend: str = "pypdf2"
    ocr_language: str = "eng"
    llm_max_tokens: int = 256
    llm_temperature: float = 0.0
    max_sessions: int = 256
    log_dir: str = "logs"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        defaults = {item.name: item.default for item in fields(self)}
        for name in _POSITIVE_FIELDS:
            if getattr(self, name) <= 0:
                LOGGER.warning("%s must be positive, got %s; using default %s", name, getattr(self, name), defaults[name])
                setattr(self, name, defaults[name])
        for name in _NON_NEGATIVE_FIELDS:
            if getattr(self, name) < 0:
                LOGGER.warning("%s must not be negative, got %s; using default %s", name, getattr(self, name), defaults[name])
                setattr(self, name, defaults[name])
        if self.overlap_chars >= self.max_chunk_chars:
            LOGGER.warning(
                "overlap_chars (%s) must be smaller than max_chunk_chars (%s); using %s",
                self.overlap_chars,
                self.max_chunk_chars,
                self.max_chunk_chars // 10,
            )
            self.overlap_chars = self.max_chunk_chars // 10

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        settings = cls(
            max_ocr_pages=_int_from_env("DOCQA_MAX_OCR_PAGES", defaults.max_ocr_pages),
            min_viable_chars=_int_from_env("DOCQA_MIN_VIABLE_CHARS", defaults.min_viable_chars),
            min_camera_chars=_int_from_env("DOCQA_MIN_CAMERA_CHARS", defaults.min_camera_chars),
            max_chunk_chars=_int_from_env("DOCQA_MAX_CHUNK_CHARS", defaults.max_chunk_chars),
            overlap_chars=_int_from_env("DOCQA_OVERLAP_CHARS", defaults.overlap_chars),
            top_k=_int_from_env("DOCQA_TOP_K", defaults.top_k),
            max_context_chars=_int_from_env("DOCQA_MAX_CONTEXT_CHARS", defaults.max_context_chars),
            render_timeout=_float_from_env("DOCQA_RENDER_TIMEOUT", defaults.render_timeout),
            render_scale=_float_from_env("DOCQA_RENDER_SCALE", defaults.render_scale),
            pdf_backend=_str_from_env("DOCQA_PDF_BACKEND", defaults.pdf_backend).lower(),
            ocr_language=_str_from_env("OCR_LANG", defaults.ocr_language),
            llm_max_tokens=_int_from_env("LLM_MAX_TOKENS", defaults.llm_max_tokens),
            llm_temperature=_float_from_env("LLM_TEMPERATURE", defaults.llm_temperature),
            max_sessions=_int_from_env("DOCQA_MAX_SESSIONS", defaults.max_sessions),
            log_dir=_str_from_env("DOCQA_LOG_DIR", defaults.log_dir),
            log_level=_str_from_env("LOG_LEVEL", defaults.log_level).upper(),
        )
        return settings


__all__ = ["Settings"]
