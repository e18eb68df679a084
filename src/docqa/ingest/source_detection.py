"""Utilities for detecting the kind of an incoming document source."""
from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Optional

from docqa.errors import UnsupportedSource

from .models import DocumentSource, SourceKind


class SourceKindDetector:
    """Resolve a :class:`SourceKind` from an explicit kind, MIME type or file name."""

    _MIME_MAP = {
        "application/pdf": SourceKind.DIGITAL_PDF,
        "text/plain": SourceKind.PASTED_TEXT,
        "text/markdown": SourceKind.PASTED_TEXT,
        "image/png": SourceKind.CAMERA_IMAGE,
        "image/jpeg": SourceKind.CAMERA_IMAGE,
        "image/tiff": SourceKind.CAMERA_IMAGE,
        "image/bmp": SourceKind.CAMERA_IMAGE,
        "image/webp": SourceKind.CAMERA_IMAGE,
    }

    _SUFFIX_MAP = {
        "pdf": SourceKind.DIGITAL_PDF,
        "txt": SourceKind.PASTED_TEXT,
        "md": SourceKind.PASTED_TEXT,
        "png": SourceKind.CAMERA_IMAGE,
        "jpg": SourceKind.CAMERA_IMAGE,
        "jpeg": SourceKind.CAMERA_IMAGE,
        "tif": SourceKind.CAMERA_IMAGE,
        "tiff": SourceKind.CAMERA_IMAGE,
        "bmp": SourceKind.CAMERA_IMAGE,
        "webp": SourceKind.CAMERA_IMAGE,
    }

    @classmethod
    def parse_kind(cls, value: str) -> SourceKind:
        """Parse a user-supplied kind string such as ``"scanned-pdf"``."""

        try:
            return SourceKind(value.strip().lower())
        except ValueError as exc:
            raise UnsupportedSource(f"Unsupported source kind: {value!r}") from exc

    @classmethod
    def detect(cls, source: DocumentSource) -> SourceKind:
        """Return the source kind, raising :class:`UnsupportedSource` otherwise.

        An explicit ``kind`` wins, then the MIME type, then
        ``mimetypes.guess_type`` and finally the file suffix. A source with
        text but no bytes is always pasted text.
        """

        if source.kind is not None:
            if not isinstance(source.kind, SourceKind):
                return cls.parse_kind(str(source.kind))
            return source.kind

        if source.data is None and source.text is not None:
            return SourceKind.PASTED_TEXT

        kind = cls._from_mime(source.mime_type)
        if kind is not None:
            return kind

        guessed_type, _ = mimetypes.guess_type(source.name)
        kind = cls._from_mime(guessed_type)
        if kind is not None:
            return kind

        suffix = Path(source.name).suffix.lower().lstrip(".")
        if suffix in cls._SUFFIX_MAP:
            return cls._SUFFIX_MAP[suffix]
        raise UnsupportedSource(f"Unsupported document source: {source.name!r} ({source.mime_type or 'no MIME type'})")

    @classmethod
    def _from_mime(cls, mime_type: Optional[str]) -> Optional[SourceKind]:
        if not mime_type:
            return None
        return cls._MIME_MAP.get(mime_type.split(";", 1)[0].strip().lower())
