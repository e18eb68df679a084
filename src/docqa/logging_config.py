"""Logging configuration for the document Q&A service.

Every record is rendered as one JSON object per line. Structured events from
:mod:`docqa.telemetry` arrive as dict messages and are merged into the top
level of the object. Ingestion outcomes are additionally written to
``ingest_audit.log`` through the dedicated audit logger.
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "docqa.ingest.audit"
AUDIT_LOG_FILENAME = "ingest_audit.log"

# document text must never end up in the logs in full
MAX_FIELD_CHARS = 2000

# third-party libraries that log every page or token at DEBUG/INFO
_NOISY_LOGGERS = ("pdfminer", "PIL", "PyPDF2", "langdetect", "urllib3", "transformers")

_RECORD_ATTRIBUTES = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
        return value[:MAX_FIELD_CHARS] + f"... [{len(value) - MAX_FIELD_CHARS} chars clipped]"
    return value


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_record: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "module": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update({key: _clip(value) for key, value in record.msg.items()})
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = _clip(message)

        if record.exc_info and "exc" not in log_record:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            log_record[key] = _clip(value)

        return json.dumps(log_record, ensure_ascii=False, default=str)


def build_logging_config(log_dir: str | Path = "logs", level: str = "INFO") -> dict[str, Any]:
    """Return the ``dictConfig`` mapping used by :func:`configure_logging`."""

    level = level.upper()
    loggers: dict[str, Any] = {
        AUDIT_LOGGER_NAME: {
            "level": "INFO",
            "handlers": ["ingest_audit"],
            "propagate": False,
        }
    }
    for name in _NOISY_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": MinimalJSONFormatter}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
            "ingest_audit": {
                "class": "logging.FileHandler",
                "filename": str(Path(log_dir) / AUDIT_LOG_FILENAME),
                "mode": "a",
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": loggers,
    }


def configure_logging(log_dir: str | Path = "logs", level: str = "INFO") -> None:
    """Install JSON console logging and the ingestion audit trail."""

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(log_dir, level))


__all__ = [
    "AUDIT_LOGGER_NAME",
    "AUDIT_LOG_FILENAME",
    "MinimalJSONFormatter",
    "build_logging_config",
    "configure_logging",
]
