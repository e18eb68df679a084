"""Stage-ordered ingestion progress reporting."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Awaitable, Callable, Optional, Union

from docqa.asyncutils import maybe_await

LOGGER = logging.getLogger(__name__)


class IngestStage(IntEnum):
    EXTRACTING = 1
    CHUNKING = 2
    INDEXING = 3
    READY = 4

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    stage: IngestStage
    percentage: float
    message: str = ""


ProgressCallback = Callable[[ProgressUpdate], Union[None, Awaitable[None]]]


class ProgressReporter:
    """Forward progress to a host callback without ever moving backwards.

    Updates for an earlier stage than the last one reported are dropped, and
    percentages inside a stage never decrease.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self._last: Optional[ProgressUpdate] = None

    @property
    def last(self) -> Optional[ProgressUpdate]:
        return self._last

    async def report(self, stage: IngestStage, percentage: float, message: str = "") -> None:
        percentage = min(max(float(percentage), 0.0), 100.0)
        if self._last is not None:
            if stage < self._last.stage:
                LOGGER.debug("Dropping progress for %s after %s", stage.label, self._last.stage.label)
                return
            if stage == self._last.stage:
                percentage = max(percentage, self._last.percentage)

        update = ProgressUpdate(stage=stage, percentage=percentage, message=message)
        self._last = update
        if self._callback is None:
            return
        try:
            await maybe_await(self._callback(update))
        except Exception:
            LOGGER.exception("Progress callback raised for stage %s", stage.label)


__all__ = ["IngestStage", "ProgressCallback", "ProgressReporter", "ProgressUpdate"]
