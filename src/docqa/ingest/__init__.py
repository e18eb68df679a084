"""Document ingestion: source detection, extraction, chunking and indexing."""
from .coordinator import ExtractionCoordinator, ExtractionOptions, ExtractionState
from .models import (
    Chunk,
    Document,
    DocumentIndex,
    DocumentSource,
    ExtractionMethod,
    ExtractionResult,
    SourceKind,
)
from .pipeline import IngestedDocument, IngestPipeline
from .progress import IngestStage, ProgressReporter, ProgressUpdate

__all__ = [
    "Chunk",
    "Document",
    "DocumentIndex",
    "DocumentSource",
    "ExtractionCoordinator",
    "ExtractionMethod",
    "ExtractionOptions",
    "ExtractionResult",
    "ExtractionState",
    "IngestPipeline",
    "IngestStage",
    "IngestedDocument",
    "ProgressReporter",
    "ProgressUpdate",
    "SourceKind",
]
