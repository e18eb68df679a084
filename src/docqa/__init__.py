"""Document ingestion and retrieval-grounded question answering."""
from docqa.errors import (
    DocQAError,
    DocumentNotFound,
    ExtractionFailure,
    IngestionError,
    ModelNotReady,
    UnsupportedSource,
)

__version__ = "0.1.0"

__all__ = [
    "DocQAError",
    "DocumentNotFound",
    "ExtractionFailure",
    "IngestionError",
    "ModelNotReady",
    "UnsupportedSource",
    "__version__",
]
