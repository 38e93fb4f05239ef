"""Font ingestion, family grouping and AI classification pipeline."""

__version__ = "0.1.0"

from fontingest.models import AnalysisState, FontMetadata, Ingest, UploadState

__all__ = [
    "AnalysisState",
    "FontMetadata",
    "Ingest",
    "UploadState",
    "__version__",
]
