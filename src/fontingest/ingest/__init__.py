"""Two-lane (upload x analysis) ingest lifecycle."""

from fontingest.ingest.fsm import (
    AnalysisLifecycleSM,
    UploadLifecycleSM,
    create_analysis_fsm,
    create_upload_fsm,
)
from fontingest.ingest.status import CombinedStatus, combined_status, is_terminal

__all__ = [
    "AnalysisLifecycleSM",
    "CombinedStatus",
    "UploadLifecycleSM",
    "combined_status",
    "create_analysis_fsm",
    "create_upload_fsm",
    "is_terminal",
]
