"""Combined display status and terminal detection for two-lane ingests.

:func:`combined_status` is total over every (upload, analysis) pair. The
branches are checked in a fixed order and the last one is unconditional,
so no pair can fall through.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fontingest.models import (
    ANALYSIS_TERMINAL,
    LEGACY_TERMINAL,
    UPLOAD_COMPLETED,
    UPLOAD_PROBLEM,
    AnalysisState,
    Ingest,
    IngestStatus,
    UploadState,
)


class StatusPriority(str, Enum):
    """Which lane the combined status is about."""

    UPLOAD = "upload"
    ANALYSIS = "analysis"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CombinedStatus:
    text: str
    priority: StatusPriority


def _label(state: str) -> str:
    return state.replace("_", " ").title()


def combined_status(
    upload: UploadState | str, analysis: AnalysisState | str
) -> CombinedStatus:
    """Derive a single display status from both lanes.

    Precedence, highest first:
      1. Upload failed or canceled -> the upload problem; analysis ignored.
      2. Upload stored, analysis error or quarantined -> the analysis problem.
      3. Upload stored, analysis complete -> "Complete".
      4. Upload stored, analysis anywhere else -> "Ready (Analysis: ...)".
      5. Upload in progress -> "Processing (Upload: ..., Analysis: ...)",
         with the analysis part only once analysis has started.

    Args:
        upload: Upload lane state (enum or raw value).
        analysis: Analysis lane state (enum or raw value).

    Returns:
        CombinedStatus with display text and priority tag.
    """
    upload = UploadState(upload)
    analysis = AnalysisState(analysis)

    if upload is UploadState.FAILED:
        return CombinedStatus("Upload failed", StatusPriority.UPLOAD)
    if upload is UploadState.CANCELED:
        return CombinedStatus("Canceled", StatusPriority.UPLOAD)

    if upload in UPLOAD_COMPLETED:
        if analysis is AnalysisState.ERROR:
            return CombinedStatus("Error (Upload OK, Analysis: Error)", StatusPriority.ANALYSIS)
        if analysis is AnalysisState.QUARANTINED:
            return CombinedStatus(
                "Quarantined (Upload OK, Analysis: Quarantined)", StatusPriority.ANALYSIS
            )
        if analysis is AnalysisState.COMPLETE:
            return CombinedStatus("Complete", StatusPriority.COMPLETE)
        return CombinedStatus(f"Ready (Analysis: {_label(analysis.value)})", StatusPriority.ANALYSIS)

    text = f"Processing (Upload: {_label(upload.value)}"
    if analysis is not AnalysisState.NOT_STARTED:
        text += f", Analysis: {_label(analysis.value)}"
    return CombinedStatus(text + ")", StatusPriority.UPLOAD)


def lanes_terminal(upload: UploadState | str, analysis: AnalysisState | str) -> bool:
    """True when neither lane will move again without user action."""
    upload = UploadState(upload)
    analysis = AnalysisState(analysis)
    if upload in UPLOAD_PROBLEM:
        return True
    return upload in UPLOAD_COMPLETED and analysis in ANALYSIS_TERMINAL


def is_terminal(ingest: Ingest) -> bool:
    """Whether per-ingest resources (live subscriptions) can be released."""
    if ingest.status in LEGACY_TERMINAL:
        return True
    return lanes_terminal(ingest.upload_state, ingest.analysis_state)


def legacy_status(upload: UploadState, analysis: AnalysisState) -> IngestStatus:
    """Project the two lanes onto the legacy single status field."""
    if upload in UPLOAD_PROBLEM:
        return IngestStatus.FAILED
    if analysis is AnalysisState.COMPLETE:
        return IngestStatus.COMPLETED
    if analysis is AnalysisState.ERROR:
        return IngestStatus.FAILED
    if analysis is AnalysisState.QUARANTINED:
        return IngestStatus.QUARANTINED
    if analysis is AnalysisState.ANALYZING:
        return IngestStatus.PROCESSING_FILE
    if analysis is AnalysisState.ENRICHING:
        return IngestStatus.PROCESSING_DESCRIPTION
    if analysis in (AnalysisState.QUEUED, AnalysisState.RETRYING):
        return IngestStatus.PROCESSING
    return IngestStatus.UPLOADED
