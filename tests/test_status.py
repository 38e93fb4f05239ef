"""Tests for the combined two-lane status and terminal detection."""

from __future__ import annotations

import itertools

import pytest

from fontingest.ingest.status import (
    CombinedStatus,
    StatusPriority,
    combined_status,
    is_terminal,
    lanes_terminal,
    legacy_status,
)
from fontingest.models import AnalysisState, Ingest, IngestStatus, UploadState

ALL_PAIRS = list(itertools.product(UploadState, AnalysisState))


class TestCombinedStatus:
    """Precedence of the combined display status."""

    @pytest.mark.parametrize("upload,analysis", ALL_PAIRS)
    def test_total_over_every_pair(self, upload, analysis):
        result = combined_status(upload, analysis)
        assert isinstance(result, CombinedStatus)
        assert result.text
        assert result.priority in StatusPriority

    @pytest.mark.parametrize("analysis", list(AnalysisState))
    def test_upload_failure_ignores_analysis(self, analysis):
        assert combined_status(UploadState.FAILED, analysis).text == "Upload failed"
        assert combined_status(UploadState.CANCELED, analysis).text == "Canceled"
        assert combined_status(UploadState.FAILED, analysis).priority is StatusPriority.UPLOAD

    def test_analysis_problem_after_upload(self):
        status = combined_status(UploadState.UPLOADED, AnalysisState.ERROR)
        assert status.text == "Error (Upload OK, Analysis: Error)"
        assert status.priority is StatusPriority.ANALYSIS
        status = combined_status(UploadState.VERIFYING, AnalysisState.QUARANTINED)
        assert status.text.startswith("Quarantined")

    def test_complete(self):
        status = combined_status(UploadState.UPLOADED, AnalysisState.COMPLETE)
        assert status == CombinedStatus("Complete", StatusPriority.COMPLETE)

    def test_ready_while_analysis_runs(self):
        status = combined_status(UploadState.UPLOADED, AnalysisState.NOT_STARTED)
        assert status.text == "Ready (Analysis: Not Started)"
        assert combined_status("uploaded", "enriching").text == "Ready (Analysis: Enriching)"

    def test_processing_omits_unstarted_analysis(self):
        assert combined_status(UploadState.UPLOADING, AnalysisState.NOT_STARTED).text == (
            "Processing (Upload: Uploading)"
        )

    def test_processing_includes_started_analysis(self):
        assert combined_status(UploadState.PAUSED, AnalysisState.QUEUED).text == (
            "Processing (Upload: Paused, Analysis: Queued)"
        )

    def test_raw_values_accepted(self):
        assert combined_status("failed", "complete").text == "Upload failed"


class TestTerminal:
    def test_failed_upload_with_unstarted_analysis_is_terminal(self):
        assert lanes_terminal(UploadState.CANCELED, AnalysisState.NOT_STARTED)

    def test_both_lanes_terminal(self):
        assert lanes_terminal(UploadState.UPLOADED, AnalysisState.COMPLETE)
        assert lanes_terminal(UploadState.VERIFYING, AnalysisState.QUARANTINED)

    def test_in_flight_is_not_terminal(self):
        assert not lanes_terminal(UploadState.UPLOADED, AnalysisState.ANALYZING)
        assert not lanes_terminal(UploadState.UPLOADING, AnalysisState.NOT_STARTED)

    def test_legacy_status_terminal(self):
        ingest = Ingest(
            id="i1",
            owner_id="o",
            original_name="a.ttf",
            upload_state=UploadState.UPLOADING,
            status=IngestStatus.COMPLETED,
        )
        assert is_terminal(ingest)

    def test_two_lane_terminal(self):
        ingest = Ingest(
            id="i1",
            owner_id="o",
            original_name="a.ttf",
            upload_state=UploadState.UPLOADED,
            analysis_state=AnalysisState.ERROR,
            status=IngestStatus.PROCESSING,
        )
        assert is_terminal(ingest)


class TestLegacyStatus:
    @pytest.mark.parametrize(
        "upload,analysis,expected",
        [
            (UploadState.FAILED, AnalysisState.NOT_STARTED, IngestStatus.FAILED),
            (UploadState.UPLOADED, AnalysisState.COMPLETE, IngestStatus.COMPLETED),
            (UploadState.UPLOADED, AnalysisState.ANALYZING, IngestStatus.PROCESSING_FILE),
            (UploadState.UPLOADED, AnalysisState.ENRICHING, IngestStatus.PROCESSING_DESCRIPTION),
            (UploadState.UPLOADED, AnalysisState.QUARANTINED, IngestStatus.QUARANTINED),
            (UploadState.UPLOADING, AnalysisState.NOT_STARTED, IngestStatus.UPLOADED),
        ],
    )
    def test_projection(self, upload, analysis, expected):
        assert legacy_status(upload, analysis) is expected
