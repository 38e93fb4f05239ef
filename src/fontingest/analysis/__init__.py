"""Generative font analysis: visual -> enriched -> summary.

Public API
----------
.. autoclass:: AnalysisPipeline
.. autoclass:: PipelineResult
.. autoclass:: GeminiModelClient
.. autoclass:: CallVariant
"""

from fontingest.analysis.client import (
    GeminiModelClient,
    GenerativeModel,
    ModelRequest,
    ModelResponse,
    build_model_client,
)
from fontingest.analysis.pipeline import AnalysisPipeline, PipelineResult
from fontingest.analysis.retry import CallVariant, call_with_retry, enriched_variants, run_variants

__all__ = [
    "AnalysisPipeline",
    "CallVariant",
    "GeminiModelClient",
    "GenerativeModel",
    "ModelRequest",
    "ModelResponse",
    "PipelineResult",
    "build_model_client",
    "call_with_retry",
    "enriched_variants",
    "run_variants",
]
