"""Three-stage font analysis: visual -> enriched -> summary.

Each stage builds a prompt, sends it through :func:`call_with_retry` for
every :class:`CallVariant` in its fallback list, parses the untrusted
text and validates it. A stage that produces nothing usable returns
``None`` and the pipeline moves on; only a permanent rejection from the
model service escapes, as :class:`AnalysisError`, and only from the
visual and enriched stages.

Stage outcomes:

* visual fails   -> enriched runs without a prior classification
* enriched fails -> visual result is final
* both fail      -> no summary call, ``analysis_incomplete`` error
* summary fails  -> deterministic template description
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from fontingest.analysis.client import GenerativeModel, ModelRequest
from fontingest.analysis.facts import derive_foundational_facts
from fontingest.analysis.prompts import (
    ENRICHED_ANALYSIS_SYSTEM_PROMPT,
    PROMPT_VERSION,
    SUMMARY_MAX_WORDS,
    SUMMARY_SYSTEM_PROMPT,
    VISUAL_ANALYSIS_SYSTEM_PROMPT,
    build_enriched_prompt,
    build_summary_prompt,
    build_visual_prompt,
    schema_instructions,
)
from fontingest.analysis.response import parse_json_response, strip_code_fences
from fontingest.analysis.retry import (
    SUMMARY_VARIANTS,
    VISUAL_VARIANTS,
    CallVariant,
    call_with_retry,
    enriched_variants,
    run_variants,
)
from fontingest.analysis.schemas import EnrichedAnalysis, SummaryOutput, VisualAnalysis
from fontingest.analysis.taxonomy import TAXONOMY_VERSION, UNKNOWN
from fontingest.analysis.validation import (
    apply_sanity_rules,
    calculate_confidence,
    confidence_band,
    validate_analysis,
)
from fontingest.config import ConfigProvider
from fontingest.exceptions import AnalysisError, ValidationError
from fontingest.models import AnalysisState, FontMetadata
from fontingest.visual_metrics import VisualMetrics

logger = logging.getLogger(__name__)

STAGE_VISUAL = "visual"
STAGE_ENRICHED = "enriched"
STAGE_SUMMARY = "summary"

ANALYSIS_INCOMPLETE = "analysis_incomplete"

StageCallback = Callable[[str], Awaitable[None]]


@dataclass
class PipelineResult:
    """Everything one pipeline run produced.

    ``analysis_state`` is ``NOT_STARTED`` when analysis is disabled,
    ``ERROR`` when neither classification stage produced a result and
    ``COMPLETE`` otherwise.
    """

    analysis_state: AnalysisState = AnalysisState.NOT_STARTED
    visual: VisualAnalysis | None = None
    enriched: EnrichedAnalysis | None = None
    description: str | None = None
    description_source: str | None = None
    confidence: float | None = None
    confidence_band: str = "unknown"
    foundational_facts: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stages_run: list[str] = field(default_factory=list)

    @property
    def final(self) -> VisualAnalysis | None:
        """Enriched result when available, else the visual one."""
        return self.enriched or self.visual

    def to_metadata(self) -> dict[str, Any]:
        """Structured family metadata to persist alongside the description."""
        final = self.final
        data: dict[str, Any] = {
            "foundational_facts": self.foundational_facts,
            "confidence": self.confidence,
            "confidence_band": self.confidence_band,
            "prompt_version": PROMPT_VERSION,
            "taxonomy_version": TAXONOMY_VERSION,
        }
        if final is not None:
            data["style_primary"] = final.style_primary.model_dump()
            data["substyle"] = final.substyle.model_dump() if final.substyle else None
            data["moods"] = [m.model_dump() for m in final.moods]
            data["use_cases"] = [u.model_dump() for u in final.use_cases]
            data["negative_tags"] = list(final.negative_tags)
        if self.enriched is not None:
            data["people"] = [p.model_dump() for p in self.enriched.people]
            data["sources"] = [s.model_dump() for s in self.enriched.sources]
            if self.enriched.historical_context is not None:
                data["historical_context"] = self.enriched.historical_context.model_dump()
        return data

    def tags(self) -> list[str]:
        """Flat tag list (moods then use cases) for family search."""
        final = self.final
        if final is None:
            return []
        return [m.value for m in final.moods] + [u.value for u in final.use_cases]


def truncate_words(text: str, max_words: int = SUMMARY_MAX_WORDS) -> str:
    """Collapse whitespace and keep at most *max_words* words."""
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    clipped = " ".join(words[:max_words]).rstrip(",;:")
    return clipped if clipped.endswith((".", "!", "?")) else clipped + "."


def template_description(meta: FontMetadata, analysis: VisualAnalysis) -> str:
    """Deterministic description built only from classification facts."""
    kind = analysis.style_primary.value.replace("_", " ")
    if analysis.substyle and analysis.substyle.value != UNKNOWN:
        kind = f"{analysis.substyle.value.replace('_', ' ')} {kind}"
    sentence = f"{meta.family_name} is a {kind} typeface"
    moods = [m.value.replace("_", " ") for m in analysis.moods[:3]]
    if moods:
        sentence += f" with a {', '.join(moods)} character"
    uses = [u.value.replace("_", " ") for u in analysis.use_cases[:2]]
    if uses:
        sentence += f", well suited to {' and '.join(uses)}"
    return truncate_words(sentence + ".")


class AnalysisPipeline:
    """Runs the analysis stages for one font.

    Usage::

        pipeline = AnalysisPipeline(build_model_client(config), config)
        result = await pipeline.run(meta, compute_visual_metrics(meta))

    Args:
        model: Generative model backend.
        config: Injected configuration provider.
        sleep: Backoff sleep (tests pass a no-op).
    """

    def __init__(
        self,
        model: GenerativeModel,
        config: ConfigProvider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._model = model
        self._config = config
        self._sleep = sleep

    def is_enabled(self) -> bool:
        return self._config.get_bool("is_ai_enabled") and self._config.get_bool(
            "visual_analysis_enabled"
        )

    async def run(
        self,
        meta: FontMetadata,
        metrics: VisualMetrics | None = None,
        on_stage: StageCallback | None = None,
    ) -> PipelineResult:
        """Run every enabled stage and score the final classification.

        Raises:
            AnalysisError: A stage was permanently rejected by the model service.
        """
        result = PipelineResult()
        if not self.is_enabled():
            logger.info("AI analysis disabled; %s left at not_started", meta.family_name)
            result.warnings.append("AI analysis disabled by configuration")
            return result

        result.foundational_facts = derive_foundational_facts(
            meta, self._config.optical_thresholds()
        )

        await self._notify(on_stage, STAGE_VISUAL)
        result.visual = await self._classify(
            STAGE_VISUAL,
            VISUAL_VARIANTS,
            VISUAL_ANALYSIS_SYSTEM_PROMPT,
            build_visual_prompt(meta, metrics),
            VisualAnalysis,
            result,
        )
        if result.visual is None:
            result.warnings.append("Visual analysis failed, proceeding with basic classification")

        if self._config.get_bool("enriched_analysis_enabled"):
            await self._notify(on_stage, STAGE_ENRICHED)
            variants = enriched_variants(self._config.get_bool("web_enrichment_enabled"))
            enriched = await self._classify(
                STAGE_ENRICHED,
                variants,
                ENRICHED_ANALYSIS_SYSTEM_PROMPT,
                build_enriched_prompt(meta, metrics, result.visual),
                EnrichedAnalysis,
                result,
            )
            if isinstance(enriched, EnrichedAnalysis):
                result.enriched = enriched
            else:
                result.warnings.append("Enriched analysis failed, using visual analysis only")

        final = result.final
        if final is None:
            result.errors.append(ANALYSIS_INCOMPLETE)
            result.analysis_state = AnalysisState.ERROR
            logger.warning("No classification for %s; analysis incomplete", meta.family_name)
            return result

        result.warnings.extend(apply_sanity_rules(final, metrics))
        result.confidence = calculate_confidence(final)
        result.confidence_band = confidence_band(
            final.style_primary.confidence, self._config.confidence_band_thresholds()
        )

        await self._notify(on_stage, STAGE_SUMMARY)
        result.description, result.description_source = await self._summarize(meta, final, result)
        result.analysis_state = AnalysisState.COMPLETE
        logger.info(
            "Pipeline completed for %s: %s (confidence %s, band %s)",
            meta.family_name,
            final.style_primary.value,
            result.confidence,
            result.confidence_band,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    async def _notify(on_stage: StageCallback | None, stage: str) -> None:
        if on_stage is not None:
            await on_stage(stage)

    def _request(
        self,
        stage: str,
        variant: CallVariant,
        system_prompt: str,
        prompt: str,
        schema: type[BaseModel],
    ) -> ModelRequest:
        if variant.use_search_tool:
            # No response_schema alongside tools, so the schema goes inline.
            prompt = f"{prompt}\n\n{schema_instructions(schema)}"
        return ModelRequest(
            stage=stage,
            model=self._config.model_for(variant.model_key),
            system_prompt=system_prompt,
            prompt=prompt,
            settings=self._config.generation(),
            response_schema=None if variant.use_search_tool else schema,
            use_search_tool=variant.use_search_tool,
        )

    async def _classify(
        self,
        stage: str,
        variants: tuple[CallVariant, ...],
        system_prompt: str,
        prompt: str,
        schema: type[VisualAnalysis],
        result: PipelineResult,
    ) -> VisualAnalysis | None:
        retry = self._config.retry()

        async def attempt(variant: CallVariant) -> VisualAnalysis:
            request = self._request(stage, variant, system_prompt, prompt, schema)
            response = await call_with_retry(self._model, request, retry, sleep=self._sleep)
            parsed = parse_json_response(response.text)
            if parsed is None:
                raise ValidationError([f"{stage}: model output is not JSON"])
            outcome = validate_analysis(parsed, schema)
            if not outcome.is_valid:
                raise ValidationError(outcome.errors, outcome.warnings)
            for repair in outcome.repaired_fields:
                logger.debug("%s repaired %s", stage, repair)
            result.warnings.extend(outcome.warnings)
            return outcome.result

        result.stages_run.append(stage)
        analysis, notes = await run_variants(stage, variants, attempt)
        result.warnings.extend(notes)
        return analysis

    async def _summarize(
        self, meta: FontMetadata, analysis: VisualAnalysis, result: PipelineResult
    ) -> tuple[str, str]:
        retry = self._config.retry()
        prompt = build_summary_prompt(meta, analysis)

        async def attempt(variant: CallVariant) -> str:
            request = self._request(
                STAGE_SUMMARY, variant, SUMMARY_SYSTEM_PROMPT, prompt, SummaryOutput
            )
            response = await call_with_retry(self._model, request, retry, sleep=self._sleep)
            text = (response.text or "").strip()
            parsed = parse_json_response(text)
            if parsed is not None and isinstance(parsed.get("description"), str):
                text = parsed["description"]
            elif parsed is not None:
                text = ""
            else:
                text = strip_code_fences(text)
            description = truncate_words(text)
            if not description:
                raise ValidationError(["summary: empty description"])
            return description

        result.stages_run.append(STAGE_SUMMARY)
        try:
            description, notes = await run_variants(STAGE_SUMMARY, SUMMARY_VARIANTS, attempt)
        except AnalysisError as exc:
            # A rejected summary falls back to the template like any other failure.
            description, notes = None, [str(exc)]
        result.warnings.extend(notes)
        if description is None:
            result.warnings.append("Description generation failed; using template")
            return template_description(meta, analysis), "template"
        return description, "model"
