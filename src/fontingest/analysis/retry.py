"""Per-call retry and per-stage fallback policy for model calls.

Two layers:

* :func:`call_with_retry` retries one request on transient
  :class:`ModelRequestError` with capped, jittered exponential backoff
  (tenacity). Each call builds its own ``AsyncRetrying``, so concurrent
  items never share backoff state.
* :func:`run_variants` walks an ordered list of :class:`CallVariant`s.
  A tool rejection advances to the next variant (same model, no tools);
  a validation failure, exhausted retries or a permanent rejection skip
  ahead to the next variant using a different model. A safety block ends
  the stage with no result.

The variant lists are plain data so the fallback policy can be inspected
and tested without a model.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from fontingest.analysis.client import GenerativeModel, ModelRequest, ModelResponse
from fontingest.config import RetrySettings
from fontingest.exceptions import (
    AnalysisError,
    ModelRejectedError,
    ModelRequestError,
    SafetyBlockedError,
    ToolUseRejectedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CallVariant:
    """One way of attempting a stage.

    Attributes:
        name: Label used in logs and results.
        model_key: Stage key passed to ``ConfigProvider.model_for``.
        use_search_tool: Whether the request carries the web search tool.
    """

    name: str
    model_key: str
    use_search_tool: bool = False


VISUAL_VARIANTS: tuple[CallVariant, ...] = (CallVariant("visual", "visual"),)
SUMMARY_VARIANTS: tuple[CallVariant, ...] = (CallVariant("summary", "summary"),)


def enriched_variants(web_enrichment: bool) -> tuple[CallVariant, ...]:
    """Ordered attempts for the enriched stage."""
    variants = []
    if web_enrichment:
        variants.append(CallVariant("enriched_with_search", "enriched", use_search_tool=True))
    variants.append(CallVariant("enriched", "enriched"))
    variants.append(CallVariant("enriched_fallback", "enriched_fallback"))
    return tuple(variants)


def backoff_delay(attempt: int, settings: RetrySettings, rng: Callable[[], float] = random.random) -> float:
    """Seconds to wait after failed attempt number *attempt* (1-based).

    ``min(max_ms, base_ms * 2**(attempt-1)) * (0.75 + 0.5 * rand)``.
    """
    capped = min(settings.max_ms, settings.base_ms * (2 ** (attempt - 1)))
    return capped * (0.75 + rng() * 0.5) / 1000.0


async def call_with_retry(
    model: GenerativeModel,
    request: ModelRequest,
    settings: RetrySettings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ModelResponse:
    """Send *request*, retrying only transient failures.

    Raises:
        ModelRequestError: After ``settings.max_attempts`` transient failures.
        ModelRejectedError: Immediately, never retried.
    """

    def _wait(retry_state: RetryCallState) -> float:
        return backoff_delay(retry_state.attempt_number, settings)

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Transient model error in %s (attempt %d/%d): %s",
            request.stage, retry_state.attempt_number, settings.max_attempts, exc,
        )

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ModelRequestError),
        stop=stop_after_attempt(settings.max_attempts),
        wait=_wait,
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await model.generate(request)
    raise AssertionError("unreachable")


def _next_model_index(variants: tuple[CallVariant, ...], index: int) -> int:
    current = variants[index].model_key
    for i in range(index + 1, len(variants)):
        if variants[i].model_key != current:
            return i
    return len(variants)


async def run_variants(
    stage: str,
    variants: tuple[CallVariant, ...],
    attempt: Callable[[CallVariant], Awaitable[T]],
) -> tuple[T | None, list[str]]:
    """Try *variants* in order until one yields a result.

    Args:
        stage: Stage name for logs and :class:`AnalysisError`.
        variants: Ordered call variants.
        attempt: Runs one variant; raises the taxonomy errors on failure.

    Returns:
        ``(result, notes)``; result is ``None`` when every variant failed
        softly. *notes* records each fallback taken.

    Raises:
        AnalysisError: When the last failure was a permanent rejection.
    """
    notes: list[str] = []
    rejection: ModelRejectedError | None = None
    index = 0
    while index < len(variants):
        variant = variants[index]
        try:
            result = await attempt(variant)
            if notes:
                logger.info("%s succeeded via %s after fallback", stage, variant.name)
            return result, notes
        except ToolUseRejectedError as exc:
            notes.append(f"{variant.name}: tools rejected, retrying without tools")
            logger.warning("%s: %s", stage, exc)
            rejection = None
            index += 1
        except SafetyBlockedError as exc:
            notes.append(f"{variant.name}: safety block")
            logger.warning("%s blocked by safety filter: %s", stage, exc)
            return None, notes
        except ModelRejectedError as exc:
            notes.append(f"{variant.name}: rejected ({exc})")
            logger.error("%s rejected by model service: %s", stage, exc)
            rejection = exc
            index = _next_model_index(variants, index)
        except (ModelRequestError, ValidationError) as exc:
            notes.append(f"{variant.name}: {type(exc).__name__} ({exc})")
            logger.warning("%s failed on %s: %s", stage, variant.name, exc)
            rejection = None
            index = _next_model_index(variants, index)

    if rejection is not None:
        raise AnalysisError(stage, str(rejection))
    return None, notes
