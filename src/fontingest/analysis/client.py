"""Generative model access for the analysis pipeline.

Defines the small :class:`GenerativeModel` protocol the pipeline depends
on and :class:`GeminiModelClient`, its google-genai implementation.

All SDK errors are mapped at one seam (``_safe_call``):

* 429 and 5xx, timeouts, connection errors -> :class:`ModelRequestError`
  (transient, retried by the caller)
* 400 mentioning tools on a request that carried them ->
  :class:`ToolUseRejectedError`
* any other 4xx -> :class:`ModelRejectedError`
* a response stopped for safety -> :class:`SafetyBlockedError`

Every call logs a usage line for cost tracking. Logging never raises.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

from aiolimiter import AsyncLimiter
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from pydantic import BaseModel

from fontingest.config import ConfigProvider, GenerationSettings, get_api_key
from fontingest.exceptions import (
    ModelRejectedError,
    ModelRequestError,
    SafetyBlockedError,
    ToolUseRejectedError,
)

logger = logging.getLogger(__name__)

_TOOL_HINTS = ("tool", "google_search")


def _mentions_tools(exc: genai_errors.APIError) -> bool:
    text = f"{exc.message or ''} {exc}".lower()
    return any(hint in text for hint in _TOOL_HINTS)


@dataclass
class ModelRequest:
    """One generate call, independent of any SDK."""

    stage: str
    model: str
    system_prompt: str
    prompt: str
    settings: GenerationSettings
    response_schema: type[BaseModel] | None = None
    use_search_tool: bool = False


@dataclass
class ModelUsage:
    prompt_tokens: int = 0
    candidate_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ModelResponse:
    text: str | None
    model: str
    usage: ModelUsage = field(default_factory=ModelUsage)
    finish_reason: str | None = None


class GenerativeModel(Protocol):
    """Anything that can answer a :class:`ModelRequest`."""

    async def generate(self, request: ModelRequest) -> ModelResponse: ...


def log_usage(stage: str, response: ModelResponse) -> None:
    """Log token usage for cost observability; never raises."""
    try:
        u = response.usage
        logger.info(
            "Model usage stage=%s model=%s prompt=%d candidates=%d total=%d",
            stage, response.model, u.prompt_tokens, u.candidate_tokens, u.total_tokens,
        )
    except Exception:  # observability must not break the pipeline
        logger.debug("Could not log usage for stage %s", stage, exc_info=True)


class GeminiModelClient:
    """google-genai backed :class:`GenerativeModel`.

    Usage::

        client = GeminiModelClient(api_key=get_api_key())
        response = await client.generate(request)

    Args:
        api_key: Gemini API key (ignored when *vertex* is True).
        vertex: Use Vertex AI with *project*/*location* instead of an API key.
        max_requests_per_minute: Client-side rate limit across all stages.
        client: Pre-built ``genai.Client`` (tests).
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        vertex: bool = False,
        project: str | None = None,
        location: str | None = None,
        max_requests_per_minute: int = 60,
        client: Any = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif vertex:
            self._client = genai.Client(vertexai=True, project=project, location=location)
        else:
            self._client = genai.Client(api_key=api_key)
        self._limiter = AsyncLimiter(max_requests_per_minute, 60)

    @staticmethod
    def _build_config(request: ModelRequest) -> genai_types.GenerateContentConfig:
        s = request.settings
        kwargs: dict[str, Any] = {
            "system_instruction": request.system_prompt,
            "temperature": s.temperature,
            "top_p": s.top_p,
            "top_k": s.top_k,
            "max_output_tokens": s.max_output_tokens,
        }
        if request.use_search_tool:
            # Controlled generation and search grounding cannot be combined.
            kwargs["tools"] = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
        else:
            kwargs["response_mime_type"] = "application/json"
            if request.response_schema is not None:
                kwargs["response_schema"] = request.response_schema
        return genai_types.GenerateContentConfig(**kwargs)

    async def generate(self, request: ModelRequest) -> ModelResponse:
        """Run one generate_content call with error mapping.

        Raises:
            ModelRequestError: Transient failure.
            ToolUseRejectedError: Tools refused as an invalid argument.
            SafetyBlockedError: Output blocked by safety filters.
            ModelRejectedError: Any other permanent rejection.
        """
        config = self._build_config(request)
        async with self._limiter:
            raw = await self._safe_call(
                request,
                self._client.aio.models.generate_content,
                model=request.model,
                contents=request.prompt,
                config=config,
            )
        response = self._to_response(request, raw)
        log_usage(request.stage, response)
        if response.finish_reason == "SAFETY":
            raise SafetyBlockedError(f"{request.stage}: response blocked by safety filter")
        return response

    @staticmethod
    def _to_response(request: ModelRequest, raw: Any) -> ModelResponse:
        meta = getattr(raw, "usage_metadata", None)
        usage = ModelUsage(
            prompt_tokens=getattr(meta, "prompt_token_count", None) or 0,
            candidate_tokens=getattr(meta, "candidates_token_count", None) or 0,
            total_tokens=getattr(meta, "total_token_count", None) or 0,
        )
        finish = None
        candidates = getattr(raw, "candidates", None) or []
        if candidates:
            reason = getattr(candidates[0], "finish_reason", None)
            finish = getattr(reason, "name", None) or (str(reason) if reason else None)
        feedback = getattr(raw, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            finish = "SAFETY"
        try:
            text = raw.text
        except (AttributeError, ValueError):
            text = None
        return ModelResponse(text=text, model=request.model, usage=usage, finish_reason=finish)

    # ------------------------------------------------------------------
    # Internal: safe API call with error mapping
    # ------------------------------------------------------------------

    async def _safe_call(self, request: ModelRequest, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except genai_errors.APIError as exc:
            code = exc.code or 0
            message = f"{request.stage} [{code}] {exc.message or exc}"
            if code == 429 or code >= 500:
                raise ModelRequestError(message, status_code=code) from exc
            if code == 400 and request.use_search_tool and _mentions_tools(exc):
                raise ToolUseRejectedError(message, status_code=code) from exc
            raise ModelRejectedError(message, status_code=code) from exc
        except (asyncio.TimeoutError, ConnectionError, OSError) as exc:
            raise ModelRequestError(f"{request.stage}: {exc}") from exc


def build_model_client(config: ConfigProvider) -> GeminiModelClient:
    """Construct the production client from configuration and credentials."""
    if config.get_bool("is_vertex_enabled"):
        return GeminiModelClient(
            vertex=True,
            project=os.environ.get("GOOGLE_CLOUD_PROJECT"),
            location=os.environ.get("GOOGLE_CLOUD_LOCATION", "us-central1"),
        )
    return GeminiModelClient(api_key=get_api_key())
