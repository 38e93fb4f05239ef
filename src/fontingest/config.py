"""Configuration provider and API key lookup.

Tunables (model names, sampling parameters, thresholds, feature flags,
concurrency and retry limits) come from a key -> value template that is
read-only to this package. The template is a JSON file cached for
``ttl_seconds``; when a refresh fails the stale cache keeps serving.
Missing or malformed keys never crash: a ``ConfigMissing`` warning is
logged once per key and the hardcoded default is returned.

A single :class:`ConfigProvider` instance is passed into the pipeline and
orchestrator; nothing in the package reads configuration from globals.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import keyring

from fontingest.exceptions import ConfigMissing

logger = logging.getLogger(__name__)

SERVICE_NAME = "fontingest-gemini"
KEY_NAME = "api_key"

DEFAULT_MODEL = "gemini-2.5-flash"

TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off"})

DEFAULTS: dict[str, Any] = {
    "is_ai_enabled": True,
    "visual_analysis_enabled": True,
    "enriched_analysis_enabled": True,
    "web_enrichment_enabled": False,
    "is_vertex_enabled": False,
    "ai_confidence_band_thresholds": "0.2,0.6,0.85",
    "optical_range_pt_thresholds": "9,18,36",
    "visual_analysis_model_name": DEFAULT_MODEL,
    "enriched_analysis_model_name": DEFAULT_MODEL,
    "enriched_analysis_fallback_model_name": DEFAULT_MODEL,
    "summary_model_name": DEFAULT_MODEL,
    "ai_max_output_tokens": 1536,
    "ai_temperature": 0.4,
    "ai_top_p": 0.9,
    "ai_top_k": 40,
    "ai_max_concurrent_ops": 4,
    "ai_retry_max_attempts": 3,
    "ai_retry_base_ms": 250,
    "ai_retry_max_ms": 4000,
    "unprocessed_fonts_path": "unprocessed_fonts",
    "processed_fonts_path": "processed_fonts",
    "failed_processing_path": "failed_processing",
}


def get_api_key() -> str:
    """Get Gemini API key: system keyring first, then GEMINI_API_KEY env var.

    Returns:
        API key string.

    Raises:
        RuntimeError: If no key found anywhere, with actionable instructions.
    """
    api_key = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if api_key:
        return api_key

    api_key = os.environ.get("GEMINI_API_KEY")
    if api_key:
        return api_key

    raise RuntimeError(
        "Gemini API key not found.\n"
        "Set it with: fontingest config set-api-key YOUR_KEY\n"
        "Or: export GEMINI_API_KEY=your-key"
    )


@dataclass(frozen=True)
class GenerationSettings:
    """Sampling parameters shared by every model call."""

    max_output_tokens: int
    temperature: float
    top_p: float
    top_k: int


@dataclass(frozen=True)
class RetrySettings:
    """Bounded exponential backoff parameters for model calls."""

    max_attempts: int
    base_ms: int
    max_ms: int


class ConfigProvider:
    """Typed, cached, read-only view over the configuration template.

    Usage::

        config = ConfigProvider(Path("config/remote_config.json"))
        if config.get_bool("web_enrichment_enabled"):
            ...

    Args:
        source: JSON file path, an in-memory mapping, or ``None`` for
            defaults only.
        ttl_seconds: Cache lifetime for file-backed sources.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        source: Path | str | Mapping[str, Any] | None = None,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._path: Path | None = None
        self._static: dict[str, Any] = {}
        if isinstance(source, (str, Path)):
            self._path = Path(source)
        elif source is not None:
            self._static = dict(source)
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, Any] | None = None
        self._loaded_at = 0.0
        self._reported: set[str] = set()

    # ------------------------------------------------------------------
    # Template loading
    # ------------------------------------------------------------------

    def _values(self) -> dict[str, Any]:
        if self._path is None:
            return self._static
        now = self._clock()
        if self._cache is not None and now - self._loaded_at < self._ttl:
            return self._cache
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("config template must be a JSON object")
            # Accept both flat maps and {"parameters": {key: {"value": ...}}}.
            if "parameters" in data and isinstance(data["parameters"], dict):
                data = {
                    k: (v.get("value") if isinstance(v, dict) else v)
                    for k, v in data["parameters"].items()
                }
            self._cache = data
            self._loaded_at = now
        except (OSError, ValueError) as exc:
            if self._cache is None:
                logger.warning("Config template %s unreadable (%s); using defaults", self._path, exc)
                self._cache = {}
            else:
                logger.warning("Config refresh failed (%s); keeping stale values", exc)
            self._loaded_at = now
        return self._cache

    def refresh(self) -> None:
        """Drop the cache so the next lookup re-reads the template."""
        self._cache = None
        self._loaded_at = 0.0

    def _missing(self, key: str, default: Any) -> Any:
        if key not in self._reported:
            self._reported.add(key)
            logger.warning("%s", ConfigMissing(key, default))
        return default

    def _raw(self, key: str) -> Any:
        value = self._values().get(key)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @staticmethod
    def _default_for(key: str, default: Any) -> Any:
        return DEFAULTS.get(key) if default is None else default

    # ------------------------------------------------------------------
    # Typed getters
    # ------------------------------------------------------------------

    def get_str(self, key: str, default: str | None = None) -> str:
        fallback = self._default_for(key, default)
        value = self._raw(key)
        if value is None:
            return self._missing(key, fallback)
        return str(value).strip()

    def get_bool(self, key: str, default: bool | None = None) -> bool:
        fallback = self._default_for(key, default)
        value = self._raw(key)
        if isinstance(value, bool):
            return value
        if value is None:
            return bool(self._missing(key, fallback))
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        return bool(self._missing(key, fallback))

    def get_int(self, key: str, default: int | None = None) -> int:
        fallback = self._default_for(key, default)
        value = self._raw(key)
        if value is None or isinstance(value, bool):
            return int(self._missing(key, fallback))
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return int(self._missing(key, fallback))

    def get_float(self, key: str, default: float | None = None) -> float:
        fallback = self._default_for(key, default)
        value = self._raw(key)
        if value is None or isinstance(value, bool):
            return float(self._missing(key, fallback))
        try:
            return float(value)
        except (TypeError, ValueError):
            return float(self._missing(key, fallback))

    def get_float_list(self, key: str, default: str | None = None) -> list[float]:
        """Parse a comma-separated list such as ``"0.2,0.6,0.85"``."""
        fallback = str(self._default_for(key, default))
        value = self._raw(key)
        text = self._missing(key, fallback) if value is None else str(value)
        try:
            return [float(part) for part in text.split(",") if part.strip()]
        except ValueError:
            self._missing(key, fallback)
            return [float(part) for part in fallback.split(",") if part.strip()]

    # ------------------------------------------------------------------
    # Grouped views
    # ------------------------------------------------------------------

    def model_for(self, stage: str) -> str:
        """Model name for ``visual``, ``enriched``, ``enriched_fallback`` or ``summary``."""
        key = {
            "visual": "visual_analysis_model_name",
            "enriched": "enriched_analysis_model_name",
            "enriched_fallback": "enriched_analysis_fallback_model_name",
            "summary": "summary_model_name",
        }[stage]
        return self.get_str(key)

    def generation(self) -> GenerationSettings:
        return GenerationSettings(
            max_output_tokens=self.get_int("ai_max_output_tokens"),
            temperature=self.get_float("ai_temperature"),
            top_p=self.get_float("ai_top_p"),
            top_k=self.get_int("ai_top_k"),
        )

    def retry(self) -> RetrySettings:
        return RetrySettings(
            max_attempts=max(1, self.get_int("ai_retry_max_attempts")),
            base_ms=max(0, self.get_int("ai_retry_base_ms")),
            max_ms=max(0, self.get_int("ai_retry_max_ms")),
        )

    def confidence_band_thresholds(self) -> tuple[float, float, float]:
        values = self.get_float_list("ai_confidence_band_thresholds")
        if len(values) != 3 or values != sorted(values):
            self._missing("ai_confidence_band_thresholds", DEFAULTS["ai_confidence_band_thresholds"])
            return (0.2, 0.6, 0.85)
        return (values[0], values[1], values[2])

    def optical_thresholds(self) -> tuple[float, float, float]:
        values = self.get_float_list("optical_range_pt_thresholds")
        if len(values) != 3 or values != sorted(values):
            self._missing("optical_range_pt_thresholds", DEFAULTS["optical_range_pt_thresholds"])
            return (9.0, 18.0, 36.0)
        return (values[0], values[1], values[2])
