"""Tests for the configuration provider and API key lookup."""

from __future__ import annotations

import json
import logging
from unittest.mock import patch

import pytest

from fontingest.config import DEFAULTS, ConfigProvider, get_api_key


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTypedGetters:
    def test_defaults_when_empty(self):
        config = ConfigProvider()
        assert config.get_bool("is_ai_enabled") is True
        assert config.get_int("ai_max_concurrent_ops") == DEFAULTS["ai_max_concurrent_ops"]
        assert config.model_for("summary") == DEFAULTS["summary_model_name"]

    @pytest.mark.parametrize(
        "raw,expected",
        [("true", True), ("YES", True), ("1", True), ("off", False), ("0", False), (False, False)],
    )
    def test_bool_parsing(self, raw, expected):
        assert ConfigProvider({"web_enrichment_enabled": raw}).get_bool(
            "web_enrichment_enabled"
        ) is expected

    def test_malformed_bool_uses_default(self):
        config = ConfigProvider({"is_ai_enabled": "maybe"})
        assert config.get_bool("is_ai_enabled") is True

    def test_numbers_from_strings(self):
        config = ConfigProvider({"ai_top_k": "32", "ai_temperature": "0.25"})
        assert config.get_int("ai_top_k") == 32
        assert config.get_float("ai_temperature") == 0.25

    def test_malformed_number_uses_default(self):
        config = ConfigProvider({"ai_top_k": "many"})
        assert config.get_int("ai_top_k") == DEFAULTS["ai_top_k"]

    def test_blank_string_counts_as_missing(self):
        config = ConfigProvider({"summary_model_name": "  "})
        assert config.get_str("summary_model_name") == DEFAULTS["summary_model_name"]

    def test_missing_key_warns_once(self, caplog):
        config = ConfigProvider({})
        with caplog.at_level(logging.WARNING, logger="fontingest.config"):
            config.get_int("ai_top_k")
            config.get_int("ai_top_k")
        assert sum("ai_top_k" in r.getMessage() for r in caplog.records) == 1


class TestGroupedViews:
    def test_generation_and_retry(self):
        config = ConfigProvider({"ai_retry_max_attempts": 0, "ai_max_output_tokens": 256})
        assert config.retry().max_attempts == 1
        assert config.generation().max_output_tokens == 256

    def test_band_thresholds(self):
        assert ConfigProvider({"ai_confidence_band_thresholds": "0.1, 0.5,0.9"}) \
            .confidence_band_thresholds() == (0.1, 0.5, 0.9)

    @pytest.mark.parametrize("raw", ["0.9,0.5,0.1", "0.1,0.5", "a,b,c"])
    def test_bad_band_thresholds_fall_back(self, raw):
        config = ConfigProvider({"ai_confidence_band_thresholds": raw})
        assert config.confidence_band_thresholds() == (0.2, 0.6, 0.85)

    def test_optical_thresholds(self):
        assert ConfigProvider().optical_thresholds() == (9.0, 18.0, 36.0)


class TestFileTemplate:
    def test_parameters_shape(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"parameters": {"ai_top_k": {"value": "12"}}}))
        assert ConfigProvider(path).get_int("ai_top_k") == 12

    def test_ttl_cache_and_refresh(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ai_top_k": 5}))
        clock = _Clock()
        config = ConfigProvider(path, ttl_seconds=30, clock=clock)
        assert config.get_int("ai_top_k") == 5

        path.write_text(json.dumps({"ai_top_k": 7}))
        clock.now = 10
        assert config.get_int("ai_top_k") == 5
        clock.now = 31
        assert config.get_int("ai_top_k") == 7

    def test_stale_cache_survives_broken_refresh(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ai_top_k": 5}))
        clock = _Clock()
        config = ConfigProvider(path, ttl_seconds=1, clock=clock)
        assert config.get_int("ai_top_k") == 5

        path.write_text("{not json")
        clock.now = 5
        assert config.get_int("ai_top_k") == 5

    def test_unreadable_template_uses_defaults(self, tmp_path):
        config = ConfigProvider(tmp_path / "missing.json")
        assert config.get_int("ai_top_k") == DEFAULTS["ai_top_k"]


class TestApiKey:
    def test_keyring_first(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        with patch("fontingest.config.keyring.get_password", return_value="from-keyring"):
            assert get_api_key() == "from-keyring"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        with patch("fontingest.config.keyring.get_password", return_value=None):
            assert get_api_key() == "from-env"

    def test_missing_raises(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with patch("fontingest.config.keyring.get_password", return_value=None):
            with pytest.raises(RuntimeError, match="set-api-key"):
                get_api_key()
