"""Tests for parsing untrusted model output."""

from __future__ import annotations

import pytest

from fontingest.analysis.response import parse_json_response, strip_code_fences


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences("```\nhello\n```") == "hello"

    def test_no_fence(self):
        assert strip_code_fences("  plain  ") == "plain"


class TestParseJsonResponse:
    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_object(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_single_element_array_unwrapped(self):
        assert parse_json_response('[{"a": 1}]') == {"a": 1}

    def test_embedded_in_prose_takes_last_object(self):
        text = 'Sure! First {"draft": true} then the answer: {"a": 2}. Hope that helps.'
        assert parse_json_response(text) == {"a": 2}

    @pytest.mark.parametrize("text", [None, "", "   ", "no json here", "[1, 2]", "{broken"])
    def test_unrecoverable_is_none(self, text):
        assert parse_json_response(text) is None
