"""Parsing of untrusted model output text into JSON objects.

Parsing strategy:
  Phase 1: Strip a leading ```json / ``` fence and a trailing ``` fence.
  Phase 2: ``json.loads`` the remainder. A one-element array holding an
           object is unwrapped.
  Phase 3: Scan for the last decodable JSON object embedded in prose.
  Phase 4: Return ``None``. Callers treat that as a soft stage failure.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?")
_TRAILING_FENCE = re.compile(r"\n?\s*```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", text)).strip()


def _unwrap(parsed: Any) -> dict | None:
    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, list) and len(parsed) == 1 and isinstance(parsed[0], dict):
        logger.info("Extracting single object from JSON array response")
        return parsed[0]
    return None


def _scan_for_object(text: str) -> dict | None:
    decoder = json.JSONDecoder()
    found: dict | None = None
    index = text.find("{")
    while index != -1:
        try:
            obj, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(obj, dict):
            found = obj
        index = text.find("{", end)
    return found


def parse_json_response(text: str | None) -> dict | None:
    """Extract a JSON object from model output.

    Args:
        text: Raw response text (may be ``None`` for empty responses).

    Returns:
        Parsed dict, or ``None`` when no object can be recovered.
    """
    if not text or not text.strip():
        return None

    body = strip_code_fences(text)
    try:
        result = _unwrap(json.loads(body))
        if result is not None:
            return result
    except json.JSONDecodeError:
        pass

    result = _scan_for_object(body)
    if result is None:
        logger.warning("No JSON object in model output: %r", text[:200])
    return result
