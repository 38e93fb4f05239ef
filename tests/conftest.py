"""Shared pytest fixtures for fontingest tests.

Provides built-in-memory test fonts (fontTools FontBuilder), a temporary
document store, object store, configuration provider with zero backoff,
and a scripted fake generative model. No test touches the network.
"""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen

from fontingest.analysis.client import ModelRequest, ModelResponse, ModelUsage
from fontingest.config import ConfigProvider
from fontingest.models import FontMetadata
from fontingest.storage import LocalObjectStore
from fontingest.store import DocumentStore, FamilyRepository, IngestRepository


# ======================================================================
# Fonts
# ======================================================================


def _box_glyph():
    pen = TTGlyphPen(None)
    pen.moveTo((50, 0))
    pen.lineTo((50, 700))
    pen.lineTo((450, 700))
    pen.lineTo((450, 0))
    pen.closePath()
    return pen.glyph()


def build_font(
    family: str = "Test Sans",
    style: str = "Regular",
    weight: int = 400,
    x_height: int = 500,
    cap_height: int = 700,
    family_class: int = 8 << 8,
    version: str = "Version 1.000",
) -> bytes:
    """Build a minimal valid TrueType font in memory."""
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "A", "x"])
    fb.setupCharacterMap({ord("A"): "A", ord("x"): "x"})
    fb.setupGlyf({".notdef": TTGlyphPen(None).glyph(), "A": _box_glyph(), "x": _box_glyph()})
    fb.setupHorizontalMetrics({".notdef": (500, 0), "A": (500, 50), "x": (500, 50)})
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    ps_name = f"{family.replace(' ', '')}-{style.replace(' ', '')}"
    fb.setupNameTable(
        {
            "familyName": family,
            "styleName": style,
            "psName": ps_name,
            "version": version,
            "manufacturer": "Test Foundry",
        }
    )
    fb.setupOS2(
        usWeightClass=weight,
        sxHeight=x_height,
        sCapHeight=cap_height,
        sFamilyClass=family_class,
        sTypoAscender=800,
        usWinAscent=800,
        usWinDescent=200,
    )
    fb.setupPost()
    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


@pytest.fixture
def font_bytes() -> bytes:
    return build_font()


@pytest.fixture
def make_font():
    return build_font


@pytest.fixture
def write_font(tmp_path: Path):
    """Factory writing a built font to ``tmp_path`` and returning its path."""

    def _write(name: str, **kwargs) -> Path:
        path = tmp_path / name
        path.write_bytes(build_font(**kwargs))
        return path

    return _write


@pytest.fixture
def serif_meta() -> FontMetadata:
    return FontMetadata(
        family_name="Times New Roman",
        subfamily_name="Regular",
        postscript_name="TimesNewRomanPSMT",
        foundry="Monotype",
        weight_class=400,
        italic_angle=0.0,
        units_per_em=2048,
        x_height=916,
        cap_height=1356,
        family_class=1,
        glyph_count=3000,
        features=["liga", "kern", "LIGA"],
    )


# ======================================================================
# Model
# ======================================================================


def visual_json(primary: str = "serif", substyle: str | None = "transitional") -> str:
    data = {
        "style_primary": {
            "value": primary,
            "confidence": 0.9,
            "evidence_keys": ["serif_detected=true", "contrast_index"],
        },
        "moods": [{"value": "classic", "confidence": 0.8, "evidence_keys": ["contrast_index"]}],
        "use_cases": [
            {"value": "editorial", "confidence": 0.7, "evidence_keys": ["x_height_ratio"]}
        ],
        "negative_tags": [],
    }
    if substyle:
        data["substyle"] = {"value": substyle, "confidence": 0.6, "evidence_keys": []}
    return json.dumps(data)


class FakeModel:
    """Scripted generative model.

    ``script`` maps a stage name to a queue of response texts or
    exceptions, consumed in order. Every request is recorded.
    """

    def __init__(self, script: dict[str, list] | None = None) -> None:
        self.script = {stage: list(items) for stage, items in (script or {}).items()}
        self.requests: list[ModelRequest] = []

    def calls(self, stage: str) -> list[ModelRequest]:
        return [r for r in self.requests if r.stage == stage]

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        queue = self.script.get(request.stage)
        if not queue:
            raise AssertionError(f"unexpected model call for stage {request.stage}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return ModelResponse(text=item, model=request.model, usage=ModelUsage(10, 20, 30))


@pytest.fixture
def fake_model():
    return FakeModel


@pytest.fixture
def make_visual_json():
    return visual_json


@pytest.fixture
def config_values() -> dict:
    return {
        "ai_retry_base_ms": 0,
        "ai_retry_max_ms": 0,
        "ai_retry_max_attempts": 3,
    }


@pytest.fixture
def config(config_values) -> ConfigProvider:
    return ConfigProvider(config_values)


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def no_sleep():
    return _no_sleep


# ======================================================================
# Stores
# ======================================================================


@pytest.fixture
async def doc_store(tmp_path: Path):
    async with DocumentStore(str(tmp_path / "fonts.db")) as store:
        yield store


@pytest.fixture
def ingests(doc_store) -> IngestRepository:
    return IngestRepository(doc_store)


@pytest.fixture
def families(doc_store) -> FamilyRepository:
    return FamilyRepository(doc_store)


@pytest.fixture
def objects(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")
