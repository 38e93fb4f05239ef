"""Tests for deterministic foundational facts."""

from __future__ import annotations

from fontingest.analysis.facts import (
    axis_role,
    derive_foundational_facts,
    normalize_feature_tags,
    optical_bucket,
)
from fontingest.models import FontMetadata, VariableAxis


class TestFoundationalFacts:
    def test_feature_tags_normalized(self, serif_meta):
        facts = derive_foundational_facts(serif_meta)
        assert facts["feature_tags"] == ["KERN", "LIGA"]
        assert facts["rendering_profile"] == "truetype"
        assert facts["glyph_count"] == 3000

    def test_missing_inputs_omitted(self):
        facts = derive_foundational_facts(FontMetadata(family_name="Bare"))
        assert facts == {"rendering_profile": "truetype"}

    def test_variable_font(self):
        meta = FontMetadata(
            family_name="Var",
            axes=[
                VariableAxis("wght", "Weight", 100, 400, 900),
                VariableAxis("opsz", "Optical size", 8, 14, 72),
                VariableAxis("XTRA", "Counter", 300, 400, 500),
            ],
            color_tables=["COLR", "CPAL"],
        )
        facts = derive_foundational_facts(meta)
        assert facts["rendering_profile"] == "variable"
        assert [a["role"] for a in facts["axes"]] == ["weight", "optical_size", "custom"]
        assert facts["optical_size_bucket"] == "text"
        assert facts["optical_size_range"] == ["caption", "display"]
        assert facts["color_format"] == "colr"

    def test_cff_profile(self):
        meta = FontMetadata(family_name="C", outline_format="cff", is_hinted=True)
        assert derive_foundational_facts(meta)["rendering_profile"] == "cff"


class TestHelpers:
    def test_normalize_feature_tags(self):
        assert normalize_feature_tags(["liga", " LIGA ", "", "ss01"]) == ["LIGA", "SS01"]
        assert normalize_feature_tags(None) == []

    def test_axis_role(self):
        assert axis_role("wdth") == "width"
        assert axis_role("CASL") == "custom"

    def test_optical_bucket_boundaries(self):
        thresholds = (9.0, 18.0, 36.0)
        assert optical_bucket(9, thresholds) == "caption"
        assert optical_bucket(12, thresholds) == "text"
        assert optical_bucket(36, thresholds) == "subhead"
        assert optical_bucket(48, thresholds) == "display"
