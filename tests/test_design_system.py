"""Tests for design-data helpers (colour conversion, extraction, layout plans)."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
import design_system
from conftest import SAMPLE_DOCUMENT as DOCUMENT
from design_system import (
    analyze_design,
    extract_colors,
    extract_components,
    extract_spacing,
    extract_structure,
    extract_typography,
    generate_layout_plan,
    hex_to_rgb,
    read_design_system,
    rgb_to_hex,
)


class TestColours:
    def test_hex_to_rgb(self):
        assert hex_to_rgb("#FF0000") == {"r": 1.0, "g": 0.0, "b": 0.0}
        assert hex_to_rgb("00ff00") == {"r": 0.0, "g": 1.0, "b": 0.0}

    @pytest.mark.parametrize("bad", ["", "#FFF", "not-a-colour", None])
    def test_hex_to_rgb_invalid_is_black(self, bad):
        assert hex_to_rgb(bad) == {"r": 0, "g": 0, "b": 0}

    def test_rgb_to_hex(self):
        assert rgb_to_hex(1, 0.5, 0) == "#FF8000"

    def test_hex_round_trip(self):
        rgb = hex_to_rgb("#0066FF")
        assert rgb_to_hex(rgb["r"], rgb["g"], rgb["b"]) == "#0066FF"


class TestExtraction:
    def test_structure_respects_depth(self):
        structure = extract_structure(DOCUMENT, max_depth=1)
        page = structure["children"][0]
        assert page["name"] == "Page 1"
        assert "children" not in page

    def test_structure_sizes_containers(self):
        structure = extract_structure(DOCUMENT, max_depth=3)
        frame = structure["children"][0]["children"][0]
        assert frame["size"] == {"width": 375, "height": 812}
        assert [c["name"] for c in frame["children"]] == ["Title", "Body"]

    def test_colors_deduplicated_and_visible_only(self):
        colors = extract_colors(DOCUMENT)
        assert {c["hex"] for c in colors} == {"#FFFFFF", "#000000"}

    def test_typography_deduplicated(self):
        assert extract_typography(DOCUMENT) == [
            {"family": "Inter", "size": 24, "weight": 700, "lineHeight": 32}
        ]

    def test_components(self):
        components = extract_components(DOCUMENT)
        assert [(c["name"], c["type"]) for c in components] == [
            ("Button", "COMPONENT"), ("Inputs", "COMPONENT_SET")]
        assert components[0]["description"] == "Primary CTA"
        assert components[1]["description"] == ""

    def test_spacing_only_from_auto_layout_frames(self):
        assert extract_spacing(DOCUMENT) == [16, 24]

    def test_read_design_system_sections(self):
        assert set(read_design_system(DOCUMENT)) == {"colors", "typography", "components", "spacing"}


class TestLayoutPlan:
    def test_device_and_style(self):
        plan = generate_layout_plan("Login with email", "corporate", "tablet")
        assert plan["device"] == {"width": 768, "height": 1024}
        assert plan["style"]["primaryColor"] == "#003D82"
        assert plan["requirements"] == "Login with email"

    def test_unknown_style_falls_back_to_modern(self):
        plan = generate_layout_plan("x", "playful", "mobile")
        assert plan["style"] == design_system.STYLE_PRESETS["modern"]


class TestAnalysis:
    def test_clean_design_scores_100(self):
        result = analyze_design(read_design_system(DOCUMENT))
        assert result == {"focus": "all", "suggestions": [], "score": 100}

    def test_too_many_colours_and_spacings(self):
        summary = {"colors": [{}] * 12, "spacing": list(range(10))}
        result = analyze_design(summary, "all")
        assert [s["category"] for s in result["suggestions"]] == ["colors", "spacing"]
        assert result["score"] == 70

    def test_focus_limits_checks(self):
        summary = {"colors": [{}] * 12, "spacing": list(range(10))}
        result = analyze_design(summary, "spacing")
        assert [s["category"] for s in result["suggestions"]] == ["spacing"]
