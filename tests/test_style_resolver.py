"""
Tests for the Style Resolver

Preset lookup, custom palette derivation and the colour helpers.
"""

import pytest

from bookpress.style_resolver import (
    PALETTE_ROLES,
    PRESET_NAMES,
    derive_palette,
    luminance,
    normalize_hex,
    render_color_block,
    resolve_style,
    rotate_hue,
    shade,
    tint,
)


class TestColourMath:
    """Tests for the pure colour helpers."""

    def test_normalize_hex(self):
        """Test hex values are upper-cased and prefixed."""
        assert normalize_hex("7c3aed") == "#7C3AED"
        assert normalize_hex(" #0f766e ") == "#0F766E"

    def test_normalize_hex_rejects_short_values(self):
        """Test three-digit and malformed values are rejected."""
        with pytest.raises(ValueError):
            normalize_hex("#FFF")
        with pytest.raises(ValueError):
            normalize_hex("not-a-colour")

    def test_tint_and_shade_limits(self):
        """Test tint moves toward white and shade toward black."""
        assert tint("#000000", 1.0) == "#FFFFFF"
        assert tint("#336699", 0.0) == "#336699"
        assert shade("#FFFFFF", 1.0) == "#000000"
        assert shade("#808080", 0.5) == "#404040"

    def test_rotate_hue(self):
        """Test hue rotation of pure red."""
        assert rotate_hue("#FF0000", 120) == "#00FF00"
        assert rotate_hue("#FF0000", 360) == "#FF0000"

    def test_rotate_hue_grey_unchanged(self):
        """Test achromatic colours survive rotation."""
        assert rotate_hue("#808080", 150) == "#808080"

    def test_luminance_extremes(self):
        """Test luminance of black and white."""
        assert luminance("#000000") == pytest.approx(0.0)
        assert luminance("#FFFFFF") == pytest.approx(1.0)


class TestResolveStyle:
    """Tests for preset and custom colour resolution."""

    def test_all_presets_have_full_palette(self):
        """Test every preset defines every palette role."""
        for name in PRESET_NAMES:
            style = resolve_style(name)
            assert [role for role, _ in style.palette] == list(PALETTE_ROLES)
            assert not style.custom

    def test_default_is_modern(self):
        """Test no preset resolves to modern."""
        assert resolve_style().preset == "modern"
        assert resolve_style(None).preset == "modern"

    def test_unknown_preset_falls_back(self):
        """Test unknown names fall back to modern."""
        style = resolve_style("baroque")
        assert style.preset == "modern"
        assert style.color("accent") == resolve_style("modern").color("accent")

    def test_preset_name_case_insensitive(self):
        """Test preset lookup ignores case."""
        assert resolve_style("Academic").preset == "academic"

    def test_custom_primary_drives_palette(self):
        """Test a single custom colour becomes the chapter and accent colour."""
        style = resolve_style("business", ["#0f766e"])
        assert style.custom
        assert style.preset == "business"
        assert style.color("chaptercolor") == "#0F766E"
        assert style.color("accent") == "#0F766E"
        assert style.color("keyframe") == "#0F766E"

    def test_custom_colours_capped_at_three(self):
        """Test extra colours beyond the third are ignored."""
        a = resolve_style(None, ["#112233", "#445566", "#778899"])
        b = resolve_style(None, ["#112233", "#445566", "#778899", "#AABBCC"])
        assert a.palette == b.palette

    def test_secondary_defaults_to_rotation(self):
        """Test the secondary colour is the primary rotated by 150 degrees."""
        palette = dict(derive_palette(["#FF0000"]))
        assert palette["exframe"] == rotate_hue("#FF0000", 150)

    def test_title_text_contrast(self):
        """Test dark primaries get light title text and vice versa."""
        dark = dict(derive_palette(["#1A1A1A"]))
        light = dict(derive_palette(["#F5F5F5"]))
        assert dark["titletextcolor"] == "#FFFFFF"
        assert light["titletextcolor"] == "#1F2937"

    def test_derive_palette_requires_a_colour(self):
        """Test an empty colour list is rejected."""
        with pytest.raises(ValueError):
            derive_palette([])

    def test_unknown_role_raises(self):
        """Test asking for a role outside the palette."""
        with pytest.raises(KeyError):
            resolve_style().color("nope")


class TestColorBlock:
    """Tests for the \\definecolor block."""

    def test_one_line_per_role(self):
        """Test every role is defined exactly once, without the hash."""
        block = render_color_block(resolve_style("minimal"))
        for role in PALETTE_ROLES:
            assert block.count(f"\\definecolor{{{role}}}{{HTML}}") == 1
        assert "#" not in block.split("\n", 1)[1]

    def test_custom_header(self):
        """Test the header names a custom palette."""
        block = render_color_block(resolve_style(None, ["#123456"]))
        assert block.startswith("% ── Custom color palette ──")
