"""
BookPress V1.0 — Style Resolver
===============================
Maps a named visual preset, or 1–3 user accent colours, to an immutable
``StyleConfig``: font directives, chapter/section heading rules and a
20-role semantic palette.

Usage
-----
    from bookpress.style_resolver import resolve_style, render_color_block
    style = resolve_style("academic")
    style = resolve_style("modern", ["#0F766E"])
    preamble_colors = render_color_block(style)
"""

from __future__ import annotations

from dataclasses import dataclass

import regex as re

# ──────────────────────────────────────────────
# PALETTE ROLES
# ──────────────────────────────────────────────
PALETTE_ROLES = (
    "chaptercolor",
    "sectioncolor",
    "accent",
    "rulecolor",
    "headergray",
    "quotegray",
    "captiongray",
    "subtitlegray",
    "linkcolor",
    "titletextcolor",
    "tipbg",
    "tipframe",
    "keybg",
    "keyframe",
    "warnbg",
    "warnframe",
    "exbg",
    "exframe",
    "tableheadbg",
    "tableheadfg",
)

DARK_LUMINANCE_THRESHOLD = 0.4
LIGHT_TITLE_TEXT = "#FFFFFF"
DARK_TITLE_TEXT = "#1F2937"
DEFAULT_PRESET = "modern"

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


@dataclass(frozen=True)
class StyleConfig:
    preset: str
    font_packages: str
    chapter_style: str
    section_style: str
    palette: tuple[tuple[str, str], ...]
    custom: bool = False

    def color(self, role: str) -> str:
        """Return the ``#RRGGBB`` value for a palette role."""
        for name, value in self.palette:
            if name == role:
                return value
        raise KeyError(role)

    def as_dict(self) -> dict[str, str]:
        return dict(self.palette)


# ──────────────────────────────────────────────
# COLOUR MATH (pure)
# ──────────────────────────────────────────────
def normalize_hex(value: str) -> str:
    """Validate a 6-digit hex colour and return it as ``#RRGGBB``."""
    m = _HEX_RE.match(value.strip())
    if not m:
        raise ValueError(f"Not a 6-digit hex colour: {value!r}")
    return "#" + m.group(1).upper()


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    h = normalize_hex(value)[1:]
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def _round_half_up(v: float) -> int:
    return int(v + 0.5) if v >= 0 else -int(-v + 0.5)


def rgb_to_hex(r: float, g: float, b: float) -> str:
    """Clamp to 0..255, round, and format as uppercase ``#RRGGBB``."""

    def clamp(v: float) -> int:
        return max(0, min(255, _round_half_up(v)))

    return "#{:02X}{:02X}{:02X}".format(clamp(r), clamp(g), clamp(b))


def tint(value: str, ratio: float) -> str:
    """Lighten toward white: ``c + (255 - c) * ratio``."""
    r, g, b = hex_to_rgb(value)
    return rgb_to_hex(
        r + (255 - r) * ratio, g + (255 - g) * ratio, b + (255 - b) * ratio
    )


def shade(value: str, ratio: float) -> str:
    """Darken toward black: ``c * (1 - ratio)``."""
    r, g, b = hex_to_rgb(value)
    return rgb_to_hex(r * (1 - ratio), g * (1 - ratio), b * (1 - ratio))


def luminance(value: str) -> float:
    """Relative luminance on the sRGB scale (0 = black, 1 = white)."""

    def channel(c: int) -> float:
        s = c / 255
        return s / 12.92 if s <= 0.03928 else ((s + 0.055) / 1.055) ** 2.4

    r, g, b = (channel(c) for c in hex_to_rgb(value))
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def rgb_to_hsl(r: float, g: float, b: float) -> tuple[float, float, float]:
    """Channels in 0..1 → (h, s, l) in 0..1."""
    mx, mn = max(r, g, b), min(r, g, b)
    l = (mx + mn) / 2
    if mx == mn:
        return 0.0, 0.0, l
    d = mx - mn
    s = d / (2 - mx - mn) if l > 0.5 else d / (mx + mn)
    if mx == r:
        h = ((g - b) / d + (6 if g < b else 0)) / 6
    elif mx == g:
        h = ((b - r) / d + 2) / 6
    else:
        h = ((r - g) / d + 4) / 6
    return h, s, l


def _hue_to_rgb(p: float, q: float, t: float) -> float:
    if t < 0:
        t += 1
    if t > 1:
        t -= 1
    if t < 1 / 6:
        return p + (q - p) * 6 * t
    if t < 1 / 2:
        return q
    if t < 2 / 3:
        return p + (q - p) * (2 / 3 - t) * 6
    return p


def hsl_to_rgb(h: float, s: float, l: float) -> tuple[float, float, float]:
    """(h, s, l) in 0..1 → channels in 0..1."""
    if s == 0:
        return l, l, l
    q = l * (1 + s) if l < 0.5 else l + s - l * s
    p = 2 * l - q
    return (
        _hue_to_rgb(p, q, h + 1 / 3),
        _hue_to_rgb(p, q, h),
        _hue_to_rgb(p, q, h - 1 / 3),
    )


def rotate_hue(value: str, degrees: float) -> str:
    """Rotate the hue of a colour by ``degrees`` (wraps modulo 360)."""
    r, g, b = (c / 255 for c in hex_to_rgb(value))
    h, s, l = rgb_to_hsl(r, g, b)
    h = ((h * 360 + degrees) % 360) / 360
    if s == 0:
        v = _round_half_up(l * 255)
        return rgb_to_hex(v, v, v)
    nr, ng, nb = hsl_to_rgb(h, s, l)
    return rgb_to_hex(nr * 255, ng * 255, nb * 255)


# ──────────────────────────────────────────────
# PRESETS
# ──────────────────────────────────────────────
def _palette(hexes: str) -> tuple[tuple[str, str], ...]:
    values = hexes.split()
    assert len(values) == len(PALETTE_ROLES)
    return tuple(zip(PALETTE_ROLES, ("#" + v for v in values)))


_PRESETS: dict[str, dict[str, object]] = {
    "modern": {
        "font_packages": r"\usepackage{palatino}",
        "chapter_style": (
            "\\titleformat{\\chapter}[display]\n"
            "  {\\normalfont\\huge\\bfseries}{\\textcolor{chaptercolor}{\\chaptertitlename\\ \\thechapter}}{15pt}{\\Huge\\color{chaptercolor}}\n"
            "\\titlespacing*{\\chapter}{0pt}{-30pt}{30pt}"
        ),
        "section_style": (
            "\\titleformat{\\section}\n"
            "  {\\normalfont\\Large\\bfseries}{\\textcolor{accent}{\\thesection}}{1em}{}\n"
            "  [\\vspace{3pt}{\\color{accent}\\titlerule[0.8pt]}]\n"
            "\\titleformat{\\subsection}{\\normalfont\\large\\bfseries\\color{sectioncolor}}{\\thesubsection}{1em}{}"
        ),
        "palette": _palette(
            "7C3AED 374151 7C3AED DDD6FE 6B7280 6B7280 4B5563 6B7280 7C3AED 1F2937 "
            "ECFDF5 059669 EFF6FF 2563EB FFFBEB D97706 FAF5FF 9333EA 5B21B6 FFFFFF"
        ),
    },
    "academic": {
        "font_packages": r"\usepackage{times}",
        "chapter_style": (
            "\\titleformat{\\chapter}[display]\n"
            "  {\\normalfont\\Large\\bfseries}{\\textcolor{chaptercolor}{\\chaptertitlename\\ \\thechapter}}{10pt}{\\LARGE\\color{chaptercolor}}\n"
            "\\titlespacing*{\\chapter}{0pt}{-10pt}{25pt}"
        ),
        "section_style": (
            "\\titleformat{\\section}\n"
            "  {\\normalfont\\large\\bfseries\\color{sectioncolor}}{\\thesection}{1em}{}\n"
            "  [\\vspace{2pt}{\\color{rulecolor}\\titlerule[0.5pt]}]\n"
            "\\titleformat{\\subsection}{\\normalfont\\normalsize\\bfseries\\color{sectioncolor}}{\\thesubsection}{1em}{}"
        ),
        "palette": _palette(
            "1A365D 2D3748 2B6CB0 CBD5E0 718096 4A5568 4A5568 718096 2B6CB0 1A202C "
            "F0FFF4 276749 EBF8FF 2B6CB0 FFFAF0 C05621 F7FAFC 4A5568 2D3748 FFFFFF"
        ),
    },
    "creative": {
        "font_packages": r"\usepackage{palatino}",
        "chapter_style": (
            "\\titleformat{\\chapter}[display]\n"
            "  {\\normalfont\\huge\\itshape}{\\textcolor{chaptercolor}{\\Large Chapter\\ \\thechapter}}{0pt}{\\Huge\\bfseries\\color{chaptercolor}}\n"
            "\\titlespacing*{\\chapter}{0pt}{-20pt}{30pt}"
        ),
        "section_style": (
            "\\titleformat{\\section}\n"
            "  {\\normalfont\\Large\\bfseries\\color{sectioncolor}}{\\textcolor{accent}{\\thesection}}{1em}{}\n"
            "  [\\vspace{3pt}{\\color{accent}\\titlerule[1pt]}]\n"
            "\\titleformat{\\subsection}{\\normalfont\\large\\itshape\\color{sectioncolor}}{\\thesubsection}{1em}{}"
        ),
        "palette": _palette(
            "7C3AED 2D3748 8B5CF6 DDD6FE 6B7280 6B21A8 4A5568 6B7280 7C3AED 1F2937 "
            "ECFDF5 059669 F5F3FF 7C3AED FFF7ED EA580C FDF4FF A855F7 6D28D9 FFFFFF"
        ),
    },
    "business": {
        "font_packages": r"\usepackage{helvet}\renewcommand{\familydefault}{\sfdefault}",
        "chapter_style": (
            "\\titleformat{\\chapter}[display]\n"
            "  {\\normalfont\\sffamily\\huge\\bfseries}{\\textcolor{chaptercolor}{\\chaptertitlename\\ \\thechapter}}{15pt}{\\Huge\\color{chaptercolor}}\n"
            "\\titlespacing*{\\chapter}{0pt}{-20pt}{30pt}"
        ),
        "section_style": (
            "\\titleformat{\\section}\n"
            "  {\\normalfont\\sffamily\\Large\\bfseries}{\\textcolor{accent}{\\thesection}}{1em}{}\n"
            "  [\\vspace{2pt}{\\color{rulecolor}\\titlerule[0.8pt]}]\n"
            "\\titleformat{\\subsection}{\\normalfont\\sffamily\\large\\bfseries\\color{sectioncolor}}{\\thesubsection}{1em}{}"
        ),
        "palette": _palette(
            "1E40AF 1F2937 2563EB BFDBFE 6B7280 4B5563 4B5563 6B7280 1E40AF 111827 "
            "F0FDF4 16A34A EFF6FF 2563EB FFFBEB D97706 F8FAFC 475569 1E3A5F FFFFFF"
        ),
    },
    "minimal": {
        "font_packages": "",
        "chapter_style": (
            "\\titleformat{\\chapter}[display]\n"
            "  {\\normalfont\\Large}{\\textcolor{chaptercolor}{\\chaptername\\ \\thechapter}}{8pt}{\\LARGE\\bfseries\\color{chaptercolor}}\n"
            "\\titlespacing*{\\chapter}{0pt}{-10pt}{20pt}"
        ),
        "section_style": (
            "\\titleformat{\\section}\n"
            "  {\\normalfont\\large\\bfseries\\color{sectioncolor}}{\\thesection}{1em}{}\n"
            "\\titleformat{\\subsection}{\\normalfont\\normalsize\\bfseries\\color{sectioncolor}}{\\thesubsection}{1em}{}"
        ),
        "palette": _palette(
            "374151 4B5563 6B7280 D1D5DB 9CA3AF 6B7280 6B7280 9CA3AF 4B5563 111827 "
            "F9FAFB 6B7280 F3F4F6 4B5563 FEF9EF 92400E F9FAFB 9CA3AF 374151 FFFFFF"
        ),
    },
}

PRESET_NAMES = tuple(_PRESETS)


def derive_palette(colors: list[str]) -> tuple[tuple[str, str], ...]:
    """
    Derive the full semantic palette from 1–3 accent colours.

    Parameters
    ----------
    colors : list[str]
        Hex colours; the first is the primary. Secondary and tertiary
        default to the primary rotated by 150° and 210°.

    Returns
    -------
    tuple
        ``(role, "#RRGGBB")`` pairs in ``PALETTE_ROLES`` order.
    """
    if not colors:
        raise ValueError("At least one custom colour is required")
    primary = normalize_hex(colors[0])
    secondary = normalize_hex(colors[1]) if len(colors) >= 2 else rotate_hue(primary, 150)
    tertiary = normalize_hex(colors[2]) if len(colors) >= 3 else rotate_hue(primary, 210)
    is_dark = luminance(primary) < DARK_LUMINANCE_THRESHOLD

    derived = {
        "chaptercolor": primary,
        "sectioncolor": shade(primary, 0.2),
        "accent": primary,
        "rulecolor": tint(primary, 0.7),
        "headergray": "#6B7280",
        "quotegray": shade(primary, 0.15),
        "captiongray": "#4B5563",
        "subtitlegray": "#6B7280",
        "linkcolor": primary,
        "titletextcolor": LIGHT_TITLE_TEXT if is_dark else DARK_TITLE_TEXT,
        "tipbg": tint(secondary, 0.92),
        "tipframe": shade(secondary, 0.1),
        "keybg": tint(primary, 0.92),
        "keyframe": primary,
        "warnbg": tint(tertiary, 0.92),
        "warnframe": shade(tertiary, 0.1),
        "exbg": tint(secondary, 0.95),
        "exframe": secondary,
        "tableheadbg": shade(primary, 0.15),
        "tableheadfg": "#FFFFFF",
    }
    return tuple((role, derived[role]) for role in PALETTE_ROLES)


def resolve_style(
    preset: str | None = None, custom_colors: list[str] | None = None
) -> StyleConfig:
    """Resolve a preset (unknown names fall back to ``modern``) and optional colours."""
    name = (preset or DEFAULT_PRESET).lower()
    if name not in _PRESETS:
        print(f"[Style] ⚠️ Unknown preset '{preset}', falling back to {DEFAULT_PRESET}")
        name = DEFAULT_PRESET
    base = _PRESETS[name]

    colors = [c for c in (custom_colors or []) if c][:3]
    palette = derive_palette(colors) if colors else base["palette"]

    return StyleConfig(
        preset=name,
        font_packages=base["font_packages"],
        chapter_style=base["chapter_style"],
        section_style=base["section_style"],
        palette=palette,
        custom=bool(colors),
    )


def render_color_block(style: StyleConfig) -> str:
    """``\\definecolor`` lines for every palette role."""
    header = "% ── Custom color palette ──" if style.custom else f"% ── {style.preset} palette ──"
    lines = [header]
    for role, value in style.palette:
        lines.append(f"\\definecolor{{{role}}}{{HTML}}{{{value.lstrip('#')}}}")
    return "\n".join(lines)
