"""
BookPress V1.0 — Document Assembler
===================================
Concatenates sanitized chapter fragments with a style-resolved preamble,
title page, optional colophon and table of contents into one compilable
LaTeX document. Pure: no I/O.

Usage
-----
    from bookpress.assembler import assemble_document
    tex = assemble_document("My Book", "en", "a5", fragments, style_preset="academic")
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Optional

import regex as re

from bookpress.models import ChapterFragment, ready_fragments
from bookpress.sanitizer import escape_latex, fix_section_arguments, sanitize_fragment
from bookpress.style_resolver import StyleConfig, render_color_block, resolve_style

# ──────────────────────────────────────────────
# FIXED TABLES
# ──────────────────────────────────────────────
BABEL_LANG = {
    "en": "english",
    "pl": "polish",
    "de": "ngerman",
    "es": "spanish",
    "fr": "french",
    "it": "italian",
    "pt": "portuguese",
    "nl": "dutch",
}

FONT_SIZE = {"a5": "11pt", "b5": "11pt", "a4": "12pt", "letter": "12pt"}
PAPER_SIZE = {"a5": "a5paper", "b5": "b5paper", "a4": "a4paper", "letter": "letterpaper"}

COLOPHON_SIZE = {
    8: r"\scriptsize",
    9: r"\footnotesize",
    10: r"\small",
    11: r"\normalsize",
    12: r"\large",
    14: r"\Large",
}

BOX_ENVS = ("tipbox", "keyinsight", "warningbox", "examplebox")


@dataclass(frozen=True)
class Colophon:
    text: str
    font_size: int = 10


def chapter_marker(fragment: ChapterFragment) -> str:
    """Comment line that separates fragments in the assembled document."""
    title = re.sub(r"[{}\\%\n]", " ", fragment.title).strip()
    return f"% ── Chapter {fragment.number}: {title} ──"


# ──────────────────────────────────────────────
# PREAMBLE BLOCKS
# ──────────────────────────────────────────────
def _side_box(name: str, bg: str, frame: str) -> str:
    return "\n".join(
        [
            f"\\newtcolorbox{{{name}}}[1][]{{",
            "  enhanced, breakable,",
            f"  colback={bg}, colframe={frame},",
            "  boxrule=0pt, leftrule=3.5pt,",
            "  arc=0pt, outer arc=0pt,",
            "  left=10pt, right=10pt, top=8pt, bottom=8pt,",
            f"  fonttitle=\\bfseries\\small\\color{{{frame}}},",
            "  title={#1},",
            "  before upper={\\parindent0pt\\small},",
            "  attach boxed title to top left={yshift=-2mm, xshift=4mm},",
            f"  boxed title style={{colback={bg}, colframe={bg}, boxrule=0pt, arc=0pt, left=2pt, right=2pt, top=1pt, bottom=1pt}}",
            "}",
        ]
    )


def _framed_box(name: str, bg: str, frame: str, title_color: str, rule: str) -> str:
    return "\n".join(
        [
            f"\\newtcolorbox{{{name}}}[1][]{{",
            "  enhanced, breakable,",
            f"  colback={bg}, colframe={frame},",
            f"  boxrule={rule},",
            "  arc=4pt, outer arc=4pt,",
            "  left=10pt, right=10pt, top=8pt, bottom=8pt,",
            f"  fonttitle=\\bfseries\\small\\color{{{title_color}}},",
            "  title={#1},",
            "  before upper={\\parindent0pt\\small},",
            "  attach boxed title to top left={yshift=-2mm, xshift=4mm},",
            f"  boxed title style={{colback={frame if title_color == 'white' else bg}, colframe={frame if title_color == 'white' else bg}, boxrule=0pt, arc=3pt, left=4pt, right=4pt, top=2pt, bottom=2pt}}",
            "}",
        ]
    )


def _preamble(style: StyleConfig, language: str, page_format: str) -> list[str]:
    babel = BABEL_LANG.get(language, "english")
    font_size = FONT_SIZE.get(page_format, "11pt")
    paper = PAPER_SIZE.get(page_format, "a5paper")

    L = [
        f"\\documentclass[{font_size},{paper},twoside,openright]{{book}}",
        "",
        "\\usepackage[utf8]{inputenc}",
        "\\usepackage[T1]{fontenc}",
        f"\\usepackage[{babel}]{{babel}}",
        "\\usepackage{lmodern}",
    ]
    if style.font_packages:
        L.append(style.font_packages)
    L += [
        "",
        f"\\usepackage[{paper}, inner=20mm, outer=15mm, top=25mm, bottom=25mm, headheight=36pt]{{geometry}}",
        "",
        "\\usepackage[dvipsnames,svgnames,x11names]{xcolor}",
        render_color_block(style),
        "",
        # Headers / footers
        "\\usepackage{fancyhdr}",
        "\\pagestyle{fancy}",
        "\\fancyhf{}",
        "\\fancyhead[LE]{\\small\\textcolor{headergray}{\\textit{\\leftmark}}}",
        "\\fancyhead[RO]{\\small\\textcolor{headergray}{\\textit{\\rightmark}}}",
        "\\fancyfoot[C]{\\textcolor{headergray}{\\thepage}}",
        "\\renewcommand{\\headrulewidth}{0.4pt}",
        "\\renewcommand{\\headrule}{\\hbox to\\headwidth{\\color{rulecolor}\\leaders\\hrule height \\headrulewidth\\hfill}}",
        "\\fancypagestyle{plain}{\\fancyhf{}\\fancyfoot[C]{\\textcolor{headergray}{\\thepage}}\\renewcommand{\\headrulewidth}{0pt}}",
        "",
        # Chapter style is set after the TOC so the TOC heading stays black
        "\\usepackage{titlesec}",
        style.section_style,
        "",
        "\\usepackage{microtype}",
        "\\usepackage{setspace}",
        "\\onehalfspacing",
        "\\usepackage{parskip}",
        "",
        "\\usepackage{enumitem}",
        "\\setlist[itemize]{leftmargin=1.5em, itemsep=3pt, parsep=0pt, topsep=6pt, label=\\textcolor{accent}{\\textbullet}}",
        "\\setlist[enumerate]{leftmargin=1.5em, itemsep=3pt, parsep=0pt, topsep=6pt, label=\\textcolor{accent}{\\arabic*.}}",
        "",
        "\\usepackage{booktabs}",
        "\\usepackage{tabularx}",
        "\\usepackage{array}",
        "\\usepackage{colortbl}",
        "\\usepackage{float}",
        "\\setlength{\\heavyrulewidth}{1.2pt}",
        "\\setlength{\\lightrulewidth}{0.6pt}",
        "\\setlength{\\aboverulesep}{8pt}",
        "\\setlength{\\belowrulesep}{8pt}",
        "",
        "\\usepackage{graphicx}",
        "\\usepackage{wrapfig}",
        "\\usepackage{tikz}",
        "\\usepackage[skins,breakable]{tcolorbox}",
        "",
        _side_box("tipbox", "tipbg", "tipframe"),
        _framed_box("keyinsight", "keybg", "keyframe", "white", "0.8pt"),
        _side_box("warningbox", "warnbg", "warnframe"),
        _framed_box("examplebox", "exbg", "exframe", "exframe", "0.6pt"),
        "",
        "\\usepackage{csquotes}",
        "\\renewenvironment{quote}{%",
        "  \\list{}{\\leftmargin=1.5em \\rightmargin=1.5em \\itshape \\color{quotegray}}%",
        "  \\item\\relax",
        "  \\hspace{-0.5em}\\textcolor{accent}{\\large\\textbf{``}}%",
        "}{\\endlist}",
        "",
        "\\usepackage[hidelinks,unicode,colorlinks=true,linkcolor=linkcolor,urlcolor=accent]{hyperref}",
        "\\usepackage[font={small},labelfont={bf,color=accent},textfont={color=captiongray},skip=8pt]{caption}",
        "",
        "\\usepackage{tocloft}",
        "\\renewcommand{\\cftchapfont}{\\bfseries\\color{black}}",
        "\\renewcommand{\\cftchappagefont}{\\bfseries\\color{black}}",
        "\\renewcommand{\\cftsecfont}{\\color{black}}",
        "\\renewcommand{\\cftsecpagefont}{\\color{black}}",
        "\\renewcommand{\\cftchapleader}{\\cftdotfill{\\cftchapdotsep}}",
        "\\renewcommand{\\cftchapdotsep}{2.5}",
        "\\setlength{\\cftbeforechapskip}{6pt}",
        "",
        "\\graphicspath{{./images/}{./}}",
        "",
    ]
    return L


def _title_page(title: str, subtitle: str, author: str, year: int) -> list[str]:
    L = [
        "\\begin{titlepage}",
        "\\thispagestyle{empty}",
        "\\begin{tikzpicture}[remember picture, overlay]",
        "  \\fill[accent] (current page.north west) rectangle ([yshift=-5mm]current page.north east);",
        "  \\fill[accent] (current page.south west) rectangle ([yshift=5mm]current page.south east);",
        "  \\node[anchor=center, text width=0.82\\paperwidth, align=center]",
        "    at ([yshift=-0.33\\paperheight]current page.north) {",
        f"      {{\\fontsize{{28}}{{34}}\\selectfont\\bfseries\\color{{black}}{title}\\par}}",
        "      \\vspace{0.7cm}",
        "      {\\color{accent}\\rule{5cm}{1.2pt}\\par}",
        "      \\vspace{0.5cm}",
        f"      {{\\large\\color{{subtitlegray}}{subtitle}\\par}}",
        "    };",
    ]
    if author:
        L += [
            "  \\node[anchor=center] at ([yshift=0.18\\paperheight]current page.south) {",
            f"    {{\\Large\\color{{black}}{author}}}",
            "  };",
        ]
    L += [
        "  \\node[anchor=center] at ([yshift=14mm]current page.south) {",
        f"    {{\\small\\color{{subtitlegray}}{year}}}",
        "  };",
        "\\end{tikzpicture}",
        "\\end{titlepage}",
        "",
    ]
    return L


def _colophon_page(colophon: Colophon) -> list[str]:
    size_cmd = COLOPHON_SIZE.get(colophon.font_size, r"\small")
    lines = [
        "\\par\\vspace{0.5\\baselineskip}" if not line.strip() else escape_latex(line) + "\\par"
        for line in colophon.text.split("\n")
    ]
    return [
        "% ── Colophon ──",
        "\\newpage",
        "\\thispagestyle{empty}",
        "~\\vfill",
        "\\begin{flushleft}",
        size_cmd,
        "\\color{black}",
        "\\setlength{\\parskip}{0pt}",
        "\\setlength{\\parindent}{0pt}",
        "\\linespread{1.15}\\selectfont",
        *lines,
        "\\end{flushleft}",
        "\\vspace{20mm}",
        "\\clearpage",
        "",
    ]


# ──────────────────────────────────────────────
# ENTRY POINT
# ──────────────────────────────────────────────
def assemble_document(
    title: str,
    language: str,
    page_format: str,
    fragments: list[ChapterFragment],
    style_preset: Optional[str] = None,
    custom_colors: Optional[list[str]] = None,
    author: Optional[str] = None,
    subtitle: Optional[str] = None,
    colophon: Optional[Colophon] = None,
    year: Optional[int] = None,
) -> str:
    """
    Build the complete LaTeX document for a book.

    Parameters
    ----------
    title, language, page_format : str
        Book title, language code (``en``, ``pl``…) and format (``a5``…).
    fragments : list[ChapterFragment]
        Only ready fragments are used, in chapter-number order.
    style_preset, custom_colors
        Passed to ``resolve_style``.
    colophon : Colophon, optional
        Adds a copyright page after the title page.
    year : int, optional
        Printed on the title page; defaults to the current year.

    Returns
    -------
    str
        The assembled document text.
    """
    style = resolve_style(style_preset, custom_colors)
    year = year or datetime.date.today().year

    L = _preamble(style, language, page_format)
    L += ["\\begin{document}", ""]
    L += _title_page(
        escape_latex(title),
        escape_latex(subtitle) if subtitle else "",
        escape_latex(author) if author else "",
        year,
    )

    if colophon and colophon.text.strip():
        L += _colophon_page(colophon)

    L += [
        "% ── TOC with black heading ──",
        "\\titleformat{\\chapter}[display]",
        "  {\\normalfont\\huge\\bfseries}{}{0pt}{\\Huge\\color{black}}",
        "\\titlespacing*{\\chapter}{0pt}{50pt}{30pt}",
        "{",
        "  \\hypersetup{linkcolor=black}",
        "  \\tableofcontents",
        "}",
        "\\clearpage",
        "",
        "% ── Chapter style for book content ──",
        style.chapter_style,
        "",
    ]

    for fragment in ready_fragments(fragments):
        L.append(chapter_marker(fragment))
        L.append(sanitize_fragment(fragment.content))
        L += ["\\clearpage", ""]

    L.append("\\end{document}")
    return fix_section_arguments("\n".join(L))
