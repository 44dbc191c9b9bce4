"""
BookPress V1.0 — EPUB Companion Builder
=======================================
Converts the chapter LaTeX bodies into XHTML and packages them with
ebooklib. Styling follows the same resolved palette as the PDF.

The EPUB is a companion artifact: the pipeline treats any failure here
as a warning, never as a failed build.
"""

from __future__ import annotations

import html as html_lib
from pathlib import Path
from typing import Optional

import regex as re
from ebooklib import epub

from bookpress.models import ChapterFragment, ready_fragments
from bookpress.style_resolver import StyleConfig

BOX_CLASSES = {
    "tipbox": ("box-tip", "💡"),
    "keyinsight": ("box-key", "🔑"),
    "warningbox": ("box-warn", "⚠️"),
    "examplebox": ("box-example", "📋"),
}

_BLOCK_START = re.compile(
    r"^<(h[1-6]|ul|ol|dl|table|aside|blockquote|section|hr|li|dt|dd|thead|tbody|tr|th|td|caption|p|div|br)"
)
_BLOCK_END = re.compile(
    r"^</(h[1-6]|ul|ol|dl|table|aside|blockquote|section|li|dt|dd|thead|tbody|tr|th|td|caption|p|div)"
)
_RULE_ONLY = re.compile(r"^\\(toprule|midrule|bottomrule|hline)\s*$")


# ──────────────────────────────────────────────
# TABLES
# ──────────────────────────────────────────────
def _table_rows(content: str) -> str:
    raw_rows = re.split(r"\\\\\s*", content)
    header_end = -1
    for i, row in enumerate(raw_rows):
        if "\\midrule" in row or "\\hline" in row:
            header_end = i
            break

    rows = [r.strip() for r in raw_rows]
    rows = [r for r in rows if r and not _RULE_ONLY.match(r)]

    out = []
    idx = 0
    for row in rows:
        clean = re.sub(r"\\rowcolor\{[^}]*\}\s*", "", row)
        clean = re.sub(r"\\textcolor\{[^}]*\}\{\\textbf\{([^}]*)\}\}", r"\1", clean)
        clean = re.sub(r"\\textcolor\{[^}]*\}\{([^}]*)\}", r"\1", clean)
        clean = re.sub(r"\\(toprule|midrule|bottomrule|hline)", "", clean).strip()
        if not clean:
            continue

        is_header = idx == 0 and header_end > 0
        tag = "th" if is_header else "td"
        cells = []
        for cell in re.split(r"(?<!\\)&", clean):
            val = re.sub(r"\\textbf\{([^}]*)\}", r"<strong>\1</strong>", cell.strip())
            val = re.sub(r"\\textit\{([^}]*)\}", r"<em>\1</em>", val)
            cells.append(f"<{tag}>{val}</{tag}>")

        if is_header:
            out.append(f"<thead><tr>{''.join(cells)}</tr></thead><tbody>")
        else:
            out.append(f"<tr>{''.join(cells)}</tr>")
        idx += 1

    if header_end > 0:
        out.append("</tbody>")
    return "".join(out)


def _convert_tables(text: str) -> str:
    tabular = re.compile(r"\\begin\{tabularx?\}(?:\{[^}]*\})?\{[^}]*\}([\s\S]*?)\\end\{tabularx?\}")

    def wrapped(m: re.Match) -> str:
        content = m.group(2)
        caption = ""
        cap = re.search(r"\\caption\{([^}]*)\}", content)
        if cap:
            caption = f"<caption>{cap.group(1)}</caption>"
            content = content.replace(cap.group(0), "", 1)
        tab = tabular.search(content)
        if not tab:
            return content
        return f'<table class="data-table">{caption}{_table_rows(tab.group(1))}</table>'

    text = re.sub(r"\\begin\{table\}(\[[^\]]*\])?([\s\S]*?)\\end\{table\}", wrapped, text)
    return tabular.sub(
        lambda m: f'<table class="data-table">{_table_rows(m.group(1))}</table>', text
    )


# ──────────────────────────────────────────────
# LATEX → XHTML
# ──────────────────────────────────────────────
def _close_list_items(text: str) -> str:
    out = []
    in_li = False
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith("<li>") and in_li:
            out.append("</li>")
        if stripped.startswith("<li>"):
            in_li = True
        if stripped in ("</ul>", "</ol>") and in_li:
            out.append("</li>")
            in_li = False
        out.append(line)
    if in_li:
        out.append("</li>")
    return "\n".join(out)


def _wrap_paragraphs(text: str) -> str:
    chunks = []
    for chunk in re.split(r"\n\n+", text):
        stripped = chunk.strip()
        if not stripped:
            continue
        if _BLOCK_START.match(stripped) or _BLOCK_END.match(stripped) or stripped.startswith("<sup"):
            chunks.append(stripped)
        else:
            chunks.append(f"<p>{stripped}</p>")
    return "\n\n".join(chunks)


def latex_to_xhtml(latex: str) -> str:
    """Convert one chapter body into an XHTML fragment (body content only)."""
    text = latex.replace("<", "&lt;").replace(">", "&gt;")

    # Preamble leftovers and page-layout commands
    text = re.sub(r"\\documentclass[\s\S]*?\\begin\{document\}", "", text)
    text = text.replace("\\end{document}", "")
    text = re.sub(r"\\usepackage(\[[^\]]*\])?\{[^}]*\}", "", text)
    text = re.sub(r"\\(clearpage|newpage|tableofcontents|maketitle)\b", "", text)
    text = re.sub(r"\\thispagestyle\{[^}]*\}", "", text)
    text = re.sub(r"(?m)^%.*$", "", text)

    # Headings
    text = re.sub(r"\\chapter\*?\{([^}]*)\}", r'<h1 class="chapter-title">\1</h1>', text)
    text = re.sub(r"\\section\*?\{([^}]*)\}", r'<h2 class="section-title">\1</h2>', text)
    text = re.sub(r"\\subsection\*?\{([^}]*)\}", r'<h3 class="subsection-title">\1</h3>', text)
    text = re.sub(r"\\subsubsection\*?\{([^}]*)\}", r'<h4 class="subsubsection-title">\1</h4>', text)

    # Inline formatting
    text = re.sub(r"\\textbf\{([^}]*)\}", r"<strong>\1</strong>", text)
    text = re.sub(r"\\(?:textit|emph)\{([^}]*)\}", r"<em>\1</em>", text)
    text = re.sub(r"\\underline\{([^}]*)\}", r'<span class="underline">\1</span>', text)
    text = re.sub(r"\\texttt\{([^}]*)\}", r"<code>\1</code>", text)

    # Footnotes become endnotes at the end of the chapter
    footnotes: list[str] = []

    def footnote(m: re.Match) -> str:
        footnotes.append(m.group(1))
        n = len(footnotes)
        return f'<sup class="footnote-ref"><a href="#fn{n}" id="fnref{n}">[{n}]</a></sup>'

    text = re.sub(r"\\footnote\{([^}]*)\}", footnote, text)

    # Coloured boxes
    for env, (css, icon) in BOX_CLASSES.items():
        text = re.sub(
            rf"\\begin\{{{env}\}}(?:\[[^\]]*\])?\{{([^}}]*)\}}([\s\S]*?)\\end\{{{env}\}}",
            rf'<aside class="box {css}"><p class="box-title">{icon} \1</p><div class="box-content">\2</div></aside>',
            text,
        )
        text = re.sub(
            rf"\\begin\{{{env}\}}(?:\[([^\]]*)\])?([\s\S]*?)\\end\{{{env}\}}",
            lambda m, css=css, icon=icon: (
                f'<aside class="box {css}">'
                + (f'<p class="box-title">{icon} {m.group(1)}</p>' if m.group(1) else "")
                + f'<div class="box-content">{m.group(2)}</div></aside>'
            ),
            text,
        )

    # Lists
    text = text.replace("\\begin{itemize}", '<ul class="list-bullet">')
    text = text.replace("\\end{itemize}", "</ul>")
    text = text.replace("\\begin{enumerate}", '<ol class="list-ordered">')
    text = text.replace("\\end{enumerate}", "</ol>")
    text = text.replace("\\begin{description}", '<dl class="list-description">')
    text = text.replace("\\end{description}", "</dl>")
    text = re.sub(r"\\item\[([^\]]*)\]\s*", r"<dt><strong>\1</strong></dt><dd>", text)
    text = re.sub(r"\\item(?![a-zA-Z])\s*", "\n<li>", text)

    text = re.sub(
        r"\\begin\{quote\}([\s\S]*?)\\end\{quote\}",
        r'<blockquote class="quote">\1</blockquote>',
        text,
    )

    text = _convert_tables(text)

    # Special characters
    text = text.replace("---", "\u2014").replace("--", "\u2013")
    text = text.replace("``", "\u201c").replace("''", "\u201d")
    text = text.replace("\\textbackslash{}", "&#92;")
    text = text.replace("\\textasciitilde{}", "~").replace("\\textasciicircum{}", "^")
    text = text.replace("\\%", "%").replace("\\&", "&amp;").replace("\\#", "#")
    text = text.replace("\\$", "$").replace("\\_", "_")
    text = text.replace("\\{", "&#123;").replace("\\}", "&#125;")
    text = re.sub(r"\\\\(\[[^\]]*\])?", "<br/>", text)
    text = text.replace("\\,", " ")
    text = re.sub(r"(?<!\\)~", "&#160;", text)

    # Remaining commands
    text = re.sub(r"\\label\{[^}]*\}", "", text)
    text = re.sub(r"\\ref\{[^}]*\}", "[ref]", text)
    text = re.sub(r"\\cite\{[^}]*\}", "[cite]", text)
    text = re.sub(r"\\[vh]space\*?\{[^}]*\}", "", text)
    text = re.sub(r"\\(noindent|centering)\s*", "", text)
    text = re.sub(r"\\caption\{([^}]*)\}", r'<p class="table-caption">\1</p>', text)
    text = re.sub(r"\\rowcolor\{[^}]*\}", "", text)
    text = re.sub(r"\\textcolor\{[^}]*\}\{([^}]*)\}", r"\1", text)
    text = re.sub(r"\\color\{[^}]*\}", "", text)
    text = re.sub(r"\\begin\{[^}]*\}(\[[^\]]*\])?(\{[^}]*\})?", "", text)
    text = re.sub(r"\\end\{[^}]*\}", "", text)
    text = re.sub(r"\\[a-zA-Z]+(\[[^\]]*\])?\{([^}]*)\}", r"\2", text)
    text = re.sub(r"\\[a-zA-Z]+\*?", "", text)
    text = re.sub(r"[{}]", "", text)

    text = _close_list_items(text)
    text = _wrap_paragraphs(text)

    if footnotes:
        items = "\n".join(
            f'<li id="fn{i}"><p>{fn} <a href="#fnref{i}">↩</a></p></li>'
            for i, fn in enumerate(footnotes, 1)
        )
        text += f'\n<section class="footnotes"><hr/><ol class="footnote-list">{items}</ol></section>'
    return text


# ──────────────────────────────────────────────
# STYLESHEET
# ──────────────────────────────────────────────
_PRESET_FONTS = {
    "business": "Helvetica, Arial, sans-serif",
    "academic": '"Times New Roman", Times, serif',
    "creative": 'Palatino, "Book Antiqua", Georgia, serif',
}


def build_css(style: StyleConfig) -> str:
    c = style.color
    font = _PRESET_FONTS.get(style.preset, 'Georgia, "Times New Roman", serif')
    return f"""@charset "UTF-8";
body {{ font-family: {font}; line-height: 1.6; color: #1F2937; margin: 1em; text-align: justify; }}
h1.chapter-title {{ color: {c("chaptercolor")}; font-size: 1.8em; margin-top: 2em; padding-bottom: 0.3em; border-bottom: 2px solid {c("accent")}; }}
h2.section-title {{ color: {c("sectioncolor")}; font-size: 1.4em; margin-top: 1.5em; border-bottom: 1px solid {c("rulecolor")}; }}
h3.subsection-title, h4.subsubsection-title {{ color: {c("sectioncolor")}; margin-top: 1.2em; }}
a {{ color: {c("linkcolor")}; }}
blockquote.quote {{ margin: 1em 1.5em; font-style: italic; color: {c("quotegray")}; border-left: 3px solid {c("accent")}; padding-left: 1em; }}
aside.box {{ margin: 1.2em 0; padding: 0.8em 1em; }}
aside.box-tip {{ background: {c("tipbg")}; border-left: 4px solid {c("tipframe")}; }}
aside.box-key {{ background: {c("keybg")}; border: 1px solid {c("keyframe")}; }}
aside.box-warn {{ background: {c("warnbg")}; border-left: 4px solid {c("warnframe")}; }}
aside.box-example {{ background: {c("exbg")}; border: 1px solid {c("exframe")}; }}
p.box-title {{ font-weight: bold; margin-top: 0; }}
table.data-table {{ border-collapse: collapse; width: 100%; margin: 1em 0; font-size: 0.9em; }}
table.data-table th {{ background: {c("tableheadbg")}; color: {c("tableheadfg")}; padding: 0.4em; }}
table.data-table td {{ border-bottom: 1px solid {c("rulecolor")}; padding: 0.4em; }}
caption, p.table-caption {{ color: {c("captiongray")}; font-size: 0.9em; }}
section.footnotes {{ font-size: 0.85em; color: {c("headergray")}; }}
.title-page {{ text-align: center; margin-top: 30%; }}
.title-page h1 {{ color: {c("chaptercolor")}; font-size: 2em; }}
.title-page .subtitle {{ color: {c("subtitlegray")}; }}
"""


# ──────────────────────────────────────────────
# PACKAGING
# ──────────────────────────────────────────────
def build_epub(
    output_path: Path,
    project_id: str,
    title: str,
    fragments: list[ChapterFragment],
    style: StyleConfig,
    language: str = "en",
    author: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> Path:
    """Write an EPUB for the ready fragments and return its path."""
    chapters = ready_fragments(fragments)
    if not chapters:
        raise ValueError("No chapters ready for EPUB")

    book = epub.EpubBook()
    book.set_identifier(f"bookpress-{project_id}")
    book.set_title(title)
    book.set_language(language)
    if author:
        book.add_author(author)

    css = epub.EpubItem(
        uid="style",
        file_name="css/style.css",
        media_type="text/css",
        content=build_css(style).encode("utf-8"),
    )
    book.add_item(css)

    title_page = epub.EpubHtml(title=title, file_name="title.xhtml", lang=language)
    title_html = f"<h1>{html_lib.escape(title)}</h1>"
    if subtitle:
        title_html += f'<p class="subtitle">{html_lib.escape(subtitle)}</p>'
    if author:
        title_html += f'<p class="author">{html_lib.escape(author)}</p>'
    title_page.content = (
        f'<html><head><link rel="stylesheet" href="css/style.css" type="text/css"/></head>'
        f'<body><div class="title-page">{title_html}</div></body></html>'
    ).encode("utf-8")
    title_page.add_item(css)
    book.add_item(title_page)

    items = []
    toc = []
    for ch in chapters:
        file_name = f"chapter-{ch.number}.xhtml"
        item = epub.EpubHtml(title=ch.title, file_name=file_name, lang=language)
        body = latex_to_xhtml(ch.content)
        item.content = (
            f'<html><head><link rel="stylesheet" href="css/style.css" type="text/css"/></head>'
            f"<body>{body}</body></html>"
        ).encode("utf-8")
        item.add_item(css)
        book.add_item(item)
        items.append(item)
        toc.append(epub.Link(file_name, ch.title, f"ch{ch.number}"))

    book.toc = toc
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = [title_page, "nav"] + items

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    epub.write_epub(str(output_path), book)
    size_kb = output_path.stat().st_size / 1024
    print(f"[EPUB] ✅ {output_path.name}: {len(items)} chapters, {size_kb:.0f} KB")
    return output_path
