"""
Tests for the Document Assembler and Structure QA Checker
"""

from bookpress.assembler import Colophon, assemble_document, chapter_marker
from bookpress.checker import check_document
from bookpress.models import ChapterFragment, FragmentStatus


class TestAssembleDocument:
    """Tests for full-document assembly."""

    def test_document_skeleton(self, sample_chapters):
        """Test the document has a preamble, a body and a TOC."""
        tex = assemble_document("Habits", "en", "a5", sample_chapters, year=2025)
        assert tex.startswith("\\documentclass[11pt,a5paper,twoside,openright]{book}")
        assert tex.rstrip().endswith("\\end{document}")
        assert tex.count("\\begin{document}") == 1
        assert "\\tableofcontents" in tex
        assert "\\usepackage[english]{babel}" in tex
        assert "2025" in tex

    def test_page_format_and_language(self, sample_chapters):
        """Test format drives paper and font size, language drives babel."""
        tex = assemble_document("Nawyki", "pl", "a4", sample_chapters)
        assert "\\documentclass[12pt,a4paper" in tex
        assert "\\usepackage[polish]{babel}" in tex

    def test_unknown_language_falls_back(self, sample_chapters):
        """Test unknown language codes use english babel."""
        tex = assemble_document("Book", "xx", "a5", sample_chapters)
        assert "\\usepackage[english]{babel}" in tex

    def test_chapters_in_number_order(self, sample_chapters):
        """Test fragments are spliced in chapter-number order."""
        shuffled = [sample_chapters[2], sample_chapters[0], sample_chapters[1]]
        tex = assemble_document("Habits", "en", "a5", shuffled)
        first = tex.index(chapter_marker(sample_chapters[0]))
        second = tex.index(chapter_marker(sample_chapters[1]))
        third = tex.index(chapter_marker(sample_chapters[2]))
        assert first < second < third

    def test_only_ready_fragments(self, sample_chapters):
        """Test pending and empty fragments are left out."""
        pending = ChapterFragment(4, "Draft", "\\chapter{Draft}", status=FragmentStatus.PENDING)
        empty = ChapterFragment(5, "Empty", "   ", status=FragmentStatus.READY)
        tex = assemble_document("Habits", "en", "a5", sample_chapters + [pending, empty])
        assert "\\chapter{Draft}" not in tex
        assert "Chapter 5" not in tex

    def test_title_is_escaped(self, sample_chapters):
        """Test special characters in the title are escaped."""
        tex = assemble_document("Profit & Loss 100%", "en", "a5", sample_chapters)
        assert "Profit \\& Loss 100\\%" in tex

    def test_style_palette_in_preamble(self, sample_chapters):
        """Test the resolved palette is defined in the preamble."""
        tex = assemble_document("Habits", "en", "a5", sample_chapters, custom_colors=["#0F766E"])
        assert "\\definecolor{accent}{HTML}{0F766E}" in tex
        assert tex.index("\\definecolor{accent}") < tex.index("\\begin{document}")

    def test_colophon_page(self, sample_chapters):
        """Test the colophon is placed between title page and TOC."""
        colophon = Colophon(text="Copyright 2025 Jane Doe\n\nAll rights reserved.", font_size=9)
        tex = assemble_document("Habits", "en", "a5", sample_chapters, colophon=colophon)
        assert "% ── Colophon ──" in tex
        assert "\\footnotesize" in tex
        assert tex.index("\\end{titlepage}") < tex.index("% ── Colophon ──") < tex.index("\\tableofcontents")

    def test_author_and_subtitle(self, sample_chapters):
        """Test author and subtitle land on the title page."""
        tex = assemble_document(
            "Habits", "en", "a5", sample_chapters, author="Jane Doe", subtitle="A short guide"
        )
        assert "Jane Doe" in tex
        assert "A short guide" in tex

    def test_broken_fragment_repaired(self):
        """Test a broken fragment cannot unbalance the whole document."""
        broken = ChapterFragment(
            1,
            "Broken",
            "\\chapter{Broken}\n\\begin{tipbox}{Tip}\n\\textbf{never closed\n\\end{document}",
            status=FragmentStatus.READY,
        )
        tex = assemble_document("Book", "en", "a5", [broken])
        report = check_document(tex)
        assert report.ok
        assert tex.count("\\end{document}") == 1


class TestChecker:
    """Tests for the structure QA report."""

    def test_assembled_document_is_clean(self, sample_chapters):
        """Test a normal book passes QA."""
        report = check_document(assemble_document("Habits", "en", "a5", sample_chapters))
        assert report.ok
        assert report.markers == 3
        assert report.chapters == 3
        assert report.sections == 4

    def test_detects_imbalance(self):
        """Test unbalanced environments and braces are reported."""
        report = check_document("\\begin{itemize}\n\\item {x\n")
        assert report.env_imbalance == {"itemize": 1}
        assert report.brace_depth == 1
        assert not report.has_end_document
        assert not report.ok

    def test_detects_prompt_echo(self):
        """Test empty environment placeholders are reported."""
        report = check_document("\\begin{...}\n\\end{document}")
        assert report.prompt_echoes == 1
        assert not report.ok

    def test_to_dict(self):
        """Test the report serializes with its verdict."""
        d = check_document("\\end{document}").to_dict()
        assert d["ok"] is True
        assert d["env_imbalance"] == {}
