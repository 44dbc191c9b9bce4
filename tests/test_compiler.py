"""
Tests for the Compilation Retry Engine

The pdflatex process is replaced by a scripted runner that writes a
chosen .log per attempt and produces the PDF on a chosen attempt.
"""

import pytest

from bookpress import compiler as compiler_module
from bookpress.compiler import (
    AUTO_FIX_PREFIX,
    TIMED_OUT,
    CompilationEngine,
    apply_auto_fix,
    count_pages,
    fix_mismatched_end,
    fix_prompt_echo,
    fix_runaway_argument,
    fix_table_nesting,
    fix_tabularx_rows,
    fix_undefined_control_sequence,
    fix_unclosed_environment,
    log_tail,
    read_log,
)
from bookpress.errors import CompilationFailed
from bookpress.models import AttemptOutcome, BuildWorkspace

DOC = "\n".join(
    [
        "\\documentclass{book}",
        "\\begin{document}",
        "\\begin{tipbox}{Tip}",
        "\\begin{itemize}",
        "\\item one",
        "\\end{document}",
    ]
)

UNCLOSED_TIPBOX = "! LaTeX Error: \\begin{tipbox} on input line 3 ended by \\end{document}.\n"
UNCLOSED_ITEMIZE = "! LaTeX Error: \\begin{itemize} on input line 4 ended by \\end{document}.\n"


def _workspace(temp_dir, tex: str = DOC) -> BuildWorkspace:
    ws = BuildWorkspace.for_project(temp_dir, "proj-1").ensure()
    ws.tex_path.write_text(tex, encoding="utf-8")
    return ws


class TestAutoFixes:
    """Tests for individual log-signature fixes."""

    def test_unclosed_environment(self):
        """Test the missing \\end is inserted before \\end{document}."""
        fixed = fix_unclosed_environment(DOC, UNCLOSED_ITEMIZE)
        lines = fixed.split("\n")
        assert lines[-2] == "\\end{itemize}"
        assert lines[-1] == "\\end{document}"

    def test_unclosed_environment_no_match(self):
        """Test unrelated logs leave the source alone."""
        assert fix_unclosed_environment(DOC, "Output written on book.pdf") is None

    def test_mismatched_end(self):
        """Test the wrong closer is rewritten to the expected one."""
        tex = "\\begin{tipbox}{T}\ntext\n\\end{warningbox}"
        log = "! LaTeX Error: \\begin{tipbox} on input line 1 ended by \\end{warningbox}."
        assert fix_mismatched_end(tex, log) == "\\begin{tipbox}{T}\ntext\n\\end{tipbox}"

    def test_mismatched_end_never_touches_document(self):
        """Test \\end{document} is never rewritten."""
        assert fix_mismatched_end(DOC, UNCLOSED_TIPBOX) is None

    def test_undefined_control_sequence(self):
        """Test the offending line is commented out once."""
        tex = "line one\n\\foo{bar}\nline three"
        log = "! Undefined control sequence.\nl.2 \\foo\n           {bar}"
        fixed = fix_undefined_control_sequence(tex, log)
        assert fixed.split("\n")[1] == AUTO_FIX_PREFIX + "\\foo{bar}"
        assert fix_undefined_control_sequence(fixed, log) is None

    def test_prompt_echo(self):
        """Test placeholder environments are commented out."""
        tex = "ok\n\\begin{...}\nok"
        fixed = fix_prompt_echo(tex, "! Missing \\endcsname inserted.")
        assert "\\begin{...}" not in fixed
        assert AUTO_FIX_PREFIX in fixed

    def test_runaway_argument(self):
        """Test \\par inside a section title is flattened."""
        tex = "\\section{Title\\par more}\nBody"
        fixed = fix_runaway_argument(tex, "Runaway argument?")
        assert fixed.startswith("\\section{Title more}")

    def test_tabularx_rows(self):
        """Test short rows are padded on a Missing \\cr signature."""
        tex = "\\begin{tabularx}{\\textwidth}{lXX}\na & b\n\\end{tabularx}"
        log = "! Missing \\cr inserted.\n<inserted text>\n\\cr\nl.3 \\end{tabularx}"
        fixed = fix_tabularx_rows(tex, log)
        assert "a & b &" in fixed

    def test_table_nesting(self):
        """Test reversed table closers are swapped."""
        tex = "\\end{table}\n\\end{tabular}"
        fixed = fix_table_nesting(tex, "! Misplaced \\cr.")
        assert fixed == "\\end{tabular}\n\\end{table}"

    def test_apply_auto_fix_reports_name(self):
        """Test the first matching fix wins and is named."""
        fixed, name = apply_auto_fix(DOC, UNCLOSED_ITEMIZE)
        assert name == "unclosed_environment"
        assert fixed != DOC

    def test_apply_auto_fix_nothing_matches(self):
        """Test an unknown log returns the source unchanged."""
        fixed, name = apply_auto_fix(DOC, "! Emergency stop.")
        assert name is None
        assert fixed == DOC


class TestLogHelpers:
    """Tests for log reading."""

    def test_read_log_missing(self, temp_dir):
        """Test a missing log reads as empty."""
        assert read_log(temp_dir / "nope.log") == ""

    def test_read_log_capped(self, temp_dir):
        """Test only the tail of a large log is read."""
        path = temp_dir / "big.log"
        path.write_text("a" * 100 + "TAIL", encoding="utf-8")
        assert read_log(path, cap=4) == "TAIL"

    def test_log_tail(self):
        """Test the tail is limited to the last characters."""
        assert log_tail("abcdef", limit=3) == "def"
        assert log_tail("ab", limit=3) == "ab"


class TestCompilationEngine:
    """Tests for the bounded retry state machine."""

    def test_first_attempt_success(self, temp_dir, scripted_runner):
        """Test a clean document compiles in one attempt with two passes."""
        ws = _workspace(temp_dir)
        runner = scripted_runner([("Output written on book.pdf", True)])
        engine = CompilationEngine(runner=runner)
        assert engine.compile(ws) == ws.pdf_path
        assert len(engine.attempts) == 1
        assert engine.attempts[0].outcome == AttemptOutcome.SUCCESS
        assert engine.attempts[0].passes == 2
        assert len(runner.calls) == 2
        assert "-interaction=nonstopmode" in runner.calls[0]

    def test_two_fixes_then_success(self, temp_dir, scripted_runner):
        """Test two failed attempts with fixes and success on the third."""
        ws = _workspace(temp_dir)
        runner = scripted_runner(
            [
                (UNCLOSED_ITEMIZE, False),
                (UNCLOSED_TIPBOX, False),
                ("Output written on book.pdf", True),
            ]
        )
        engine = CompilationEngine(runner=runner)
        engine.compile(ws)

        assert [a.outcome for a in engine.attempts] == [
            AttemptOutcome.RECOVERABLE,
            AttemptOutcome.RECOVERABLE,
            AttemptOutcome.SUCCESS,
        ]
        assert engine.fixes_applied == 2
        tex = ws.tex_path.read_text(encoding="utf-8")
        assert tex.index("\\end{itemize}") < tex.index("\\end{tipbox}") < tex.index("\\end{document}")

    def test_fatal_after_max_attempts(self, temp_dir, scripted_runner):
        """Test CompilationFailed carries the last log tail."""
        ws = _workspace(temp_dir)
        runner = scripted_runner([("! Emergency stop.\n*** (job aborted)", False)])
        engine = CompilationEngine(runner=runner, max_attempts=3)
        with pytest.raises(CompilationFailed) as exc:
            engine.compile(ws)
        assert "Emergency stop" in exc.value.log_tail
        assert len(exc.value.attempts) == 3
        assert exc.value.attempts[-1].outcome == AttemptOutcome.FATAL
        assert len(runner.calls) == 6

    def test_retry_without_fix(self, temp_dir, scripted_runner):
        """Test an unrecognised failure still gets another attempt."""
        ws = _workspace(temp_dir)
        runner = scripted_runner([("! Emergency stop.", False), ("done", True)])
        engine = CompilationEngine(runner=runner)
        engine.compile(ws)
        assert engine.attempts[0].fix is None
        assert engine.attempts[1].outcome == AttemptOutcome.SUCCESS

    def test_stale_pdf_removed(self, temp_dir, scripted_runner):
        """Test a PDF left by an earlier build does not count as success."""
        ws = _workspace(temp_dir)
        ws.pdf_path.write_bytes(b"%PDF old")
        runner = scripted_runner([("! Emergency stop.", False)])
        with pytest.raises(CompilationFailed):
            CompilationEngine(runner=runner, max_attempts=1).compile(ws)
        assert not ws.pdf_path.exists()

    def test_timeout_stops_passes(self, temp_dir):
        """Test a timed-out pass ends the attempt early."""
        ws = _workspace(temp_dir)
        calls = []

        def runner(args, cwd, timeout, stdout_path):
            calls.append(timeout)
            return TIMED_OUT

        with pytest.raises(CompilationFailed):
            CompilationEngine(runner=runner, max_attempts=2, timeout=7).compile(ws)
        assert calls == [7, 7]

    def test_missing_binary(self, temp_dir):
        """Test a missing compiler binary is reported as a failure."""
        ws = _workspace(temp_dir)

        def runner(args, cwd, timeout, stdout_path):
            raise FileNotFoundError(args[0])

        with pytest.raises(CompilationFailed) as exc:
            CompilationEngine(runner=runner).compile(ws)
        assert "not found" in str(exc.value)


class TestCountPages:
    """Tests for page counting."""

    def test_unreadable_pdf_gives_none(self, temp_dir):
        """Test a broken PDF yields None rather than zero."""
        path = temp_dir / "broken.pdf"
        path.write_bytes(b"not a pdf")
        assert count_pages(path, binary="definitely-not-pdfinfo") is None

    def test_unrunnable_pdfinfo_falls_back(self, temp_dir, monkeypatch):
        """Test a pdfinfo path that cannot be executed falls through to PyMuPDF."""
        fake_bin = temp_dir / "pdfinfo"
        fake_bin.write_text("not a program", encoding="utf-8")
        fake_bin.chmod(0o644)
        pdf = temp_dir / "book.pdf"
        pdf.write_bytes(b"%PDF-1.4")

        class _Doc:
            page_count = 7

            def close(self):
                pass

        class _Fitz:
            @staticmethod
            def open(path):
                return _Doc()

        monkeypatch.setattr(compiler_module, "fitz", _Fitz)
        assert count_pages(pdf, binary=str(fake_bin)) == 7
