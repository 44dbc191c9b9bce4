"""
Tests for the Fragment Sanitizer

Environment and brace balance, leaked preamble and prompt-echo stripping,
table repairs and the fixpoint behaviour of sanitize_fragment.
"""

from bookpress.sanitizer import (
    KNOWN_ENVS,
    balance_braces,
    balance_environments,
    brace_depth,
    collapse_blank_lines,
    count_env_markers,
    escape_latex,
    escape_percent,
    fix_environment_nesting,
    fix_section_arguments,
    repair_tables,
    sanitize_fragment,
    strip_preamble_artifacts,
    strip_prompt_echoes,
)


def _balanced(text: str) -> bool:
    for env in KNOWN_ENVS:
        opens, closes = count_env_markers(text, env)
        if opens != closes:
            return False
    return True


class TestBraceDepth:
    """Tests for brace scanning."""

    def test_balanced(self):
        """Test a balanced group has depth zero."""
        assert brace_depth(r"\textbf{bold {nested}}") == 0

    def test_escaped_braces_ignored(self):
        """Test escaped braces do not count."""
        assert brace_depth(r"a \{ b") == 0

    def test_comment_ignored(self):
        """Test braces inside comments do not count."""
        assert brace_depth("text % {{{\nmore") == 0

    def test_unclosed_and_orphan(self):
        """Test unclosed groups count up, orphan closers count down."""
        assert brace_depth("{{a}") == 1
        assert brace_depth("a}") == -1


class TestBalancing:
    """Tests for environment and brace repair."""

    def test_missing_end_appended(self):
        """Test an unclosed box gets its \\end appended."""
        fixed = balance_environments("\\begin{tipbox}{Tip}\nText")
        assert fixed.rstrip().endswith("\\end{tipbox}")
        assert count_env_markers(fixed, "tipbox") == (1, 1)

    def test_orphan_end_removed(self):
        """Test a closer without an opener is dropped."""
        fixed = balance_environments("Text\n\\end{itemize}\nMore")
        assert "\\end{itemize}" not in fixed
        assert "More" in fixed

    def test_nested_closers_in_order(self):
        """Test innermost environments are closed first."""
        fixed = balance_environments("\\begin{tipbox}{T}\n\\begin{itemize}\n\\item a")
        assert fixed.index("\\end{itemize}") < fixed.index("\\end{tipbox}")

    def test_balanced_input_unchanged(self):
        """Test already balanced text is left alone."""
        text = "\\begin{quote}\nWise words.\n\\end{quote}"
        assert balance_environments(text) == text

    def test_reversed_table_closers(self):
        """Test swapped table closers are put back in order."""
        fixed = fix_environment_nesting("\\end{table}\n\\end{tabularx}")
        assert fixed == "\\end{tabularx}\n\\end{table}"

    def test_balance_braces(self):
        """Test orphan closers are removed and open groups closed."""
        assert balance_braces("a}b") == "ab"
        assert balance_braces("\\textbf{x") == "\\textbf{x}"

    def test_closers_kept_out_of_trailing_comment(self):
        """Test closing braces never land inside a comment on the last line."""
        fixed = balance_braces("\\textbf{x % note")
        assert fixed == "\\textbf{x % note\n}"
        assert brace_depth(fixed) == 0


class TestStripping:
    """Tests for leaked preamble and prompt echoes."""

    def test_preamble_removed(self):
        """Test a whole leaked document wrapper is removed."""
        text = (
            "\\documentclass{article}\n\\usepackage{amsmath}\n\\begin{document}\n"
            "Body text.\n\\end{document}"
        )
        result = strip_preamble_artifacts(text)
        assert "\\documentclass" not in result
        assert "\\end{document}" not in result
        assert "Body text." in result

    def test_stray_usepackage_and_includes(self):
        """Test package and file-inclusion directives are removed."""
        text = "\\usepackage[utf8]{inputenc}\n\\input{secret}\n\\write18{rm -rf x}\nKeep me."
        result = strip_preamble_artifacts(text)
        assert "\\usepackage" not in result
        assert "\\input" not in result
        assert "\\write18" not in result
        assert "Keep me." in result

    def test_prompt_echoes(self):
        """Test checklist lines and empty environment placeholders are removed."""
        text = (
            "QUALITY CHECKLIST:\n"
            "□ Close every environment\n"
            "\\begin{...}\n"
            "⚠️ STRICT MAXIMUM 3000 words\n"
            "Real content."
        )
        result = strip_prompt_echoes(text)
        assert "QUALITY CHECKLIST" not in result
        assert "□" not in result
        assert "\\begin{...}" not in result
        assert "STRICT MAXIMUM" not in result
        assert "Real content." in result


class TestSmallRepairs:
    """Tests for the smaller repair helpers."""

    def test_escape_latex(self):
        """Test plain text special characters are escaped."""
        assert escape_latex("R&D 50% #1") == "R\\&D 50\\% \\#1"
        assert escape_latex("a\\b") == "a\\textbackslash{}b"

    def test_section_argument_flattened(self):
        """Test newlines and \\par inside a section title are flattened."""
        fixed = fix_section_arguments("\\section{Long\\par title\nhere}")
        assert fixed == "\\section{Long title here}"

    def test_collapse_blank_lines(self):
        """Test long runs of blank lines are shortened."""
        assert collapse_blank_lines("a\n\n\n\n\n\nb") == "a\n\n\nb"

    def test_tabularx_row_padding(self):
        """Test short table rows are padded to the declared column count."""
        text = (
            "\\begin{tabularx}{\\textwidth}{lXX}\n"
            "A & B & C \\\\\n"
            "only & two \\\\\n"
            "\\end{tabularx}"
        )
        fixed = repair_tables(text)
        rows = [line for line in fixed.split("\n") if "only" in line]
        assert rows[0].count("&") == 2

    def test_tabularx_row_merge(self):
        """Test surplus cells are merged into the last column."""
        text = (
            "\\begin{tabularx}{\\textwidth}{lX}\n"
            "a & b & c \\\\\n"
            "\\end{tabularx}"
        )
        fixed = repair_tables(text)
        assert "a & b, c \\\\" in fixed

    def test_last_row_terminated(self):
        """Test the row before \\bottomrule ends with a row break."""
        text = "\\begin{tabular}{ll}\n\\toprule\na & b\n\\bottomrule\n\\end{tabular}"
        fixed = repair_tables(text)
        assert "a & b \\\\" in fixed


class TestSanitizeFragment:
    """Tests for the full sanitizer entry point."""

    def test_empty(self):
        """Test empty input."""
        assert sanitize_fragment("") == ""

    def test_result_balanced(self):
        """Test a broken fragment comes out balanced."""
        broken = (
            "\\documentclass{book}\\begin{document}\n"
            "\\section{Intro}\n"
            "Growth of 20% a year.\n"
            "\\begin{warningbox}{Careful}\n"
            "\\begin{itemize}\n\\item \\textbf{first\n"
            "\\end{enumerate}\n"
            "WORD COUNT TARGET: 2000\n"
        )
        result = sanitize_fragment(broken)
        assert _balanced(result)
        assert brace_depth(result) == 0
        assert "\\documentclass" not in result
        assert "WORD COUNT TARGET" not in result
        assert "20\\%" in result

    def test_idempotent(self):
        """Test sanitizing twice changes nothing more."""
        broken = (
            "\\section{A\ntitle}\n"
            "\\begin{examplebox}{Ex}\nText with } stray brace\n"
            "\\begin{tabularx}{\\textwidth}{lX}\na & b & c\n\\end{tabularx}\n"
            "\n\n\n\n\n\nEnd 5%"
        )
        once = sanitize_fragment(broken)
        assert sanitize_fragment(once) == once

    def test_clean_fragment_untouched(self):
        """Test a well-formed fragment passes through unchanged."""
        clean = "\\section{Clean}\nA paragraph with \\textbf{bold} text.\n"
        assert sanitize_fragment(clean) == clean

    def test_percent_after_line_break(self):
        """Test a % right after a \\\\ line break is escaped, not left as a comment."""
        assert escape_percent("a\\\\% note") == "a\\\\\\% note"
        assert escape_percent("50\\% done") == "50\\% done"
        assert escape_percent("\\\\\\% kept") == "\\\\\\% kept"

    def test_line_break_percent_at_fragment_end(self):
        """Test an open group ending in a \\\\% line reaches depth 0 and stays stable."""
        broken = "Plan:\n\\textbf{Bold line\\\\% note"
        once = sanitize_fragment(broken)
        assert brace_depth(once) == 0
        assert sanitize_fragment(once) == once
        assert once.endswith("\\\\\\% note}")

    def test_minimal_line_break_percent(self):
        """Test the shortest such fragment."""
        once = sanitize_fragment("{\\\\%")
        assert once == "{\\\\\\%}"
        assert sanitize_fragment(once) == once
