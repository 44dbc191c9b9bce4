"""
BookPress V1.0 — Compilation Retry Engine
=========================================
Drives pdflatex through a bounded number of attempts. Each attempt runs
several passes (cross references and the table of contents need two);
between failed attempts the .log is matched against known error
signatures and the .tex file is patched in place.

    Attempting(1) ──pdf──▶ Succeeded
         │ no pdf, auto-fix
         ▼
    Attempting(2) ──pdf──▶ Succeeded
         │ no pdf, auto-fix
         ▼
    Attempting(3) ──pdf──▶ Succeeded
         │ no pdf
         ▼
       Fatal  (CompilationFailed)

The process runner is injectable so the state machine can be exercised
without a TeX installation.
"""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

import fitz  # PyMuPDF
import regex as re

from bookpress.config import (
    COMPILE_TIMEOUT,
    LOG_READ_CAP,
    LOG_TAIL_CHARS,
    MAX_ATTEMPTS,
    PAGE_COUNT_TIMEOUT,
    PASSES_PER_ATTEMPT,
    PDFINFO_BIN,
    PDFLATEX_BIN,
)
from bookpress.errors import CompilationFailed
from bookpress.models import AttemptOutcome, BuildWorkspace, CompilationAttempt
from bookpress.sanitizer import fix_environment_nesting, fix_section_arguments, repair_tables

Runner = Callable[[list, Path, int, Path], int]

TIMED_OUT = -1
AUTO_FIX_PREFIX = "% AUTO-FIX: "


# ──────────────────────────────────────────────
# PROCESS RUNNER
# ──────────────────────────────────────────────
def subprocess_runner(args: list, cwd: Path, timeout: int, stdout_path: Path) -> int:
    """Run one compiler pass, streaming its output into ``stdout_path``."""
    with open(stdout_path, "wb") as out:
        try:
            result = subprocess.run(
                args,
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            print(f"[Compiler] ⏱️ Pass timed out after {timeout}s")
            return TIMED_OUT
    return result.returncode


def read_log(path: Path, cap: int = LOG_READ_CAP) -> str:
    """Read at most ``cap`` bytes from the end of a log file."""
    if not path.exists():
        return ""
    size = path.stat().st_size
    with open(path, "rb") as f:
        if size > cap:
            f.seek(size - cap)
        data = f.read(cap)
    return data.decode("utf-8", errors="replace")


def log_tail(log: str, limit: int = LOG_TAIL_CHARS) -> str:
    return log[-limit:] if len(log) > limit else log


# ──────────────────────────────────────────────
# AUTO-FIX SIGNATURES
# ──────────────────────────────────────────────
_UNCLOSED_AT_END = re.compile(
    r"\\begin\{([^}]+)\} on input line (\d+) ended by \\end\{document\}"
)
_MISMATCHED_END = re.compile(r"\\begin\{([^}]+)\}[\s\S]*?ended by \\end\{([^}]+)\}")
_UNDEFINED_CS = re.compile(r"! Undefined control sequence\.\s*\n.*?l\.(\d+)\s*(\\[a-zA-Z]+)")
_EMPTY_ENV_LINE = re.compile(r"^.*\\(begin|end)\{\.{0,3}\}.*$", re.MULTILINE)
_TABULARX_CR = re.compile(r"Missing \\cr inserted[\s\S]*?l\.(\d+)\s*\\end\{tabularx\}")
_SECTION_LINE = re.compile(r"^\s*\\(?:chapter|section|subsection|subsubsection|caption)\*?\{")


def fix_unclosed_environment(tex: str, log: str) -> Optional[str]:
    """Close an environment that ran into ``\\end{document}``."""
    m = _UNCLOSED_AT_END.search(log)
    if not m:
        return None
    env = m.group(1)
    lines = tex.split("\n")
    for i in range(len(lines) - 1, -1, -1):
        if "\\end{document}" in lines[i]:
            lines.insert(i, f"\\end{{{env}}}")
            return "\n".join(lines)
    return tex + f"\n\\end{{{env}}}"


def fix_mismatched_end(tex: str, log: str) -> Optional[str]:
    """Rewrite the first ``\\end{Y}`` to the ``\\end{X}`` the log expected."""
    m = _MISMATCHED_END.search(log)
    if not m:
        return None
    expected, found = m.group(1), m.group(2)
    marker = f"\\end{{{found}}}"
    if expected == found or found == "document" or marker not in tex:
        return None
    return tex.replace(marker, f"\\end{{{expected}}}", 1)


def fix_undefined_control_sequence(tex: str, log: str) -> Optional[str]:
    """Comment out the source line holding an undefined command."""
    m = _UNDEFINED_CS.search(log)
    if not m:
        return None
    line_no = int(m.group(1))
    lines = tex.split("\n")
    if not 1 <= line_no <= len(lines):
        return None
    line = lines[line_no - 1]
    if line.startswith(AUTO_FIX_PREFIX):
        return None
    lines[line_no - 1] = AUTO_FIX_PREFIX + line
    return "\n".join(lines)


def fix_prompt_echo(tex: str, log: str) -> Optional[str]:
    r"""Drop lines with empty ``\begin{}``/``\end{...}`` placeholders."""
    if "Missing \\endcsname inserted" not in log:
        return None
    fixed = _EMPTY_ENV_LINE.sub(AUTO_FIX_PREFIX + "removed prompt echo", tex)
    return fixed if fixed != tex else None


def fix_runaway_argument(tex: str, log: str) -> Optional[str]:
    if "Runaway argument" not in log and "@xdblarg" not in log:
        return None
    lines = tex.split("\n")
    for i, line in enumerate(lines):
        if _SECTION_LINE.match(line):
            lines[i] = re.sub(r"\s*\\par\b\s*", " ", line)
    fixed = fix_section_arguments("\n".join(lines))
    return fixed if fixed != tex else None


def fix_tabularx_rows(tex: str, log: str) -> Optional[str]:
    if not _TABULARX_CR.search(log):
        return None
    fixed = repair_tables(tex)
    return fixed if fixed != tex else None


def fix_table_nesting(tex: str, log: str) -> Optional[str]:
    if "Missing \\cr" not in log and "Misplaced \\cr" not in log:
        return None
    fixed = fix_environment_nesting(tex)
    return fixed if fixed != tex else None


AUTO_FIXES: list[tuple[str, Callable[[str, str], Optional[str]]]] = [
    ("unclosed_environment", fix_unclosed_environment),
    ("mismatched_end", fix_mismatched_end),
    ("undefined_control_sequence", fix_undefined_control_sequence),
    ("prompt_echo", fix_prompt_echo),
    ("runaway_argument", fix_runaway_argument),
    ("tabularx_rows", fix_tabularx_rows),
    ("table_nesting", fix_table_nesting),
]


def apply_auto_fix(tex: str, log: str) -> tuple[str, Optional[str]]:
    """
    Try each known signature in order; the first one that changes the
    source wins. Returns ``(tex, fix_name)``; ``fix_name`` is None when
    nothing matched.
    """
    for name, fixer in AUTO_FIXES:
        fixed = fixer(tex, log)
        if fixed is not None and fixed != tex:
            return fixed, name
    return tex, None


# ──────────────────────────────────────────────
# RETRY ENGINE
# ──────────────────────────────────────────────
class CompilationEngine:
    """Bounded retry loop around pdflatex for one build workspace."""

    def __init__(
        self,
        runner: Optional[Runner] = None,
        max_attempts: int = MAX_ATTEMPTS,
        passes: int = PASSES_PER_ATTEMPT,
        timeout: int = COMPILE_TIMEOUT,
        binary: str = PDFLATEX_BIN,
    ):
        self.runner = runner or subprocess_runner
        self.max_attempts = max_attempts
        self.passes = passes
        self.timeout = timeout
        self.binary = binary
        self.attempts: list[CompilationAttempt] = []

    @property
    def fixes_applied(self) -> int:
        return sum(1 for a in self.attempts if a.fix)

    def _command(self, ws: BuildWorkspace) -> list:
        return [
            self.binary,
            "-interaction=nonstopmode",
            f"-output-directory={ws.path}",
            str(ws.tex_path),
        ]

    def _run_passes(self, ws: BuildWorkspace) -> int:
        ran = 0
        for _ in range(self.passes):
            ran += 1
            try:
                rc = self.runner(self._command(ws), ws.path, self.timeout, ws.stdout_path)
            except FileNotFoundError:
                raise CompilationFailed(
                    f"{self.binary} not found. Please install a TeX distribution.",
                    attempts=self.attempts,
                )
            if rc == TIMED_OUT:
                break
        return ran

    def compile(self, ws: BuildWorkspace) -> Path:
        """
        Compile ``ws.tex_path`` into ``ws.pdf_path``.

        Raises
        ------
        CompilationFailed
            When no PDF exists after the last attempt.
        """
        self.attempts = []
        ws.pdf_path.unlink(missing_ok=True)

        for attempt in range(1, self.max_attempts + 1):
            start = time.time()
            passes = self._run_passes(ws)
            log = read_log(ws.log_path)
            tail = log_tail(log)

            if ws.pdf_path.exists():
                self.attempts.append(
                    CompilationAttempt(attempt, passes, tail, AttemptOutcome.SUCCESS)
                )
                print(
                    f"[Compiler] ✅ PDF ready after attempt {attempt} "
                    f"({time.time() - start:.1f}s)"
                )
                return ws.pdf_path

            if attempt == self.max_attempts:
                self.attempts.append(
                    CompilationAttempt(attempt, passes, tail, AttemptOutcome.FATAL)
                )
                print(f"[Compiler] ❌ No PDF after {attempt} attempts")
                raise CompilationFailed(
                    f"LaTeX compilation failed after {attempt} attempts",
                    log_tail=tail,
                    attempts=self.attempts,
                )

            tex = ws.tex_path.read_text(encoding="utf-8")
            fixed, fix_name = apply_auto_fix(tex, log)
            if fix_name:
                ws.tex_path.write_text(fixed, encoding="utf-8")
                print(f"[Compiler] 🔧 Attempt {attempt} failed, applied {fix_name}")
            else:
                print(f"[Compiler] ⚠️ Attempt {attempt} failed, no known fix, retrying")
            self.attempts.append(
                CompilationAttempt(attempt, passes, tail, AttemptOutcome.RECOVERABLE, fix_name)
            )

        # max_attempts < 1
        raise CompilationFailed("No compilation attempts configured", attempts=self.attempts)


# ──────────────────────────────────────────────
# PAGE COUNT
# ──────────────────────────────────────────────
def count_pages(pdf_path: Path, binary: str = PDFINFO_BIN) -> Optional[int]:
    """Page count via pdfinfo, then PyMuPDF. None when both fail."""
    try:
        result = subprocess.run(
            [binary, str(pdf_path)],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=PAGE_COUNT_TIMEOUT,
        )
        m = re.search(r"^Pages:\s+(\d+)", result.stdout, re.MULTILINE)
        if m:
            return int(m.group(1))
    except (subprocess.SubprocessError, OSError):
        pass

    try:
        doc = fitz.open(str(pdf_path))
        pages = doc.page_count
        doc.close()
        return pages
    except Exception as e:
        print(f"[Compiler] ⚠️ Could not read page count: {e}")
        return None
