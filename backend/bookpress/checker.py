"""
BookPress V1.0 — Structure QA Checker
=====================================
Validates an assembled LaTeX document before it goes to the compiler.
Reports issues to the terminal without raising exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import regex as re

from bookpress.sanitizer import KNOWN_ENVS, brace_depth, count_env_markers

_MARKER_RE = re.compile(r"^% ── Chapter (\d+): .* ──$", re.MULTILINE)
_CHAPTER_RE = re.compile(r"\\chapter\*?\{")
_ECHO_RE = re.compile(r"\\(?:begin|end)\{\.{0,3}\}")


@dataclass
class QAReport:
    chapters: int = 0
    markers: int = 0
    sections: int = 0
    brace_depth: int = 0
    env_imbalance: dict[str, int] = field(default_factory=dict)
    prompt_echoes: int = 0
    has_end_document: bool = False

    @property
    def ok(self) -> bool:
        return (
            self.brace_depth == 0
            and not self.env_imbalance
            and self.prompt_echoes == 0
            and self.has_end_document
        )

    def to_dict(self) -> dict:
        return {
            "chapters": self.chapters,
            "markers": self.markers,
            "sections": self.sections,
            "brace_depth": self.brace_depth,
            "env_imbalance": dict(self.env_imbalance),
            "prompt_echoes": self.prompt_echoes,
            "has_end_document": self.has_end_document,
            "ok": self.ok,
        }


def check_document(tex: str) -> QAReport:
    """Count structural features of an assembled document."""
    report = QAReport(
        chapters=len(_CHAPTER_RE.findall(tex)),
        markers=len(_MARKER_RE.findall(tex)),
        sections=len(re.findall(r"\\section\*?\{", tex)),
        brace_depth=brace_depth(tex),
        prompt_echoes=len(_ECHO_RE.findall(tex)),
        has_end_document="\\end{document}" in tex,
    )

    for env in KNOWN_ENVS:
        opens, closes = count_env_markers(tex, env)
        if opens != closes:
            report.env_imbalance[env] = opens - closes

    return report


def print_report(report: QAReport) -> None:
    print("\n" + "═" * 58)
    print("🔎  STRUCTURE QA — ASSEMBLED DOCUMENT")
    print("═" * 58)

    print("📊 STRUCTURE METRICS:")
    print(f"   Chapters: {report.chapters}")
    print(f"   Boundary markers: {report.markers}")
    print(f"   Sections: {report.sections}")

    print("\n🧱  BALANCE:")
    if report.brace_depth == 0:
        print("   ✅ Braces balanced.")
    else:
        print(f"   ❌ Brace depth: {report.brace_depth}")

    if report.env_imbalance:
        print(f"   ❌ Unbalanced environments: {len(report.env_imbalance)}")
        for env, delta in list(report.env_imbalance.items())[:5]:
            print(f"      - {env}: {delta:+d}")
    else:
        print("   ✅ All known environments balanced.")

    if report.prompt_echoes:
        print(f"   ❌ Prompt echoes: {report.prompt_echoes}")
    if not report.has_end_document:
        print("   ❌ Missing \\end{document}")

    print("═" * 58 + "\n")
