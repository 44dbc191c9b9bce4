"""
BookPress V1.0 — Review Engine
==============================
Scores a finished manuscript against a fixed editorial rubric and lists
what is missing or redundant. The manuscript is condensed to plain text
first so the review prompt stays small.

A review never fails the build: unreachable or unparseable oracle output
degrades to a neutral score that skips revision.
"""

from __future__ import annotations

from typing import Optional

import regex as re

from bookpress.config import NEUTRAL_SCORE
from bookpress.errors import OracleError
from bookpress.models import (
    BookMeta,
    ChapterFragment,
    ParseResult,
    Redundancy,
    RemovalCandidate,
    ReviewResult,
)
from bookpress.oracle import Oracle, extract_json_object

LANG_NAMES = {
    "en": "English",
    "pl": "Polish",
    "de": "German",
    "es": "Spanish",
    "fr": "French",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
}

MAX_LISTED = 3
PARSE_FALLBACK_SUMMARY = "Review parse error, skipping revision"

_BOX = r"(?:tipbox|keyinsight|warningbox|examplebox)"
_TABLE = r"(?:table|tabularx|tabular)"


def lang_name(code: str) -> str:
    return LANG_NAMES.get(code, "English")


# ──────────────────────────────────────────────
# CONDENSING
# ──────────────────────────────────────────────
def condense_chapter(text: str) -> str:
    """Strip heavy LaTeX markup, keeping headings and box/table placeholders."""
    text = re.sub(rf"\\begin\{{{_BOX}\}}\{{[^}}]*\}}", "\n[BOX: ", text)
    text = re.sub(rf"\\end\{{{_BOX}\}}", "]\n", text)
    text = re.sub(rf"\\begin\{{{_TABLE}\}}[\s\S]*?\\end\{{{_TABLE}\}}", "[TABLE]", text)
    text = re.sub(r"\\(?:chapter|section|subsection)\{([^}]*)\}", r"\n## \1\n", text)
    text = re.sub(r"\\(?:textbf|textit|emph)\{([^}]*)\}", r"\1", text)
    text = re.sub(r"\\footnote\{[^}]*\}", "", text)
    text = re.sub(r"\\[a-zA-Z]+", "", text)
    text = re.sub(r"[{}]", "", text)
    return re.sub(r"\n{3,}", "\n\n", text)


def condense_book(chapters: list[ChapterFragment]) -> str:
    return "\n\n".join(
        f'═══ CHAPTER {ch.number}: "{ch.title}" ═══\n{condense_chapter(ch.content)}'
        for ch in chapters
    )


# ──────────────────────────────────────────────
# PROMPT
# ──────────────────────────────────────────────
def build_review_prompt(
    chapters: list[ChapterFragment],
    title: str,
    topic: str,
    language: str,
    guidelines: Optional[str] = None,
) -> str:
    guideline_line = f"AUTHOR GUIDELINES: {guidelines}\n" if guidelines else ""
    return f"""You are an expert book editor reviewing a completed eBook.

BOOK: "{title}"
TOPIC: {topic}
LANGUAGE: {lang_name(language)}
{guideline_line}
Evaluate the complete text below on:
1. COMPLETENESS: essential subtopics a reader would expect. What is missing?
2. REDUNDANCY: the same specific point made in two or more chapters.
3. OFF-TOPIC CONTENT: anything that does not belong.
4. OPENING AND CLOSING: a strong start and a satisfying conclusion.
5. PRACTICAL VALUE: is it actionable and useful?

SCORE 1-10: 9-10 publish-ready, 7-8 minor gaps, 5-6 notable gaps, 1-4 major problems.

RULES:
- missing_topics: only essential topics, at most {MAX_LISTED}.
- removals: only truly off-topic or redundant content, at most {MAX_LISTED}.
- needs_revision: true if score < 8 and there are actionable improvements.

Respond with a single JSON object and nothing else:
{{
  "missing_topics": ["topic"],
  "redundancies": [{{"chapters": [1, 2], "description": "..."}}],
  "removals": [{{"chapter": 1, "description": "..."}}],
  "score": 7,
  "needs_revision": true,
  "summary": "One sentence assessment"
}}

━━━ BOOK TEXT ━━━

{condense_book(chapters)}"""


# ──────────────────────────────────────────────
# PARSING
# ──────────────────────────────────────────────
def _clamp_score(value) -> int:
    try:
        score = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return NEUTRAL_SCORE
    return min(10, max(1, score))


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _int_list(values) -> list[int]:
    out = []
    for v in _as_list(values):
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            continue
    return out


def fallback_review() -> ReviewResult:
    return ReviewResult(
        score=NEUTRAL_SCORE, needs_revision=False, summary=PARSE_FALLBACK_SUMMARY
    )


def parse_review(text: str) -> ParseResult[ReviewResult]:
    """Parse an oracle review response; malformed output yields the neutral fallback."""
    data = extract_json_object(text)
    if data is None:
        return ParseResult.fallback(fallback_review(), "no JSON object in review response")

    missing = [str(t).strip() for t in _as_list(data.get("missing_topics")) if str(t).strip()][:MAX_LISTED]

    redundancies = []
    for item in _as_list(data.get("redundancies")):
        if isinstance(item, dict):
            redundancies.append(
                Redundancy(_int_list(item.get("chapters")), str(item.get("description", "")))
            )

    removals = []
    for item in _as_list(data.get("removals")):
        if not isinstance(item, dict):
            continue
        try:
            chapter = int(item.get("chapter"))
        except (TypeError, ValueError):
            continue
        removals.append(RemovalCandidate(chapter, str(item.get("description", ""))))

    return ParseResult.success(
        ReviewResult(
            missing_topics=missing,
            redundancies=redundancies,
            removals=removals[:MAX_LISTED],
            score=_clamp_score(data.get("score")),
            needs_revision=_as_bool(data.get("needs_revision", False)),
            summary=str(data.get("summary") or ""),
        )
    )


def review_book(oracle: Oracle, chapters: list[ChapterFragment], meta: BookMeta) -> ReviewResult:
    prompt = build_review_prompt(chapters, meta.title, meta.topic, meta.language, meta.guidelines)
    try:
        response = oracle.complete(prompt, max_tokens=800)
    except OracleError as e:
        print(f"[Review] ⚠️ Oracle unavailable: {e}")
        return fallback_review()

    result = parse_review(response)
    if not result.ok:
        print(f"[Review] ⚠️ Review JSON parse failed: {result.error}")
    return result.value
