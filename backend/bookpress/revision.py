"""
BookPress V1.0 — Text-Surgery Engine
====================================
Applies the review's findings as targeted edits: anchored removals of
redundant passages, then anchored insertions for missing topics. The
oracle proposes anchors; every anchor is verified against the live
chapter text before anything is changed.

    removal   : delete [start-anchor … end-anchor]   (skip if not found or reversed)
    insertion : splice after a unique anchor          (append if absent or ambiguous)
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

import regex as re

from bookpress.config import MAX_INSERTIONS, MAX_REMOVALS, REMOVAL_CONTEXT_CHARS
from bookpress.errors import OracleError
from bookpress.models import (
    BookMeta,
    ChapterFragment,
    Insertion,
    ParseResult,
    Removal,
    ReviewResult,
    RevisionStats,
)
from bookpress.oracle import Oracle, extract_json_object
from bookpress.review import lang_name


# ──────────────────────────────────────────────
# ANCHORED EDITS (pure)
# ──────────────────────────────────────────────
def apply_removal(text: str, start_anchor: str, end_anchor: str) -> Optional[str]:
    """
    Delete from the first ``start_anchor`` through the end of the first
    ``end_anchor``. Returns None when either anchor is missing or the end
    does not come after the start.
    """
    if not start_anchor or not end_anchor:
        return None
    start = text.find(start_anchor)
    end = text.find(end_anchor)
    if start == -1 or end == -1 or end <= start:
        return None
    return text[:start] + text[end + len(end_anchor):]


def apply_insertion(text: str, anchor: str, content: str) -> tuple[str, bool]:
    """
    Splice ``content`` right after ``anchor``. When the anchor is absent
    or occurs more than once the content is appended at the end instead.

    Returns ``(new_text, appended)``.
    """
    if anchor and text.count(anchor) == 1:
        idx = text.find(anchor) + len(anchor)
        return text[:idx] + "\n\n" + content + "\n\n" + text[idx:], False
    return text + "\n\n" + content, True


def unescape_content(value: str) -> str:
    r"""``\\section`` → ``\section``; a literal ``\n`` not followed by a letter → newline."""
    value = re.sub(r"\\\\(?=[a-zA-Z])", lambda _: "\\", value)
    return re.sub(r"\\n(?![a-zA-Z])", "\n", value)


def unescape_anchor(value: str) -> str:
    return value.replace("\\\\", "\\")


# ──────────────────────────────────────────────
# PROMPTS
# ──────────────────────────────────────────────
def chapter_overview(chapters: list[ChapterFragment]) -> str:
    """Chapter titles with their ``\\section`` headings."""
    blocks = []
    for ch in chapters:
        sections = re.findall(r"\\section\{([^}]*)\}", ch.content)
        lines = [f'Ch.{ch.number}: "{ch.title}"'] + [f"  - {s}" for s in sections]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_removal_prompt(chapter: ChapterFragment, description: str) -> str:
    return f"""Identify the exact boundaries of content to remove from a LaTeX chapter.

CHAPTER {chapter.number}: "{chapter.title}"
WHAT TO REMOVE: {description}

Give two verbatim strings from the LaTeX below: where the content to remove
starts and where it ends. Each must be unique in the text (20-40 chars).
Mark only the redundant or off-topic content, not the surrounding material.

Respond with a single JSON object:
{{"remove_start": "exact string", "remove_end": "exact string"}}

CHAPTER LATEX:
{chapter.content[:REMOVAL_CONTEXT_CHARS]}"""


def build_insertion_prompt(
    chapters: list[ChapterFragment], topic: str, meta: BookMeta
) -> str:
    language = lang_name(meta.language)
    return f"""You are writing a MISSING section for an eBook.

BOOK: "{meta.title}" | TOPIC: {meta.topic} | LANGUAGE: {language}

THE BOOK HAS THESE CHAPTERS:
{chapter_overview(chapters)}

MISSING TOPIC TO ADD: "{topic}"

1. Choose the chapter this topic fits best.
2. Write a new \\subsection{{}} on it (150-300 words) in {language}, using the
   book's LaTeX conventions. Close every environment you open.
3. Give a verbatim string from that chapter, appearing exactly once, to insert after.

Respond with a single JSON object (escape LaTeX backslashes as \\\\):
{{"target_chapter": 2, "insert_after": "\\\\end{{keyinsight}}", "new_content": "\\\\subsection{{Title}}\\n\\nContent..."}}"""


# ──────────────────────────────────────────────
# PARSING
# ──────────────────────────────────────────────
def parse_removal(text: str, chapter: int) -> ParseResult[Optional[Removal]]:
    data = extract_json_object(text)
    if data is None:
        return ParseResult.fallback(None, "no JSON object in removal response")
    start = str(data.get("remove_start") or "")
    end = str(data.get("remove_end") or "")
    if not start or not end:
        return ParseResult.fallback(None, "empty removal boundaries")
    return ParseResult.success(Removal(chapter, start, end))


def parse_insertion(text: str) -> ParseResult[Optional[Insertion]]:
    data = extract_json_object(text)
    if data is None:
        return ParseResult.fallback(None, "no JSON object in insertion response")
    try:
        chapter = int(data.get("target_chapter"))
    except (TypeError, ValueError):
        return ParseResult.fallback(None, "missing target chapter")
    anchor = unescape_anchor(str(data.get("insert_after") or ""))
    content = unescape_content(str(data.get("new_content") or ""))
    if not anchor or not content.strip():
        return ParseResult.fallback(None, "empty insertion payload")
    return ParseResult.success(Insertion(chapter, anchor, content))


# ──────────────────────────────────────────────
# REVISION PASS
# ──────────────────────────────────────────────
def _ask(oracle: Oracle, prompt: str, max_tokens: int) -> Optional[str]:
    try:
        return oracle.complete(prompt, max_tokens=max_tokens)
    except OracleError as e:
        print(f"[Revision] ⚠️ Oracle unavailable: {e}")
        return None


def needs_revision(review: ReviewResult, threshold: int) -> bool:
    return review.needs_revision and review.score < threshold


def revise_chapters(
    oracle: Oracle,
    chapters: list[ChapterFragment],
    review: ReviewResult,
    meta: BookMeta,
    stats: RevisionStats,
) -> list[ChapterFragment]:
    """
    Run removals then insertions against a copy of ``chapters``.

    ``stats`` is updated in place; the returned list holds the edited
    chapters in their original order.
    """
    by_number = {ch.number: replace(ch) for ch in chapters}

    for candidate in review.removals[:MAX_REMOVALS]:
        ch = by_number.get(candidate.chapter)
        if ch is None:
            continue
        print(f"[Revision] 🗑️  Removing from Ch.{ch.number}: {candidate.description[:60]}")
        response = _ask(oracle, build_removal_prompt(ch, candidate.description), 300)
        parsed = parse_removal(response or "", ch.number)
        if not parsed.ok:
            stats.removals_skipped += 1
            print(f"[Revision] ⚠️ Removal skipped: {parsed.error}")
            continue
        edited = apply_removal(ch.content, parsed.value.start_anchor, parsed.value.end_anchor)
        if edited is None:
            stats.removals_skipped += 1
            print("[Revision] ⚠️ Could not locate removal boundaries, skipping")
            continue
        print(f"[Revision] ✅ Removed {len(ch.content) - len(edited)} chars")
        by_number[ch.number] = replace(ch, content=edited)
        stats.edits_applied += 1

    for topic in review.missing_topics[:MAX_INSERTIONS]:
        print(f'[Revision] ➕ Adding: "{topic}"')
        current = [by_number[n] for n in sorted(by_number)]
        response = _ask(oracle, build_insertion_prompt(current, topic, meta), 2000)
        parsed = parse_insertion(response or "")
        if not parsed.ok:
            print(f"[Revision] ⚠️ Insertion discarded: {parsed.error}")
            continue
        edit = parsed.value
        ch = by_number.get(edit.chapter)
        if ch is None:
            print(f"[Revision] ⚠️ Target chapter {edit.chapter} not found, skipping")
            continue
        edited, appended = apply_insertion(ch.content, edit.anchor, edit.content)
        if appended:
            stats.insertions_appended += 1
            print(f"[Revision] ⚠️ Anchor not unique or absent, appended to Ch.{ch.number}")
        by_number[ch.number] = replace(ch, content=edited)
        stats.edits_applied += 1
        print(f"[Revision] ✅ +{len(edit.content.split())} words in Ch.{ch.number}")

    return [by_number[ch.number] for ch in chapters]
