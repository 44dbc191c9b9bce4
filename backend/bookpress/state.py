"""
BookPress V1.0 — LangGraph State Definition
===========================================
TypedDict for the review-and-revise pass:
    review → revise (conditional) → re_review (conditional)
"""

from __future__ import annotations

from typing import TypedDict

from bookpress.models import BookMeta, ChapterFragment, ReviewResult, RevisionStats


class ReviewState(TypedDict, total=False):
    """
    Shared state for the review graph (per book).

    Attributes
    ----------
    chapters : list[ChapterFragment]
        Chapter texts; replaced by the edited copies after revision.

    meta : BookMeta
        Title, topic, language and guidelines used in every prompt.

    review : ReviewResult
        The first review of the untouched manuscript.

    final_review : ReviewResult
        The single re-review after edits, when any edit was applied.

    stats : RevisionStats
        Scores and edit counters for the whole pass.
    """

    chapters: list[ChapterFragment]
    meta: BookMeta
    review: ReviewResult
    final_review: ReviewResult
    stats: RevisionStats
