"""
BookPress V1.0 — Review Graph Compilation & Routing
===================================================
One review-and-revise pass per book, with no further iteration:

    START → review ─┬─ score ≥ 8 or no revision needed ──→ END
                    └─ revise ─┬─ no edit applied ──→ END
                               └─ re_review ──→ END
"""

from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from bookpress.config import REVISION_SCORE_THRESHOLD
from bookpress.models import BookMeta, ChapterFragment, RevisionStats
from bookpress.oracle import Oracle
from bookpress.review import review_book
from bookpress.revision import needs_revision, revise_chapters
from bookpress.state import ReviewState


# ──────────────────────────────────────────────
# CONDITIONAL ROUTING
# ──────────────────────────────────────────────
def _after_review(state: ReviewState) -> str:
    review = state["review"]
    if not needs_revision(review, REVISION_SCORE_THRESHOLD):
        print(f"[Router] Score {review.score}/10, no revision needed")
        return END
    print(f"[Router] Score {review.score}/10, starting targeted revisions")
    return "revise"


def _after_revise(state: ReviewState) -> str:
    if state["stats"].edits_applied > 0:
        return "re_review"
    print("[Router] No edits applied, score unchanged")
    return END


# ──────────────────────────────────────────────
# GRAPH BUILDER
# ──────────────────────────────────────────────
def build_review_graph(oracle: Oracle):
    """
    Compile the review graph around one oracle.

    Returns
    -------
    CompiledGraph
        Ready to invoke with ``{"chapters": [...], "meta": BookMeta(...)}``
    """

    def review_node(state: ReviewState) -> dict:
        review = review_book(oracle, state["chapters"], state["meta"])
        stats = RevisionStats(original_score=review.score, final_score=review.score)
        print(f"[Review] 📋 Score {review.score}/10: {review.summary}")
        return {"review": review, "stats": stats}

    def revise_node(state: ReviewState) -> dict:
        stats = state["stats"]
        chapters = revise_chapters(
            oracle, state["chapters"], state["review"], state["meta"], stats
        )
        return {"chapters": chapters, "stats": stats}

    def re_review_node(state: ReviewState) -> dict:
        final = review_book(oracle, state["chapters"], state["meta"])
        stats = state["stats"]
        stats.final_score = final.score
        print(f"[Review] 📋 Post-revision score {final.score}/10 (was {stats.original_score}/10)")
        return {"final_review": final, "stats": stats}

    builder = StateGraph(ReviewState)

    # --- Register nodes ---
    builder.add_node("review", review_node)
    builder.add_node("revise", revise_node)
    builder.add_node("re_review", re_review_node)

    # --- Define edges ---
    builder.add_edge(START, "review")
    builder.add_conditional_edges("review", _after_review)
    builder.add_conditional_edges("revise", _after_revise)
    builder.add_edge("re_review", END)

    return builder.compile()


def run_review_pass(
    oracle: Oracle, chapters: list[ChapterFragment], meta: BookMeta
) -> tuple[list[ChapterFragment], RevisionStats]:
    """Review, optionally revise and re-review. Returns the chapters to typeset."""
    graph = build_review_graph(oracle)
    result = graph.invoke({"chapters": list(chapters), "meta": meta})
    return result["chapters"], result["stats"]
