"""
BookPress V1.0 — Data Model
===========================
Plain dataclasses shared by the assembly, compilation, versioning and
review stages.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


# ──────────────────────────────────────────────
# CHAPTERS
# ──────────────────────────────────────────────
class FragmentStatus(str, Enum):
    PENDING = "pending"
    GENERATED = "generated"
    READY = "ready"
    ERROR = "error"


@dataclass
class ChapterFragment:
    """One chapter's LaTeX body, prior to being spliced into the book."""

    number: int
    title: str
    content: str = ""
    target_words: int = 0
    status: FragmentStatus = FragmentStatus.PENDING

    @property
    def is_ready(self) -> bool:
        return self.status == FragmentStatus.READY and bool(self.content.strip())

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ChapterFragment":
        return cls(
            number=int(d["number"]),
            title=d.get("title", f"Chapter {d['number']}"),
            content=d.get("content", ""),
            target_words=int(d.get("target_words", 0)),
            status=FragmentStatus(d.get("status", FragmentStatus.READY.value)),
        )


def ready_fragments(fragments: list[ChapterFragment]) -> list[ChapterFragment]:
    """Ready fragments in chapter-number order."""
    return sorted((f for f in fragments if f.is_ready), key=lambda f: f.number)


# ──────────────────────────────────────────────
# BUILD WORKSPACE
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class BuildWorkspace:
    """Exclusive, project-scoped working directory for one build."""

    project_id: str
    path: Path
    stem: str = "book"

    @classmethod
    def for_project(cls, build_root: Path, project_id: str) -> "BuildWorkspace":
        return cls(project_id=project_id, path=Path(build_root) / project_id)

    def ensure(self) -> "BuildWorkspace":
        self.path.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def tex_path(self) -> Path:
        return self.path / f"{self.stem}.tex"

    @property
    def pdf_path(self) -> Path:
        return self.path / f"{self.stem}.pdf"

    @property
    def log_path(self) -> Path:
        return self.path / f"{self.stem}.log"

    @property
    def stdout_path(self) -> Path:
        return self.path / f"{self.stem}.stdout.log"


# ──────────────────────────────────────────────
# COMPILATION
# ──────────────────────────────────────────────
class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable_failure"
    FATAL = "fatal"


@dataclass
class CompilationAttempt:
    attempt: int
    passes: int
    log_tail: str
    outcome: AttemptOutcome
    fix: Optional[str] = None


# ──────────────────────────────────────────────
# VERSIONS
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class ArtifactLocation:
    key: Optional[str] = None
    local_path: Optional[str] = None
    size: int = 0


@dataclass(frozen=True)
class BookVersion:
    """Immutable record of one successful compilation."""

    project_id: str
    version: int
    pdf: ArtifactLocation
    page_count: Optional[int] = None
    note: str = ""
    created_at: str = ""
    epub: Optional[ArtifactLocation] = None
    tex: Optional[ArtifactLocation] = None

    @property
    def file_size(self) -> int:
        return self.pdf.size

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────
# REVIEW
# ──────────────────────────────────────────────
@dataclass
class RemovalCandidate:
    chapter: int
    description: str


@dataclass
class Redundancy:
    chapters: list[int]
    description: str


@dataclass
class ReviewResult:
    missing_topics: list[str] = field(default_factory=list)
    redundancies: list[Redundancy] = field(default_factory=list)
    removals: list[RemovalCandidate] = field(default_factory=list)
    score: int = 7
    needs_revision: bool = False
    summary: str = ""


@dataclass(frozen=True)
class Insertion:
    chapter: int
    anchor: str
    content: str


@dataclass(frozen=True)
class Removal:
    chapter: int
    start_anchor: str
    end_anchor: str


@dataclass
class RevisionStats:
    original_score: int = 0
    final_score: int = 0
    edits_applied: int = 0
    removals_skipped: int = 0
    insertions_appended: int = 0


# ──────────────────────────────────────────────
# PARSE RESULT
# ──────────────────────────────────────────────
@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Outcome of tolerantly parsing oracle output.

    ``ok`` is True when ``value`` was parsed from the response; otherwise
    ``value`` holds the caller's safe default and ``error`` says why.
    """

    ok: bool
    value: T
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def fallback(cls, default: T, error: str) -> "ParseResult[T]":
        return cls(ok=False, value=default, error=error)


@dataclass
class BookMeta:
    """Book-level metadata passed to review prompts and the assembler."""

    title: str
    topic: str = ""
    language: str = "en"
    guidelines: str = ""
