"""
BookPress V1.0 — Build Pipeline Orchestrator
============================================
Runs one project's build as a single sequential task:

    1. Review & revise      (optional, oracle-driven, never fatal)
    2. Assemble             (sanitized fragments + resolved style)
    3. Structure QA         (report only)
    4. Compile              (bounded retries with auto-fix)
    5. Record version       (storage + ledger, current pointer)
    6. EPUB companion       (non-fatal)

Usage:
    from bookpress.pipeline import BookPipeline, BookProject
    pipeline = BookPipeline.from_env()
    result = pipeline.build(BookProject.load("project.json"))
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from filelock import FileLock, Timeout

from bookpress.assembler import Colophon, assemble_document
from bookpress.checker import check_document, print_report
from bookpress.compiler import CompilationEngine, Runner, count_pages
from bookpress.config import BUILD_DIR, DB_PATH
from bookpress.epub_builder import build_epub
from bookpress.errors import BuildInProgressError, CompilationFailed, NoReadyChaptersError, StorageError
from bookpress.graph import run_review_pass
from bookpress.jobs import JobStore, ProjectLocks
from bookpress.models import (
    ArtifactLocation,
    BookMeta,
    BookVersion,
    BuildWorkspace,
    ChapterFragment,
    CompilationAttempt,
    RevisionStats,
    ready_fragments,
)
from bookpress.oracle import LiteLLMOracle, Oracle
from bookpress.pipeline_log import PipelineLogger
from bookpress.storage import storage_from_env
from bookpress.style_resolver import resolve_style
from bookpress.versioning import VersionLedger, VersionStore, sanitize_filename


# ──────────────────────────────────────────────
# PROJECT INPUT
# ──────────────────────────────────────────────
@dataclass
class BookProject:
    project_id: str
    title: str
    chapters: list[ChapterFragment] = field(default_factory=list)
    language: str = "en"
    page_format: str = "a5"
    style_preset: Optional[str] = None
    custom_colors: Optional[list[str]] = None
    author: Optional[str] = None
    subtitle: Optional[str] = None
    topic: str = ""
    guidelines: str = ""
    colophon: Optional[Colophon] = None

    @property
    def meta(self) -> BookMeta:
        return BookMeta(
            title=self.title,
            topic=self.topic or self.title,
            language=self.language,
            guidelines=self.guidelines,
        )

    @classmethod
    def from_dict(cls, d: dict, default_id: Optional[str] = None) -> "BookProject":
        colophon = d.get("colophon")
        if isinstance(colophon, str):
            colophon = Colophon(text=colophon)
        elif isinstance(colophon, dict):
            colophon = Colophon(text=colophon.get("text", ""), font_size=int(colophon.get("font_size", 10)))
        title = d.get("title") or "Untitled"
        return cls(
            project_id=d.get("project_id") or default_id or sanitize_filename(title).lower(),
            title=title,
            chapters=[ChapterFragment.from_dict(c) for c in d.get("chapters", [])],
            language=d.get("language", "en"),
            page_format=d.get("format", d.get("page_format", "a5")),
            style_preset=d.get("style_preset"),
            custom_colors=d.get("custom_colors"),
            author=d.get("author"),
            subtitle=d.get("subtitle"),
            topic=d.get("topic", ""),
            guidelines=d.get("guidelines", ""),
            colophon=colophon,
        )

    @classmethod
    def load(cls, path: Path) -> "BookProject":
        path = Path(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(data, default_id=path.stem)


@dataclass
class BuildResult:
    version: BookVersion
    attempts: list[CompilationAttempt]
    revision: Optional[RevisionStats] = None
    epub: Optional[ArtifactLocation] = None


# ──────────────────────────────────────────────
# ORCHESTRATOR
# ──────────────────────────────────────────────
class BookPipeline:
    """Sequential build of one project, guarded by a per-project lock."""

    def __init__(
        self,
        store: VersionStore,
        oracle: Optional[Oracle] = None,
        runner: Optional[Runner] = None,
        build_root: Path = BUILD_DIR,
        locks: Optional[ProjectLocks] = None,
        job_store: Optional[JobStore] = None,
        page_counter: Callable[[Path], Optional[int]] = count_pages,
        epub_enabled: bool = True,
    ):
        self.store = store
        self.oracle = oracle
        self.runner = runner
        self.build_root = Path(build_root)
        self.locks = locks or ProjectLocks()
        self.job_store = job_store
        self.page_counter = page_counter
        self.epub_enabled = epub_enabled

    @classmethod
    def from_env(cls, with_oracle: bool = True, job_store: Optional[JobStore] = None) -> "BookPipeline":
        store = VersionStore(VersionLedger(DB_PATH), storage_from_env())
        return cls(store, oracle=LiteLLMOracle() if with_oracle else None, job_store=job_store)

    @property
    def ledger(self) -> VersionLedger:
        return self.store.ledger

    def status(self, project_id: str) -> Optional[dict]:
        return self.ledger.project_status(project_id)

    def build(self, project: BookProject, review: bool = True, job_id: Optional[str] = None) -> BuildResult:
        """
        Build synchronously.

        Raises
        ------
        BuildInProgressError
            Another build of the same project is running, here or in
            another process.
        NoReadyChaptersError, CompilationFailed, StorageError
            The build failed; the project status is ``error``.
        """
        self.locks.acquire(project.project_id)
        try:
            return self.run_claimed(project, review=review, job_id=job_id)
        finally:
            self.locks.release(project.project_id)

    def run_claimed(self, project: BookProject, review: bool = True, job_id: Optional[str] = None) -> BuildResult:
        """
        Run the build; the caller already holds the project's in-process lock.

        A lock file under the build root keeps a second process from using
        the same workspace. Any failure leaves the project status at
        ``error`` so pollers see it.
        """
        pid = project.project_id
        self.build_root.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.build_root / f"{pid}.lock"), timeout=0)
        try:
            lock.acquire()
        except Timeout:
            raise BuildInProgressError(pid) from None

        try:
            return self._run_phases(project, review, job_id)
        except (NoReadyChaptersError, CompilationFailed, StorageError):
            raise
        except Exception as e:
            self.ledger.set_status(pid, "error", last_error=str(e)[:2000])
            print(f"[Build] ❌ Build of {pid} failed: {type(e).__name__}: {e}")
            raise
        finally:
            lock.release()

    def _run_phases(self, project: BookProject, review: bool, job_id: Optional[str]) -> BuildResult:
        pid = project.project_id
        log = PipelineLogger("Build", pid, self.job_store, job_id)
        log.header(
            f'📖 BUILD: "{project.title}"',
            {"Format": project.page_format, "Language": project.language, "Style": project.style_preset or "modern"},
        )
        self.ledger.set_title(pid, project.title)

        chapters = ready_fragments(project.chapters)
        if not chapters:
            self.ledger.set_status(pid, "error", last_error="No chapters ready to compile")
            log.err("No chapters ready to compile")
            raise NoReadyChaptersError(pid)
        log.data("Ready chapters", len(chapters))

        # ── Phase 1: review & revise ──
        revision = None
        if review and self.oracle is not None:
            log.phase(1, "Review & revise")
            self.ledger.set_status(pid, "reviewing")
            timer = log.timer()
            chapters, revision = run_review_pass(self.oracle, chapters, project.meta)
            log.ok(
                f"Review done: {revision.original_score}/10 → {revision.final_score}/10, "
                f"{revision.edits_applied} edits ({timer()})"
            )

        # ── Phase 2: assemble + QA ──
        log.phase(2, "Assemble")
        self.ledger.set_status(pid, "compiling")
        ws = BuildWorkspace.for_project(self.build_root, pid).ensure()
        tex = assemble_document(
            project.title,
            project.language,
            project.page_format,
            chapters,
            style_preset=project.style_preset,
            custom_colors=project.custom_colors,
            author=project.author,
            subtitle=project.subtitle,
            colophon=project.colophon,
        )
        report = check_document(tex)
        print_report(report)
        if not report.ok:
            log.warn("Structure QA found issues, compiling anyway")
        ws.tex_path.write_text(tex, encoding="utf-8")
        log.data("LaTeX size", f"{len(tex) // 1024} KB")

        # ── Phase 3: compile ──
        log.phase(3, "Compile")
        engine = CompilationEngine(runner=self.runner)
        timer = log.timer()
        try:
            engine.compile(ws)
        except CompilationFailed as e:
            self.ledger.set_status(pid, "error", last_error=e.log_tail or str(e))
            log.err("Compilation failed", e)
            raise
        log.ok(f"PDF compiled after {len(engine.attempts)} attempt(s), {engine.fixes_applied} fix(es) ({timer()})")

        # ── Phase 4: version ──
        log.phase(4, "Record version")
        pages = self.page_counter(ws.pdf_path)
        try:
            version = self.store.record_build(ws, project.title, ws.pdf_path, ws.tex_path, pages)
        except StorageError as e:
            self.ledger.set_status(pid, "error", last_error=str(e))
            log.err("Could not store the compiled PDF", e)
            raise
        log.ok(f"Version {version.version} recorded ({pages or '?'} pages)")

        # ── Phase 5: EPUB companion ──
        epub_loc = None
        if self.epub_enabled:
            log.phase(5, "EPUB companion")
            self.ledger.set_status(pid, "generating_epub")
            try:
                epub_path = build_epub(
                    ws.path / f"{sanitize_filename(project.title)}.epub",
                    pid,
                    project.title,
                    chapters,
                    resolve_style(project.style_preset, project.custom_colors),
                    language=project.language,
                    author=project.author,
                    subtitle=project.subtitle,
                )
                epub_loc = self.store.attach_companion(pid, version.version, epub_path, project.title)
                log.ok("EPUB attached")
            except Exception as e:
                log.warn(f"EPUB generation failed (non-fatal): {e}")

        self.ledger.set_status(pid, "completed")
        log.done(f"Book compiled and ready, v{version.version}")
        return BuildResult(version=version, attempts=list(engine.attempts), revision=revision, epub=epub_loc)
