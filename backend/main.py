"""
BookPress V1.0 — Command Line
=============================
Builds a book from a project file and inspects its recorded versions.

    build     review → assemble → compile → version → EPUB
    status    persisted project status row
    versions  every recorded version, newest first
    download  URL or local path of one artifact

Usage
-----
    python main.py build project.json                 # Full pipeline
    python main.py build project.json --skip-review   # Typeset as-is
    python main.py build project.json --background    # Queue, then poll status
    python main.py status my-book
    python main.py versions my-book
    python main.py download my-book 2 --format epub
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Fix Windows console encoding (cp1252 can't handle Unicode box chars)
if sys.stdout.encoding != "utf-8":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
if sys.stderr.encoding != "utf-8":
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from bookpress.config import DB_PATH
from bookpress.errors import BookPressError
from bookpress.jobs import BuildQueue, JobStore
from bookpress.pipeline import BookPipeline, BookProject
from bookpress.storage import storage_from_env
from bookpress.versioning import VersionLedger, VersionStore

POLL_SECONDS = 2


# ──────────────────────────────────────────────
# COMMANDS
# ──────────────────────────────────────────────
def cmd_build(args) -> int:
    path = Path(args.project)
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1
    project = BookProject.load(path)
    job_store = JobStore()
    pipeline = BookPipeline.from_env(with_oracle=not args.skip_review, job_store=job_store)

    if args.background:
        queue = BuildQueue(
            lambda pid, job_id: pipeline.run_claimed(
                project, review=not args.skip_review, job_id=job_id
            ).version.version,
            locks=pipeline.locks,
            store=job_store,
        )
        job = queue.submit(project.project_id)
        if job.status == "rejected":
            print(f"🚫 {job.message}")
            return 1
        print(f"📥 Job {job.job_id} queued for {project.project_id}")
        return _poll(pipeline, queue, job.job_id)

    try:
        result = pipeline.build(project, review=not args.skip_review)
    except BookPressError as e:
        print(f"❌ Build failed: {e}")
        return 1

    v = result.version
    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print("║              🎉  BOOK BUILD COMPLETE  🎉                  ║")
    print("╠══════════════════════════════════════════════════════════╣")
    print(f"║  📖  Version: v{v.version} ({v.note})")
    print(f"║  📄  Pages: {v.page_count if v.page_count is not None else 'unknown'}")
    print(f"║  🔧  Compile attempts: {len(result.attempts)}")
    if result.revision:
        print(f"║  📋  Review score: {result.revision.original_score} → {result.revision.final_score}")
    print(f"║  📱  EPUB: {'yes' if result.epub else 'no'}")
    print("╚══════════════════════════════════════════════════════════╝")
    return 0


def _poll(pipeline: BookPipeline, queue: BuildQueue, job_id: str) -> int:
    last = None
    try:
        while True:
            job = queue.store.get(job_id)
            row = pipeline.status(job.project_id) or {}
            status = row.get("status")
            if status != last:
                print(f"   ⏳ status: {status}")
                last = status
            if job.status in ("completed", "failed"):
                break
            time.sleep(POLL_SECONDS)
    finally:
        queue.shutdown(wait=True)

    job = queue.store.get(job_id)
    if job.status == "completed":
        print(f"✅ {job.message}")
        return 0
    print(f"❌ Build failed: {job.message}")
    return 1


def _ledger_store() -> VersionStore:
    return VersionStore(VersionLedger(DB_PATH), storage_from_env())


def cmd_status(args) -> int:
    row = VersionLedger(DB_PATH).project_status(args.project_id)
    if not row:
        print(f"❌ Unknown project: {args.project_id}")
        return 1
    print(json.dumps(row, indent=2, ensure_ascii=False))
    return 0


def cmd_versions(args) -> int:
    versions = _ledger_store().list_versions(args.project_id)
    if not versions:
        print(f"No versions recorded for {args.project_id}")
        return 0
    for v in versions:
        pages = v.page_count if v.page_count is not None else "?"
        formats = "pdf" + (", epub" if v.epub else "") + (", tex" if v.tex else "")
        print(f"  v{v.version}  {v.created_at[:19]}  {pages:>4} pages  [{formats}]  {v.note}")
    return 0


def cmd_download(args) -> int:
    try:
        url = _ledger_store().download(args.project_id, args.version, args.format)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    if not url:
        print(f"❌ No {args.format} for {args.project_id} v{args.version}")
        return 1
    print(url)
    return 0


# ──────────────────────────────────────────────
# CLI ENTRY POINT
# ──────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BookPress V1.0 Pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    p_build = sub.add_parser("build", help="Build a book from a project JSON file")
    p_build.add_argument("project", help="Path to the project JSON file")
    p_build.add_argument("--skip-review", action="store_true", help="Skip the review-and-revise pass")
    p_build.add_argument("--background", action="store_true", help="Queue the build and poll its status")
    p_build.set_defaults(func=cmd_build)

    p_status = sub.add_parser("status", help="Show the persisted project status")
    p_status.add_argument("project_id")
    p_status.set_defaults(func=cmd_status)

    p_versions = sub.add_parser("versions", help="List recorded versions")
    p_versions.add_argument("project_id")
    p_versions.set_defaults(func=cmd_versions)

    p_download = sub.add_parser("download", help="Print the download URL or path of an artifact")
    p_download.add_argument("project_id")
    p_download.add_argument("version", type=int)
    p_download.add_argument("--format", choices=["pdf", "epub", "tex"], default="pdf")
    p_download.set_defaults(func=cmd_download)
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    sys.exit(args.func(args))
