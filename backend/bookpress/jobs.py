"""
BookPress V1.0 — Build Jobs & Queue
===================================
Fire-and-forget build submission. A trigger only enqueues the build and
returns; callers poll the persisted project status instead of holding a
future. At most one build runs per project at a time.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

from bookpress.config import BUILD_WORKERS, JOBS_FILE
from bookpress.errors import BuildInProgressError

MAX_LOG_LINES = 500


@dataclass
class BuildJob:
    job_id: str
    project_id: str
    status: str = "queued"  # queued | running | completed | failed | rejected
    version: Optional[int] = None
    message: str = ""
    log_lines: list[dict] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "BuildJob":
        return cls(**d)


class JobStore:
    """Thread-safe in-memory job store with JSON persistence."""

    def __init__(self, path: Path = JOBS_FILE):
        self.path = Path(path)
        self._jobs: dict[str, BuildJob] = {}
        self._lock = threading.Lock()
        self._load()

    def create(self, project_id: str) -> BuildJob:
        job = BuildJob(job_id=str(uuid.uuid4())[:8], project_id=project_id)
        with self._lock:
            self._jobs[job.job_id] = job
        self._save()
        return job

    def get(self, job_id: str) -> Optional[BuildJob]:
        return self._jobs.get(job_id)

    def update(self, job_id: str, **kwargs) -> Optional[BuildJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            for k, v in kwargs.items():
                if hasattr(job, k):
                    setattr(job, k, v)
            job.updated_at = time.time()
        self._save()
        return job

    def append_log(self, job_id: str, message: str, level: str = "INFO", source: str = "Pipeline"):
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job.log_lines.append(
                {
                    "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                    "level": level,
                    "source": source,
                    "message": message,
                }
            )
            if len(job.log_lines) > MAX_LOG_LINES:
                job.log_lines = job.log_lines[-MAX_LOG_LINES:]

    def for_project(self, project_id: str) -> list[BuildJob]:
        return sorted(
            (j for j in self._jobs.values() if j.project_id == project_id),
            key=lambda j: j.created_at,
        )

    def all_jobs(self) -> list[dict]:
        return [j.to_dict() for j in self._jobs.values()]

    def _save(self):
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            serializable = {jid: j.to_dict() for jid, j in self._jobs.items()}
            self.path.write_text(json.dumps(serializable, indent=2), encoding="utf-8")

    def _load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"[Jobs] ⚠️ Could not read {self.path.name}: {e}")
            return
        for jid, jdict in data.items():
            self._jobs[jid] = BuildJob.from_dict(jdict)


# ──────────────────────────────────────────────
# PER-PROJECT EXCLUSION
# ──────────────────────────────────────────────
class ProjectLocks:
    """At most one running build per project; a second claim is rejected."""

    def __init__(self):
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, project_id: str):
        with self._lock:
            if project_id in self._active:
                raise BuildInProgressError(project_id)
            self._active.add(project_id)

    def release(self, project_id: str):
        with self._lock:
            self._active.discard(project_id)

    def is_active(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._active


# ──────────────────────────────────────────────
# QUEUE
# ──────────────────────────────────────────────
class BuildQueue:
    """
    Thread pool for builds.

    ``build_fn(project_id, job_id)`` runs the whole pipeline for one
    project and returns the recorded version number.
    """

    def __init__(
        self,
        build_fn: Callable[[str, str], Optional[int]],
        locks: Optional[ProjectLocks] = None,
        store: Optional[JobStore] = None,
        workers: int = BUILD_WORKERS,
    ):
        self.build_fn = build_fn
        self.locks = locks or ProjectLocks()
        self.store = store or JobStore()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build")

    def submit(self, project_id: str) -> BuildJob:
        """Claim the project and enqueue its build. Never blocks on the build."""
        job = self.store.create(project_id)
        try:
            self.locks.acquire(project_id)
        except BuildInProgressError as e:
            print(f"[Queue] 🚫 {e}")
            return self.store.update(job.job_id, status="rejected", message=str(e))

        self._executor.submit(self._run, project_id, job.job_id)
        print(f"[Queue] 📥 Build {job.job_id} queued for project {project_id}")
        return job

    def _run(self, project_id: str, job_id: str):
        self.store.update(job_id, status="running")
        try:
            version = self.build_fn(project_id, job_id)
            self.store.update(
                job_id, status="completed", version=version, message=f"Version {version} recorded"
            )
        except Exception as e:
            print(f"[Queue] ❌ Build {job_id} failed: {e}")
            self.store.update(job_id, status="failed", message=str(e)[:500])
        finally:
            self.locks.release(project_id)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
