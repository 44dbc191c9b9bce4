"""
BookPress V1.0 — Pipeline Logger
================================
Consistent, timestamped console lines for every build step. When a job
store is attached, each line is mirrored into that build's job log.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Optional

from bookpress.jobs import JobStore


def _ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:23]


def format_elapsed(seconds: float) -> str:
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{int(seconds // 60)}m{round(seconds % 60)}s"


class PipelineLogger:
    """Tagged console logger for one pipeline run of one project."""

    def __init__(
        self,
        pipeline: str,
        project_id: str,
        store: Optional[JobStore] = None,
        job_id: Optional[str] = None,
    ):
        self.pipeline = pipeline
        self.project_id = project_id
        self.tag = f"[{pipeline}][{project_id[:8]}]"
        self.store = store
        self.job_id = job_id
        self._start = time.time()

    def _emit(self, line: str, level: str = "INFO"):
        print(line)
        if self.store and self.job_id:
            self.store.append_log(self.job_id, line.strip(), level=level, source=self.pipeline)

    def header(self, title: str, details: Optional[dict] = None):
        print("\n" + "═" * 70)
        self._emit(f"  {title}")
        print(f"  {_ts()} | Project: {self.project_id}")
        for k, v in (details or {}).items():
            print(f"  {k}: {v}")
        print("═" * 70 + "\n")

    def phase(self, num: int, title: str):
        self._emit(f"  ━━━ Phase {num}: {title} ━━━")

    def step(self, msg: str):
        self._emit(f"  {_ts()} {self.tag} {msg}")

    def ok(self, msg: str):
        self._emit(f"  {_ts()} {self.tag} ✅ {msg}")

    def warn(self, msg: str):
        self._emit(f"  {_ts()} {self.tag} ⚠️  {msg}", level="WARNING")

    def err(self, msg: str, error: Optional[BaseException] = None):
        self._emit(f"  {_ts()} {self.tag} ❌ {msg}", level="ERROR")
        if error is not None:
            self._emit(f"     {error}", level="ERROR")

    def data(self, label: str, value):
        self._emit(f"  {_ts()} {self.tag}   📊 {label}: {value}")

    def timer(self) -> Callable[[], str]:
        """Start a stopwatch; calling the result returns the elapsed time."""
        start = time.time()
        return lambda: format_elapsed(time.time() - start)

    def done(self, summary: str = "Pipeline complete"):
        self.ok(f"{summary} in {format_elapsed(time.time() - self._start)}")
