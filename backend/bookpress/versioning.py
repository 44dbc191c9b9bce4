"""
BookPress V1.0 — Artifact Versioning Store
==========================================
SQLite-backed ledger of compiled book versions. Every successful build
gets the next version number; version rows are never rewritten. The
project's "current" pointer (latest keys, status, last error) lives in a
separate mutable row.

Usage:
    from bookpress.versioning import VersionLedger, VersionStore
    store = VersionStore(VersionLedger(), storage_from_env())
    version = store.record_build(ws, "My Book", ws.pdf_path, ws.tex_path, page_count=120)
    store.attach_companion(ws.project_id, version.version, epub_path, "My Book")
    url = store.download(ws.project_id, version.version, "pdf")
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import regex as re

from bookpress.config import DB_PATH
from bookpress.errors import StorageError
from bookpress.models import ArtifactLocation, BookVersion, BuildWorkspace
from bookpress.storage import CONTENT_TYPES, StorageBackend

_POLISH = str.maketrans("ąćęłńóśźżĄĆĘŁŃÓŚŹŻ", "acelnoszzACELNOSZZ")

ARTIFACT_FORMATS = ("pdf", "epub", "tex")


def sanitize_filename(name: str) -> str:
    """ASCII-safe file stem for a book title (max 80 chars)."""
    cleaned = name.translate(_POLISH)
    cleaned = re.sub(r"[^a-zA-Z0-9\s-]", "", cleaned)
    cleaned = re.sub(r"\s+", "-", cleaned.strip())[:80]
    return cleaned or "book"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────
# LEDGER
# ──────────────────────────────────────────────
class VersionLedger:
    """Version ledger and project pointer rows backed by SQLite."""

    def __init__(self, db_path: Path = DB_PATH):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id      TEXT PRIMARY KEY,
                title           TEXT,
                status          TEXT DEFAULT 'draft',
                current_version INTEGER DEFAULT 0,
                latest_pdf_key  TEXT,
                latest_epub_key TEXT,
                last_error      TEXT,
                updated_at      TEXT
            );
            CREATE TABLE IF NOT EXISTS book_versions (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id  TEXT NOT NULL,
                version     INTEGER NOT NULL,
                page_count  INTEGER,
                note        TEXT,
                created_at  TEXT,
                UNIQUE (project_id, version)
            );
            CREATE TABLE IF NOT EXISTS version_artifacts (
                project_id  TEXT NOT NULL,
                version     INTEGER NOT NULL,
                format      TEXT NOT NULL,
                key         TEXT,
                local_path  TEXT,
                size        INTEGER DEFAULT 0,
                created_at  TEXT,
                UNIQUE (project_id, version, format)
            );
        """)
        self.conn.commit()

    # ── project pointer ──
    def _ensure_project(self, project_id: str):
        self.conn.execute(
            "INSERT OR IGNORE INTO projects (project_id, updated_at) VALUES (?, ?)",
            (project_id, _now()),
        )

    def set_status(self, project_id: str, status: str, last_error: Optional[str] = None):
        with self._lock:
            self._ensure_project(project_id)
            self.conn.execute(
                "UPDATE projects SET status=?, last_error=?, updated_at=? WHERE project_id=?",
                (status, last_error, _now(), project_id),
            )
            self.conn.commit()

    def set_title(self, project_id: str, title: str):
        with self._lock:
            self._ensure_project(project_id)
            self.conn.execute(
                "UPDATE projects SET title=?, updated_at=? WHERE project_id=?",
                (title, _now(), project_id),
            )
            self.conn.commit()

    def update_pointer(self, project_id: str, version: int, latest_pdf_key: str):
        with self._lock:
            self._ensure_project(project_id)
            self.conn.execute(
                """
                UPDATE projects
                SET current_version=?, latest_pdf_key=?, last_error=NULL, updated_at=?
                WHERE project_id=?
            """,
                (version, latest_pdf_key, _now(), project_id),
            )
            self.conn.commit()

    def set_latest_epub(self, project_id: str, key: str):
        with self._lock:
            self._ensure_project(project_id)
            self.conn.execute(
                "UPDATE projects SET latest_epub_key=?, updated_at=? WHERE project_id=?",
                (key, _now(), project_id),
            )
            self.conn.commit()

    def project_status(self, project_id: str) -> Optional[dict]:
        row = self.conn.execute(
            """
            SELECT project_id, title, status, current_version, latest_pdf_key,
                   latest_epub_key, last_error, updated_at
            FROM projects WHERE project_id = ?
        """,
            (project_id,),
        ).fetchone()
        if not row:
            return None
        keys = (
            "project_id", "title", "status", "current_version", "latest_pdf_key",
            "latest_epub_key", "last_error", "updated_at",
        )
        return dict(zip(keys, row))

    # ── versions ──
    def next_version(self, project_id: str) -> int:
        row = self.conn.execute(
            "SELECT MAX(version) FROM book_versions WHERE project_id = ?", (project_id,)
        ).fetchone()
        return (row[0] or 0) + 1

    def insert_version(self, version: BookVersion):
        """Insert-only: a duplicate (project_id, version) raises IntegrityError."""
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO book_versions (project_id, version, page_count, note, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (version.project_id, version.version, version.page_count, version.note, version.created_at),
            )
            self.conn.commit()

    def add_artifact(self, project_id: str, version: int, fmt: str, loc: ArtifactLocation):
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO version_artifacts
                (project_id, version, format, key, local_path, size, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (project_id, version, fmt, loc.key, loc.local_path, loc.size, _now()),
            )
            self.conn.commit()

    def get_artifact(self, project_id: str, version: int, fmt: str) -> Optional[ArtifactLocation]:
        row = self.conn.execute(
            """
            SELECT key, local_path, size FROM version_artifacts
            WHERE project_id = ? AND version = ? AND format = ?
        """,
            (project_id, version, fmt),
        ).fetchone()
        if not row:
            return None
        return ArtifactLocation(key=row[0], local_path=row[1], size=row[2] or 0)

    def get_version(self, project_id: str, version: int) -> Optional[BookVersion]:
        row = self.conn.execute(
            """
            SELECT page_count, note, created_at FROM book_versions
            WHERE project_id = ? AND version = ?
        """,
            (project_id, version),
        ).fetchone()
        if not row:
            return None
        return BookVersion(
            project_id=project_id,
            version=version,
            pdf=self.get_artifact(project_id, version, "pdf") or ArtifactLocation(),
            page_count=row[0],
            note=row[1] or "",
            created_at=row[2] or "",
            epub=self.get_artifact(project_id, version, "epub"),
            tex=self.get_artifact(project_id, version, "tex"),
        )

    def list_versions(self, project_id: str) -> list[BookVersion]:
        rows = self.conn.execute(
            "SELECT version FROM book_versions WHERE project_id = ? ORDER BY version DESC",
            (project_id,),
        ).fetchall()
        return [self.get_version(project_id, r[0]) for r in rows]

    def close(self):
        self.conn.close()


# ──────────────────────────────────────────────
# STORE
# ──────────────────────────────────────────────
class VersionStore:
    """Puts compiled artifacts into storage and records them in the ledger."""

    def __init__(self, ledger: VersionLedger, storage: StorageBackend):
        self.ledger = ledger
        self.storage = storage

    def record_build(
        self,
        workspace: BuildWorkspace,
        title: str,
        pdf_path: Path,
        tex_path: Optional[Path] = None,
        page_count: Optional[int] = None,
    ) -> BookVersion:
        pid = workspace.project_id
        version = self.ledger.next_version(pid)
        safe = sanitize_filename(title)

        pdf_key = f"books/{pid}/v{version}/{safe}.pdf"
        latest_key = f"books/{pid}/{safe}.pdf"
        pdf_loc = self.storage.put(pdf_path, pdf_key, CONTENT_TYPES["pdf"])
        self.storage.put(pdf_path, latest_key, CONTENT_TYPES["pdf"])
        print(f"[Versions] ☁️  Stored v{version}: {pdf_key}")

        tex_loc = None
        if tex_path is not None:
            try:
                tex_loc = self.storage.put(
                    tex_path, f"books/{pid}/v{version}/{safe}.tex", CONTENT_TYPES["tex"]
                )
            except (StorageError, OSError) as e:
                print(f"[Versions] ⚠️ LaTeX source save failed (non-fatal): {e}")

        record = BookVersion(
            project_id=pid,
            version=version,
            pdf=pdf_loc,
            page_count=page_count,
            note="Initial generation" if version == 1 else "Recompiled after editing",
            created_at=_now(),
            tex=tex_loc,
        )
        self.ledger.insert_version(record)
        self.ledger.add_artifact(pid, version, "pdf", pdf_loc)
        if tex_loc:
            self.ledger.add_artifact(pid, version, "tex", tex_loc)
        self.ledger.update_pointer(pid, version, latest_key)
        print(f"[Versions] 📋 Version {version} recorded")
        return record

    def attach_companion(
        self, project_id: str, version: int, epub_path: Path, title: str
    ) -> ArtifactLocation:
        """Add the EPUB to an already-recorded version."""
        safe = sanitize_filename(title)
        key = f"books/{project_id}/v{version}/{safe}.epub"
        latest_key = f"books/{project_id}/{safe}.epub"
        loc = self.storage.put(epub_path, key, CONTENT_TYPES["epub"])
        self.storage.put(epub_path, latest_key, CONTENT_TYPES["epub"])
        self.ledger.add_artifact(project_id, version, "epub", loc)
        self.ledger.set_latest_epub(project_id, latest_key)
        print(f"[Versions] 📱 EPUB attached to v{version}: {key}")
        return loc

    def download(self, project_id: str, version: int, fmt: str = "pdf") -> Optional[str]:
        """Presigned URL or local path of one artifact, None when absent."""
        if fmt not in ARTIFACT_FORMATS:
            raise ValueError(f"Unknown format '{fmt}', expected one of {ARTIFACT_FORMATS}")
        loc = self.ledger.get_artifact(project_id, version, fmt)
        if loc is None:
            return None
        return self.storage.url_for(loc.key, loc.local_path)

    def list_versions(self, project_id: str) -> list[BookVersion]:
        return self.ledger.list_versions(project_id)
