"""
BookPress V1.0 — Error Types
============================
Exceptions that cross module boundaries. Recoverable defects (fragment
balancing, malformed oracle output) never raise; these are the failures
that reach the caller.
"""

from __future__ import annotations


class BookPressError(Exception):
    """Base class for all pipeline errors."""


class CompilationFailed(BookPressError):
    """No PDF after every compile attempt. Carries the last log tail."""

    def __init__(self, message: str, log_tail: str = "", attempts: list | None = None):
        super().__init__(message)
        self.log_tail = log_tail
        self.attempts = attempts or []


class BuildInProgressError(BookPressError):
    """A second build was triggered while one is running for the project."""

    def __init__(self, project_id: str):
        super().__init__(f"A build is already running for project {project_id}")
        self.project_id = project_id


class NoReadyChaptersError(BookPressError):
    def __init__(self, project_id: str):
        super().__init__(f"No chapters ready to compile for project {project_id}")
        self.project_id = project_id


class StorageError(BookPressError):
    """An artifact could not be written to or located in storage."""


class OracleError(BookPressError):
    """The text-generation oracle could not be reached."""
