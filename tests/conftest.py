"""
Pytest Configuration and Fixtures

Shared helpers for the BookPress test suite: a scratch directory, a
scripted oracle and a scripted compiler runner, so nothing here needs a
network connection or a TeX installation.
"""

import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Add the backend directory to path
BACKEND_ROOT = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(BACKEND_ROOT))

from bookpress.models import ChapterFragment, FragmentStatus  # noqa: E402
from bookpress.oracle import Oracle  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class FakeOracle(Oracle):
    """Returns queued responses in order; an exception in the queue is raised."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts: list[str] = []

    def complete(self, prompt: str, max_tokens: int = 4096) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            return ""
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class ScriptedRunner:
    """
    Stand-in for pdflatex.

    ``script`` holds one entry per attempt: ``(log_text, produce_pdf)``.
    Each call is one pass; the log is rewritten on every pass and the PDF
    appears on the last pass of an attempt whose entry says so.
    """

    def __init__(self, script, passes: int = 2):
        self.script = list(script)
        self.passes = passes
        self.calls: list[list] = []

    def __call__(self, args, cwd, timeout, stdout_path):
        self.calls.append(list(args))
        attempt = (len(self.calls) - 1) // self.passes
        log, produce_pdf = self.script[min(attempt, len(self.script) - 1)]
        cwd = Path(cwd)
        (cwd / "book.log").write_text(log, encoding="utf-8")
        Path(stdout_path).write_text("This is pdfTeX\n", encoding="utf-8")
        if produce_pdf and len(self.calls) % self.passes == 0:
            (cwd / "book.pdf").write_bytes(b"%PDF-1.5\n%fake\n")
        return 0 if produce_pdf else 1


@pytest.fixture
def fake_oracle():
    """Factory for scripted oracles."""
    return FakeOracle


@pytest.fixture
def scripted_runner():
    """Factory for scripted compiler runners."""
    return ScriptedRunner


@pytest.fixture
def sample_chapters() -> list[ChapterFragment]:
    """Three ready chapters with typical model-written LaTeX."""
    return [
        ChapterFragment(
            number=1,
            title="Getting Started",
            content=(
                "\\chapter{Getting Started}\n\n"
                "\\section{Why it matters}\n"
                "Good habits compound over time.\n\n"
                "\\begin{tipbox}{Quick win}\n"
                "Start with five minutes a day.\n"
                "\\end{tipbox}\n"
            ),
            status=FragmentStatus.READY,
        ),
        ChapterFragment(
            number=2,
            title="Building Momentum",
            content=(
                "\\chapter{Building Momentum}\n\n"
                "\\section{Small steps}\n"
                "Every routine starts small.\n\n"
                "\\begin{keyinsight}{Key idea}\n"
                "Consistency beats intensity.\n"
                "\\end{keyinsight}\n\n"
                "\\section{Tracking}\n"
                "Write down what you did each day.\n"
            ),
            status=FragmentStatus.READY,
        ),
        ChapterFragment(
            number=3,
            title="Staying the Course",
            content=(
                "\\chapter{Staying the Course}\n\n"
                "\\section{Setbacks}\n"
                "Missing one day is normal.\n"
            ),
            status=FragmentStatus.READY,
        ),
    ]
