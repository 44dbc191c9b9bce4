"""
BookPress V1.0 — Shared Configuration
=====================================
Centralised path constants and settings used across all modules.
Every value can be overridden through the environment (or a ``.env`` file).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ──────────────────────────────────────────────
# PATHS
# ──────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("BOOKPRESS_DATA_DIR", str(BASE_DIR / "data")))
BUILD_DIR = Path(os.getenv("BOOKPRESS_BUILD_DIR", str(DATA_DIR / "builds")))
STORAGE_DIR = Path(os.getenv("BOOKPRESS_STORAGE_DIR", str(DATA_DIR / "storage")))
DB_PATH = Path(os.getenv("BOOKPRESS_DB_PATH", str(DATA_DIR / "bookpress.db")))
JOBS_FILE = Path(os.getenv("BOOKPRESS_JOBS_FILE", str(DATA_DIR / "jobs.json")))

# ──────────────────────────────────────────────
# COMPILER SETTINGS
# ──────────────────────────────────────────────
PDFLATEX_BIN = os.getenv("PDFLATEX_BIN", "pdflatex")
PDFINFO_BIN = os.getenv("PDFINFO_BIN", "pdfinfo")
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "3"))
PASSES_PER_ATTEMPT = int(os.getenv("PASSES_PER_ATTEMPT", "2"))
COMPILE_TIMEOUT = int(os.getenv("COMPILE_TIMEOUT", "120"))  # seconds per pass
PAGE_COUNT_TIMEOUT = 5
LOG_TAIL_CHARS = int(os.getenv("LOG_TAIL_CHARS", "3000"))
LOG_READ_CAP = int(os.getenv("LOG_READ_CAP", str(10 * 1024 * 1024)))  # bytes

# ──────────────────────────────────────────────
# REVIEW / REVISION SETTINGS
# ──────────────────────────────────────────────
REVISION_SCORE_THRESHOLD = 8
NEUTRAL_SCORE = 7
MAX_REMOVALS = 3
MAX_INSERTIONS = 3
REMOVAL_CONTEXT_CHARS = 15000
LLM_TIMEOUT = int(os.getenv("LLM_TIMEOUT", "300"))
LLM_MAX_RETRIES = 3
LLM_RETRY_SLEEP = 30

# ──────────────────────────────────────────────
# WORKERS
# ──────────────────────────────────────────────
BUILD_WORKERS = int(os.getenv("BUILD_WORKERS", "2"))

# ──────────────────────────────────────────────
# OBJECT STORAGE
# ──────────────────────────────────────────────
AWS_REGION = os.getenv("AWS_REGION", "eu-north-1")
PRESIGNED_URL_TTL = int(os.getenv("PRESIGNED_URL_TTL", "3600"))


def s3_enabled() -> bool:
    """True when object storage credentials and a bucket are configured."""
    return bool(os.getenv("AWS_ACCESS_KEY_ID") and os.getenv("S3_BUCKET"))


def get_model() -> str:
    """Return the model identifier used for review and revision calls."""
    model = os.getenv("REVIEW_MODEL") or os.getenv(
        "DEFAULT_MODEL", "gemini/gemini-2.0-flash"
    )
    if not model:
        print("[Config] ⚠️ WARNING: DEFAULT_MODEL not set, using fallback")
        return "gemini/gemini-2.0-flash"
    return model
