"""
BookPress V1.0 — Text-Generation Oracle
=======================================
Thin LiteLLM wrapper used by the review and revision stages, plus the
tolerant JSON extraction every oracle response goes through. Oracle
output is untrusted: it may be fenced, wrapped in prose, truncated or
not JSON at all.
"""

from __future__ import annotations

import json
import os
import time
from typing import Optional

import litellm
import regex as re

from bookpress.config import LLM_MAX_RETRIES, LLM_RETRY_SLEEP, LLM_TIMEOUT, get_model
from bookpress.errors import OracleError
from bookpress.models import ParseResult

_FENCE_RE = re.compile(r"```(?:json|JSON)?")


class Oracle:
    """Anything that turns a prompt into text."""

    def complete(self, prompt: str, max_tokens: int = 4096) -> str:
        raise NotImplementedError


class LiteLLMOracle(Oracle):
    """Synchronous ``litellm.completion`` with a network-retry loop."""

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: int = LLM_TIMEOUT,
        max_retries: int = LLM_MAX_RETRIES,
        retry_sleep: int = LLM_RETRY_SLEEP,
    ):
        self.model = model or get_model()
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_sleep = retry_sleep

    def complete(self, prompt: str, max_tokens: int = 4096) -> str:
        api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if self.model.startswith("gemini/") and not api_key:
            raise OracleError(
                f"Gemini model ({self.model}) requires GOOGLE_API_KEY or GEMINI_API_KEY"
            )

        for attempt in range(self.max_retries):
            try:
                response = litellm.completion(
                    model=self.model,
                    timeout=self.timeout,
                    max_tokens=max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                    api_key=api_key if self.model.startswith("gemini/") else None,
                    api_base=os.getenv("OLLAMA_API_BASE")
                    if os.getenv("LLM_PROVIDER") == "ollama"
                    else None,
                )
            except litellm.APIConnectionError:
                print(
                    f"[Oracle] 📡 Connection error (attempt {attempt + 1}/{self.max_retries}). "
                    f"Sleeping {self.retry_sleep}s..."
                )
                time.sleep(self.retry_sleep)
                continue
            except Exception as e:
                error_msg = str(e)
                if "401" in error_msg or "authentication" in error_msg.lower():
                    print("[Oracle] 💡 Authentication error - check your API key")
                elif "429" in error_msg or "rate limit" in error_msg.lower():
                    print("[Oracle] 💡 Rate limit hit")
                raise OracleError(f"LLM call failed: {error_msg}") from e

            if response and hasattr(response, "choices") and response.choices:
                return response.choices[0].message.content or ""
            return ""

        raise OracleError(f"LLM unreachable after {self.max_retries} attempts")


# ──────────────────────────────────────────────
# TOLERANT JSON
# ──────────────────────────────────────────────
def extract_json_object(text: str) -> Optional[dict]:
    """
    Return the first top-level JSON object embedded in ``text``.

    Code fences are dropped, then decoding is attempted at every ``{`` in
    turn so leading prose and trailing commentary are ignored.
    """
    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text)
    decoder = json.JSONDecoder()
    idx = cleaned.find("{")
    while idx != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, idx)
        except json.JSONDecodeError:
            idx = cleaned.find("{", idx + 1)
            continue
        if isinstance(value, dict):
            return value
        idx = cleaned.find("{", idx + 1)
    return None
