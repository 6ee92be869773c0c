from __future__ import annotations

import os
from pathlib import Path

DEFAULT_AI_BASE_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_DOCUMENT_AI_MODEL = "anthropic/claude-3.5-sonnet"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def ai_api_key() -> str | None:
    return os.getenv("OPENROUTER_API_KEY") or None


def ai_base_url() -> str:
    return os.getenv("OPENROUTER_BASE_URL") or DEFAULT_AI_BASE_URL


def ai_call_timeout_seconds() -> float:
    return _int_env("AI_CALL_TIMEOUT_MS", 300_000) / 1000.0


def ai_max_concurrent_calls() -> int:
    return max(1, _int_env("PIPELINE_MAX_CONCURRENT_AI", 5))


def document_ai_model() -> str:
    return os.getenv("DOCUMENT_AI_MODEL") or DEFAULT_DOCUMENT_AI_MODEL


def generated_docs_dir() -> Path:
    return Path(os.getenv("GENERATED_DOCS_DIR") or "./var/documents")
