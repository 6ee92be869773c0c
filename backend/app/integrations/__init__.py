from __future__ import annotations

from backend.app.integrations.ai_client import (
    AiCallResult,
    AiClientError,
    call_ai,
    get_ai_client_stats,
)


__all__ = [
    "AiCallResult",
    "AiClientError",
    "call_ai",
    "get_ai_client_stats",
]
