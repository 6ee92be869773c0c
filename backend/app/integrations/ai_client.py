from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from backend.app.api import config

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
MAX_BACKOFF_SECONDS = 30.0

RETRYABLE_KINDS = frozenset({"transient_error", "rate_limited", "network_error", "timeout"})


class AiClientError(Exception):
    """
    kind: config_error | timeout | rate_limited | transient_error | api_error |
          network_error | retries_exhausted
    """

    def __init__(self, message: str, kind: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


@dataclass(frozen=True)
class AiCallResult:
    content: str
    tokens_used: int
    model: str
    was_retried: bool


class _CallLimiter:
    def __init__(self, slots: int):
        self._semaphore = threading.BoundedSemaphore(slots)
        self._lock = threading.Lock()
        self.active = 0

    def __enter__(self) -> "_CallLimiter":
        self._semaphore.acquire()
        with self._lock:
            self.active += 1
        return self

    def __exit__(self, *exc_info) -> None:
        with self._lock:
            self.active -= 1
        self._semaphore.release()


_limiter: Optional[_CallLimiter] = None
_limiter_lock = threading.Lock()


def _get_limiter() -> _CallLimiter:
    global _limiter
    with _limiter_lock:
        if _limiter is None:
            _limiter = _CallLimiter(config.ai_max_concurrent_calls())
        return _limiter


def get_ai_client_stats() -> dict[str, int]:
    limiter = _get_limiter()
    return {"active_call_count": limiter.active, "max_concurrent": config.ai_max_concurrent_calls()}


def _backoff_seconds(response: Optional[httpx.Response], retry_delay_s: float, attempt: int) -> float:
    delay = retry_delay_s * (2 ** attempt)
    if response is not None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                delay = float(retry_after)
            except ValueError:
                pass
    return min(delay, MAX_BACKOFF_SECONDS)


def _parse_result(payload: dict[str, Any], model: str, attempts: int) -> AiCallResult:
    choices = payload.get("choices") or []
    message = (choices[0] or {}).get("message") if choices else None
    content = ((message or {}).get("content") or "").strip()
    usage = payload.get("usage") or {}
    return AiCallResult(
        content=content,
        tokens_used=int(usage.get("total_tokens") or 0),
        model=payload.get("model") or model,
        was_retried=attempts > 0,
    )


def call_ai(
    *,
    model: str,
    messages: list[dict[str, Any]],
    temperature: float = 0.1,
    max_tokens: int = 4096,
    response_format: Optional[dict[str, Any]] = None,
    timeout_s: Optional[float] = None,
    max_retries: int = 2,
    retry_delay_s: float = 1.0,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> AiCallResult:
    """
    POST a chat completion with concurrency limiting, timeout and retry.

    Transient statuses and network errors are retried with exponential backoff
    up to max_retries times. Permanent failures raise AiClientError.
    """
    api_key = config.ai_api_key()
    if not api_key:
        raise AiClientError("OPENROUTER_API_KEY not configured", "config_error")

    timeout = timeout_s if timeout_s is not None else config.ai_call_timeout_seconds()
    body: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if response_format:
        body["response_format"] = response_format
    headers = {"Authorization": f"Bearer {api_key}"}

    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    last_error: Optional[str] = None
    attempts = 0
    try:
        while attempts <= max_retries:
            with _get_limiter():
                try:
                    response = http.post(config.ai_base_url(), json=body, headers=headers, timeout=timeout)
                except httpx.TimeoutException as exc:
                    raise AiClientError(f"AI call timed out after {timeout}s", "timeout") from exc
                except httpx.HTTPError as exc:
                    if attempts < max_retries:
                        logger.warning("AI call network error (attempt %s): %s", attempts + 1, exc)
                        last_error = str(exc)
                        delay = _backoff_seconds(None, retry_delay_s, attempts)
                        attempts += 1
                        sleep(delay)
                        continue
                    raise AiClientError(f"AI call failed: {exc}", "network_error") from exc

            if response.is_success:
                return _parse_result(response.json(), model, attempts)

            status = response.status_code
            if status in TRANSIENT_STATUS_CODES and attempts < max_retries:
                logger.warning("AI API returned %s (attempt %s); retrying", status, attempts + 1)
                last_error = f"AI API returned {status}"
                delay = _backoff_seconds(response, retry_delay_s, attempts)
                attempts += 1
                sleep(delay)
                continue

            kind = "rate_limited" if status == 429 else "api_error"
            raise AiClientError(f"AI API returned {status}: {response.text}", kind, status)
    finally:
        if owns_client:
            http.close()

    raise AiClientError(
        f"AI call failed after {max_retries + 1} attempts: {last_error or 'unknown'}",
        "retries_exhausted",
    )
