import json

import httpx
import pytest

from backend.app.integrations.ai_client import AiClientError, call_ai, get_ai_client_stats


def _completion(content: str = "Narrative text", tokens: int = 42, model: str = "anthropic/claude-3.5-sonnet"):
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": f"  {content}\n"}}],
        "usage": {"total_tokens": tokens},
    }


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture()
def ai_env(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    monkeypatch.setenv("OPENROUTER_BASE_URL", "https://ai.test/v1/chat/completions")


def _call(client, **overrides):
    kwargs = {
        "model": "anthropic/claude-3.5-sonnet",
        "messages": [{"role": "user", "content": "hello"}],
        "client": client,
        "sleep": lambda _: None,
    }
    kwargs.update(overrides)
    return call_ai(**kwargs)


def test_successful_call_parses_content_and_usage(ai_env):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    result = _call(_client(handler), temperature=0.2, max_tokens=1024)

    assert result.content == "Narrative text"
    assert result.tokens_used == 42
    assert result.model == "anthropic/claude-3.5-sonnet"
    assert result.was_retried is False
    assert seen["url"] == "https://ai.test/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["temperature"] == 0.2
    assert seen["body"]["max_tokens"] == 1024
    assert "response_format" not in seen["body"]


def test_missing_api_key_is_config_error(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    with pytest.raises(AiClientError) as excinfo:
        _call(_client(lambda request: httpx.Response(200, json=_completion())))

    assert excinfo.value.kind == "config_error"
    assert excinfo.value.is_retryable is False


def test_transient_status_is_retried(ai_env):
    statuses = [503, 200]
    delays = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status != 200:
            return httpx.Response(status, text="unavailable")
        return httpx.Response(200, json=_completion("Recovered"))

    result = _call(_client(handler), retry_delay_s=0.5, sleep=delays.append)

    assert result.content == "Recovered"
    assert result.was_retried is True
    assert delays == [0.5]


def test_retry_after_header_is_honoured_and_capped(ai_env):
    statuses = [429, 429, 200]
    delays = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status == 429:
            return httpx.Response(429, headers={"retry-after": "120"})
        return httpx.Response(200, json=_completion())

    _call(_client(handler), sleep=delays.append)

    assert delays == [30.0, 30.0]


def test_permanent_error_is_not_retried(ai_env):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, text="bad request")

    with pytest.raises(AiClientError) as excinfo:
        _call(_client(handler))

    assert len(calls) == 1
    assert excinfo.value.kind == "api_error"
    assert excinfo.value.status_code == 400


def test_rate_limit_after_retries_exhausted(ai_env):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429)

    with pytest.raises(AiClientError) as excinfo:
        _call(_client(handler), max_retries=2)

    assert len(calls) == 3
    assert excinfo.value.kind == "rate_limited"
    assert excinfo.value.is_retryable is True


def test_network_errors_retry_then_fail(ai_env):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AiClientError) as excinfo:
        _call(_client(handler), max_retries=1)

    assert len(calls) == 2
    assert excinfo.value.kind == "network_error"


def test_timeout_is_reported(ai_env):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(AiClientError) as excinfo:
        _call(_client(handler))

    assert excinfo.value.kind == "timeout"


def test_limiter_slots_released_after_calls(ai_env):
    _call(_client(lambda request: httpx.Response(200, json=_completion())))
    with pytest.raises(AiClientError):
        _call(_client(lambda request: httpx.Response(400)))

    assert get_ai_client_stats()["active_call_count"] == 0
