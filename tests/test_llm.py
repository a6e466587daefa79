"""Tests for the patchloop.llm package.

Tests cover:
- OpenAIClient: request formatting, retry behavior, auth errors, env config
- Error hierarchy: every client error is a GeneratorError; timeouts are
  GenerationTimeoutErrors
- OpenAIGenerator: prompts, response formats, model selection
"""

from __future__ import annotations

import json

import httpx
import pytest

from patchloop.exceptions import GenerationTimeoutError, GeneratorError, PatchloopError
from patchloop.llm import (
    Generator,
    LLMAuthError,
    LLMClient,
    LLMClientError,
    LLMConfigError,
    LLMRateLimitError,
    LLMResponseError,
    LLMServerError,
    LLMTimeoutError,
    OpenAIClient,
    OpenAIGenerator,
)
from patchloop.llm.client import API_KEY_ENV, BASE_URL_ENV
from patchloop.models.config import ArrayStrategy
from patchloop.models.schema import json_schema_for
from tests.schemas import ForecastConfig


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

def _success_response(content: str = '{"model": "Auto"}', model: str = "gpt-4o-mini") -> dict:
    """Build a realistic OpenAI chat completion response dict."""
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def _make_client(handler=None, api_key: str = "test-key", max_retries: int = 3, **kwargs) -> OpenAIClient:
    """Create an OpenAIClient whose transport is replaced by *handler*."""
    client = OpenAIClient(
        api_key=api_key,
        base_url="http://test-api",
        max_retries=max_retries,
        **kwargs,
    )
    if handler is not None:
        # Replace with mock transport but preserve original headers
        client._client = httpx.Client(
            transport=httpx.MockTransport(handler),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )
    return client


class MockLLMClient:
    """A mock LLM client that records calls and returns canned responses."""

    def __init__(self, content: str = '{"model": "Auto"}'):
        self.calls: list[dict] = []
        self._content = content

    def chat(self, messages, *, model=None, temperature=None, max_tokens=None, **kwargs) -> dict:
        self.calls.append({"messages": messages, "model": model, "temperature": temperature, **kwargs})
        return _success_response(self._content)

    def close(self) -> None:
        pass


# ===========================================================================
# Error hierarchy tests
# ===========================================================================

class TestErrorHierarchy:
    def test_client_errors_are_generator_errors(self):
        for error_class in [LLMClientError, LLMConfigError, LLMRateLimitError,
                            LLMAuthError, LLMResponseError, LLMServerError, LLMTimeoutError]:
            assert issubclass(error_class, GeneratorError)
            assert issubclass(error_class, PatchloopError)

    def test_only_timeouts_are_retried_by_sessions(self):
        assert issubclass(LLMTimeoutError, GenerationTimeoutError)
        assert not issubclass(LLMAuthError, GenerationTimeoutError)

    def test_rate_limit_error_has_retry_after(self):
        err = LLMRateLimitError("rate limited", retry_after=30.0)
        assert err.retry_after == 30.0
        assert "30.0s" in str(err)

    def test_rate_limit_error_no_retry_after(self):
        assert LLMRateLimitError("rate limited").retry_after is None


# ===========================================================================
# OpenAIClient tests
# ===========================================================================

class TestOpenAIClientConfig:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv(API_KEY_ENV, raising=False)
        with pytest.raises(LLMConfigError, match=API_KEY_ENV):
            OpenAIClient()

    def test_env_config(self, monkeypatch):
        monkeypatch.setenv(API_KEY_ENV, "env-key")
        monkeypatch.setenv(BASE_URL_ENV, "http://env-api/v1/")
        captured = {}

        client = OpenAIClient()
        assert client.default_model == "gpt-4o-mini"

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            return httpx.Response(200, json=_success_response())

        client._client = httpx.Client(transport=httpx.MockTransport(handler))
        client.chat([{"role": "user", "content": "hi"}])
        assert captured["url"] == "http://env-api/v1/chat/completions"
        client.close()


class TestOpenAIClientChat:
    def test_request_format(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["payload"] = json.loads(request.content)
            captured["headers"] = dict(request.headers)
            return httpx.Response(200, json=_success_response())

        client = _make_client(handler)
        client.chat(
            [{"role": "user", "content": "Test"}],
            model="gpt-4o",
            temperature=0.5,
            response_format={"type": "json_object"},
        )

        payload = captured["payload"]
        assert payload["model"] == "gpt-4o"
        assert payload["temperature"] == 0.5
        assert payload["response_format"] == {"type": "json_object"}
        assert "max_tokens" not in payload
        assert "Bearer test-key" in captured["headers"]["authorization"]
        client.close()

    def test_default_model(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["payload"] = json.loads(request.content)
            return httpx.Response(200, json=_success_response())

        with _make_client(handler, default_model="small-model") as client:
            client.chat([{"role": "user", "content": "Hello"}])
        assert captured["payload"]["model"] == "small-model"

    def test_extract_content(self):
        assert OpenAIClient.extract_content(_success_response("x")) == "x"
        assert OpenAIClient.extract_content({"choices": [{"message": {}}]}) == ""
        with pytest.raises(LLMResponseError):
            OpenAIClient.extract_content({"choices": []})
        with pytest.raises(LLMResponseError):
            OpenAIClient.extract_content({"choices": [None]})

    def test_missing_choices(self):
        client = _make_client(lambda request: httpx.Response(200, json={"error": "?"}))
        with pytest.raises(LLMResponseError):
            client.chat([{"role": "user", "content": "Test"}])
        client.close()


class TestOpenAIClientErrors:
    def test_retry_on_500_then_success(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return httpx.Response(500, json={"error": "server error"})
            return httpx.Response(200, json=_success_response())

        client = _make_client(handler, max_retries=3, backoff=0.0)
        response = client.chat([{"role": "user", "content": "Test"}])
        assert call_count == 2
        assert "choices" in response
        client.close()

    def test_rate_limit_honours_retry_after_then_succeeds(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "0"}, json={"error": "slow down"})
            return httpx.Response(200, json=_success_response())

        with _make_client(handler, backoff=0.0) as client:
            client.chat([{"role": "user", "content": "Test"}])
        assert len(calls) == 2

    def test_persistent_server_error(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(503, text="unavailable")

        client = _make_client(handler, max_retries=2, backoff=0.0)
        with pytest.raises(LLMServerError) as exc_info:
            client.chat([{"role": "user", "content": "Test"}])
        assert exc_info.value.status_code == 503
        assert call_count == 2
        client.close()

    def test_non_json_body(self):
        client = _make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(LLMResponseError, match="not JSON"):
            client.chat([{"role": "user", "content": "Test"}])
        client.close()

    def test_no_retry_on_401(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(401, json={"error": "unauthorized"})

        client = _make_client(handler, max_retries=3)
        with pytest.raises(LLMAuthError):
            client.chat([{"role": "user", "content": "Test"}])
        assert call_count == 1
        client.close()

    def test_client_error_not_retried(self):
        call_count = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal call_count
            call_count += 1
            return httpx.Response(400, json={"error": "bad request"})

        client = _make_client(handler, max_retries=3)
        with pytest.raises(LLMClientError, match="HTTP 400"):
            client.chat([{"role": "user", "content": "Test"}])
        assert call_count == 1
        client.close()

    def test_read_timeout_becomes_generation_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _make_client(handler)
        with pytest.raises(GenerationTimeoutError) as exc_info:
            client.chat([{"role": "user", "content": "Test"}])
        assert isinstance(exc_info.value, LLMTimeoutError)
        client.close()


# ===========================================================================
# OpenAIGenerator tests
# ===========================================================================

class TestOpenAIGenerator:
    def test_protocols(self):
        assert isinstance(MockLLMClient(), LLMClient)
        assert isinstance(OpenAIGenerator(MockLLMClient()), Generator)

    def test_generate_sends_schema_and_prompt(self):
        llm = MockLLMClient()
        generator = OpenAIGenerator(llm, model="small", temperature=0.0)
        schema = json_schema_for(ForecastConfig)

        text = generator.generate("monthly forecast", schema)

        assert text == '{"model": "Auto"}'
        call = llm.calls[0]
        assert call["model"] == "small"
        assert call["temperature"] == 0.0
        assert call["response_format"] == {"type": "json_object"}
        system, user = call["messages"]
        assert system["role"] == "system"
        assert '"ForecastConfig"' in system["content"]
        assert user == {"role": "user", "content": "monthly forecast"}

    def test_structured_generation(self):
        llm = MockLLMClient()
        schema = json_schema_for(ForecastConfig)
        OpenAIGenerator(llm, structured=True).generate("p", schema)
        response_format = llm.calls[0]["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "ForecastConfig"
        assert response_format["json_schema"]["schema"] == schema

    def test_session_model_overrides_default(self):
        llm = MockLLMClient()
        OpenAIGenerator(llm, model="small").generate("p", {}, model="big")
        assert llm.calls[0]["model"] == "big"

    def test_generate_patch_prompt(self):
        llm = MockLLMClient('{"patch": []}')
        generator = OpenAIGenerator(llm, array_strategy=ArrayStrategy.REPLACE_WHOLE)
        text = generator.generate_patch(
            {"model": "Auto", "horizon": "soon"},
            json_schema_for(ForecastConfig),
            "Fix only these problems:\n- [structural] /horizon: bad",
        )
        assert text == '{"patch": []}'
        system, user = llm.calls[0]["messages"]
        assert "RFC 6902" in system["content"]
        assert "single 'replace' operation" in system["content"]
        assert '"horizon": "soon"' in user["content"]
        assert "/horizon: bad" in user["content"]
        assert llm.calls[0]["response_format"] == {"type": "json_object"}

    def test_index_precise_has_no_array_guidance(self):
        llm = MockLLMClient('{"patch": []}')
        OpenAIGenerator(llm, array_strategy=ArrayStrategy.INDEX_PRECISE).generate_patch(
            {}, {}, "problem"
        )
        assert "replace' operation" not in llm.calls[0]["messages"][0]["content"]

    def test_over_http(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_success_response('{"model": "Auto"}'))

        with _make_client(handler) as client:
            text = OpenAIGenerator(client).generate("p", {})
        assert json.loads(text) == {"model": "Auto"}
