"""OpenAI-compatible chat completion client for generators.

Each request is retried with tenacity on rate limits, 5xx responses and
connection failures. A server-supplied Retry-After is honoured when it is
longer than the exponential backoff. Read timeouts are never retried here:
they surface as LLMTimeoutError, which a RefinementSession records as a
failed attempt and retries under its own budget.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
import tenacity

from patchloop.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMRateLimitError,
    LLMResponseError,
    LLMServerError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

API_KEY_ENV = "PATCHLOOP_OPENAI_API_KEY"
BASE_URL_ENV = "PATCHLOOP_OPENAI_BASE_URL"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"

_SERVER_ERRORS = frozenset({500, 502, 503, 504})
_TRANSIENT = (LLMRateLimitError, LLMServerError, httpx.ConnectError, httpx.ConnectTimeout)


def _parse_retry_after(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _check_status(response: httpx.Response) -> None:
    """Raise the LLMClientError matching a non-2xx *response*."""
    status = response.status_code
    if status < 400:
        return
    detail = f"HTTP {status} - {response.text}"
    if status in (401, 403):
        raise LLMAuthError(f"Authentication failed: {detail}")
    if status == 429:
        raise LLMRateLimitError(
            f"Rate limited: {detail}",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    if status in _SERVER_ERRORS:
        raise LLMServerError(detail, status_code=status)
    raise LLMClientError(detail)


class _BackoffWithRetryAfter(tenacity.wait.wait_base):
    """Exponential backoff, stretched to any Retry-After the server sent."""

    def __init__(self, base: float, cap: float) -> None:
        self._exponential = tenacity.wait_exponential(multiplier=base, min=base, max=cap)

    def __call__(self, retry_state: tenacity.RetryCallState) -> float:
        delay = self._exponential(retry_state)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            exc = outcome.exception()
            if isinstance(exc, LLMRateLimitError) and exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
        return delay


class OpenAIClient:
    """Sync client for the ``/chat/completions`` endpoint.

    Configuration comes from the constructor or the PATCHLOOP_OPENAI_*
    environment variables. Every failure is raised as an LLMClientError
    subclass, so the session sees it as a GeneratorError.

    Usage::

        with OpenAIClient(api_key="sk-...") as client:
            generator = OpenAIGenerator(client, model="gpt-4o-mini")
            session = RefinementSession(ForecastConfig, generator)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        max_retries: int = 3,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        """Configure the client.

        Args:
            api_key: Falls back to PATCHLOOP_OPENAI_API_KEY.
            base_url: Falls back to PATCHLOOP_OPENAI_BASE_URL, then the
                public OpenAI endpoint.
            default_model: Model for requests that name none.
            timeout: Per-request timeout in seconds.
            max_retries: Total tries per request for transient failures.
            backoff: First backoff delay in seconds; doubles per retry.
            max_backoff: Upper bound for the exponential delay.

        Raises:
            LLMConfigError: If no API key is configured.
        """
        key = api_key or os.environ.get(API_KEY_ENV, "")
        if not key:
            raise LLMConfigError(
                f"No API key configured: pass api_key= or set {API_KEY_ENV}."
            )
        root = base_url or os.environ.get(BASE_URL_ENV) or DEFAULT_BASE_URL
        self._endpoint = root.rstrip("/") + "/chat/completions"
        self.default_model = default_model
        self._timeout = timeout
        self._max_retries = max_retries
        self._wait = _BackoffWithRetryAfter(backoff, max_backoff)
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {key}"},
        )

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send one chat completion request, retrying transient failures.

        Extra keyword arguments (``response_format`` and the like) are
        added to the request body as given.

        Raises:
            LLMAuthError: On 401/403, without retrying.
            LLMRateLimitError: When 429s outlast the retries.
            LLMServerError: When 5xx responses outlast the retries.
            LLMTimeoutError: When a request times out.
            LLMResponseError: When the body has no ``choices``.
            LLMClientError: On other HTTP or transport failures.
        """
        body: dict[str, Any] = {"model": model or self.default_model, "messages": messages}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        body.update(kwargs)

        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(_TRANSIENT),
            wait=self._wait,
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            data = retrying(self._post, body)
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(f"No response within {self._timeout}s: {exc}") from exc
        except httpx.HTTPError as exc:
            raise LLMClientError(f"Transport error: {exc}") from exc

        if not isinstance(data, dict) or "choices" not in data:
            raise LLMResponseError(f"Response has no 'choices': {data!r}")
        return data

    def _post(self, body: dict[str, Any]) -> Any:
        response = self._client.post(self._endpoint, json=body)
        _check_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise LLMResponseError(f"Response is not JSON: {response.text[:200]!r}") from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def extract_content(response: dict) -> str:
        """Return the first choice's message text ('' when it has none).

        Raises:
            LLMResponseError: If the response has no usable first choice.
        """
        try:
            return response["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMResponseError(f"No message content in response: {response!r}") from exc
