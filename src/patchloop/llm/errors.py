"""Errors raised by the chat completion client.

Every client error is a GeneratorError. A RefinementSession records a
timed-out request (LLMTimeoutError) as a failed attempt and carries on;
any other client error ends the session.
"""

from __future__ import annotations

from patchloop.exceptions import GenerationTimeoutError, GeneratorError


class LLMClientError(GeneratorError):
    """The chat completion request failed."""


class LLMConfigError(LLMClientError):
    """The client cannot be built, e.g. no API key is configured."""


class LLMRateLimitError(LLMClientError):
    """HTTP 429 persisted through the client's retries.

    Attributes:
        retry_after: Delay the server asked for (Retry-After header), or None.
    """

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message)


class LLMAuthError(LLMClientError):
    """The API rejected the credentials (401/403); never retried."""


class LLMServerError(LLMClientError):
    """Transient server-side failure (5xx); retried by the client."""

    def __init__(self, message: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)


class LLMResponseError(LLMClientError):
    """The response body is not a chat completion."""


class LLMTimeoutError(LLMClientError, GenerationTimeoutError):
    """The request did not complete within the client timeout."""
