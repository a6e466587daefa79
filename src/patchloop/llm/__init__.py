"""Generator collaborators.

Provides the Generator protocol consumed by RefinementSession, an
OpenAI-compatible HTTP client, and OpenAIGenerator which joins the two.
"""

from patchloop.llm.client import OpenAIClient
from patchloop.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMRateLimitError,
    LLMResponseError,
    LLMServerError,
    LLMTimeoutError,
)
from patchloop.llm.generator import OpenAIGenerator
from patchloop.llm.protocols import Generator, LLMClient

__all__ = [
    "Generator",
    "LLMClient",
    "OpenAIClient",
    "OpenAIGenerator",
    "LLMClientError",
    "LLMConfigError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMResponseError",
    "LLMServerError",
    "LLMTimeoutError",
]
