"""Generator and LLM client protocols.

A RefinementSession only needs a Generator. OpenAIGenerator adapts any
LLMClient (OpenAIClient by default) to that protocol.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Generator(Protocol):
    """Protocol for the text generator a session corrects.

    Both methods return raw text. They may raise GeneratorError;
    GenerationTimeoutError marks a timed-out request that the session
    records and retries under its budget.
    """

    def generate(
        self, prompt: str, schema: dict[str, Any], *, model: str | None = None
    ) -> str:
        """Produce a JSON value for *prompt* conforming to *schema*."""
        ...

    def generate_patch(
        self,
        current_value: Any,
        schema: dict[str, Any],
        problem: str,
        *,
        model: str | None = None,
    ) -> str:
        """Produce JSON Patch text fixing *problem* in *current_value*."""
        ...


@runtime_checkable
class LLMClient(Protocol):
    """Chat completion backend behind an OpenAIGenerator.

    chat() must return an OpenAI-style response dict, since the generator
    reads ``choices[0].message.content``. OpenAIClient is the built-in
    implementation; tests substitute recording fakes.
    """

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send *messages* and return the raw completion dict."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        ...
