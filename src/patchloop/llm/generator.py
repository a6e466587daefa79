"""OpenAIGenerator: the Generator protocol over a chat completion client."""

from __future__ import annotations

import logging
from typing import Any

from patchloop.llm.client import OpenAIClient
from patchloop.llm.protocols import LLMClient
from patchloop.models.config import ArrayStrategy
from patchloop.prompts.patch import (
    build_generate_system_prompt,
    build_patch_prompt,
    build_patch_system_prompt,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT = {"type": "json_object"}


class OpenAIGenerator:
    """Generate values and patches through an OpenAI-compatible client.

    Args:
        client: Chat client (usually OpenAIClient).
        model: Default model; a session's active identity overrides it.
        array_strategy: Selects the array guidance in the patch prompt.
            Should match the session's RefinementConfig.array_strategy.
        temperature: Sampling temperature, or None for the API default.
        structured: Send the target schema as a strict ``json_schema``
            response format for initial generations. Patch requests always
            use ``json_object`` since the patch shape is not the target's.
    """

    def __init__(
        self,
        client: LLMClient,
        model: str | None = None,
        *,
        array_strategy: ArrayStrategy = ArrayStrategy.REPLACE_WHOLE,
        temperature: float | None = None,
        structured: bool = False,
    ) -> None:
        self._client = client
        self.model = model
        self._array_strategy = array_strategy
        self._temperature = temperature
        self._structured = structured

    def generate(
        self, prompt: str, schema: dict[str, Any], *, model: str | None = None
    ) -> str:
        messages = [
            {"role": "system", "content": build_generate_system_prompt(schema)},
            {"role": "user", "content": prompt},
        ]
        if self._structured:
            response_format = {
                "type": "json_schema",
                "json_schema": {"name": schema.get("title", "output"), "schema": schema},
            }
        else:
            response_format = _JSON_OBJECT
        return self._complete(messages, model, response_format)

    def generate_patch(
        self,
        current_value: Any,
        schema: dict[str, Any],
        problem: str,
        *,
        model: str | None = None,
    ) -> str:
        messages = [
            {"role": "system", "content": build_patch_system_prompt(self._array_strategy)},
            {"role": "user", "content": build_patch_prompt(current_value, schema, problem)},
        ]
        return self._complete(messages, model, _JSON_OBJECT)

    def _complete(
        self,
        messages: list[dict[str, str]],
        model: str | None,
        response_format: dict[str, Any],
    ) -> str:
        response = self._client.chat(
            messages,
            model=model or self.model,
            temperature=self._temperature,
            response_format=response_format,
        )
        content = OpenAIClient.extract_content(response)
        logger.debug("Generator returned %d chars", len(content))
        return content
