"""Prompts for structured generation and JSON Patch correction.

Provides the system prompts sent by OpenAIGenerator, the user prompt
builder for patch requests, and the problem description builder used by
RefinementSession.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from patchloop.models.config import ArrayStrategy
from patchloop.models.outcome import ValidationIssue, format_problem

GENERATE_SYSTEM: str = (
    "You produce JSON data. Return ONLY a single JSON value that conforms to "
    "the provided JSON Schema. Do not wrap it in code fences or prose."
)

PATCH_SYSTEM: str = (
    "You are a JSON Patch generator. Given the current JSON value and the target schema, "
    "return a JSON object with a 'patch' key containing an array of valid RFC 6902 "
    "operations that transforms the current value to fix the reported problems and "
    "satisfy the schema. Only touch the reported paths. "
    "Do not wrap the result in code fences or prose."
)

_ARRAY_GUIDANCE: dict[ArrayStrategy, str] = {
    ArrayStrategy.REPLACE_WHOLE: (
        "\n\nIMPORTANT: When modifying arrays, prefer a single 'replace' operation on "
        'the entire array (e.g. {"op": "replace", "path": "/items", "value": [...]}) '
        "rather than individual add/remove operations on array indices. This avoids "
        "index shift issues when operations are applied in sequence."
    ),
    ArrayStrategy.REORDER_REMOVALS: (
        "\n\nWhen removing several array elements, list the removals in reverse index "
        "order (highest index first)."
    ),
    ArrayStrategy.INDEX_PRECISE: "",
}

_MAX_VALUE_CHARS = 20000


def build_patch_system_prompt(array_strategy: ArrayStrategy) -> str:
    """System prompt for patch requests, with array guidance for *array_strategy*."""
    return PATCH_SYSTEM + _ARRAY_GUIDANCE[array_strategy]


def build_generate_system_prompt(schema: dict[str, Any]) -> str:
    return f"{GENERATE_SYSTEM}\n\nJSON Schema:\n{json.dumps(schema, indent=2)}"


def build_patch_prompt(current_value: Any, schema: dict[str, Any], problem: str) -> str:
    """Build the user prompt for one patch request.

    Args:
        current_value: The value to be corrected.
        schema: JSON Schema of the target type.
        problem: Problem description from :func:`build_problem_description`.

    Returns:
        The formatted user prompt string.
    """
    value_text = json.dumps(current_value, indent=2)
    if len(value_text) > _MAX_VALUE_CHARS:
        value_text = value_text[:_MAX_VALUE_CHARS] + "\n... (truncated)"
    return (
        f"Current value:\n{value_text}\n\n"
        f"Target JSON Schema:\n{json.dumps(schema, indent=2)}\n\n"
        f"{problem}\n\n"
        'Respond with {"patch": [...]}.'
    )


def build_problem_description(
    issues: Sequence[ValidationIssue],
    instruction: str | None = None,
    *,
    reminder: bool = False,
) -> str:
    """Combine a caller instruction and outstanding issues into one description.

    The first request of a refine() call carries just the instruction;
    later requests repeat it as a reminder above the issue list.
    """
    parts: list[str] = []
    if instruction:
        label = "Reminder of the requested change" if reminder else "Requested change"
        parts.append(f"{label}: {instruction}")
    if issues or not instruction:
        parts.append(format_problem(issues))
    return "\n\n".join(parts)
