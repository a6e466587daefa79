"""Parsing raw generator text into JSON values and patch operations.

Generators wrap JSON in Markdown code fences or surround it with prose
despite instructions. Both parsers strip that wrapping before decoding.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import TypeAdapter, ValidationError

from patchloop.exceptions import ParseError
from patchloop.models.patch import PatchOperation

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

_OPS_ADAPTER = TypeAdapter(list[PatchOperation])


def clean_json_text(text: str) -> str:
    """Extract the JSON payload from fenced or prose-wrapped text.

    The first fenced block wins. Otherwise the outermost ``{...}`` span
    is used, then the outermost ``[...]`` span, then the trimmed text.
    """
    trimmed = text.strip()
    fenced = _FENCE_RE.search(trimmed)
    if fenced:
        trimmed = fenced.group(1).strip()
    if trimmed[:1] in ("{", "["):
        return trimmed
    for open_, close in (("{", "}"), ("[", "]")):
        start = trimmed.find(open_)
        end = trimmed.rfind(close)
        if start != -1 and end > start:
            return trimmed[start : end + 1]
    return trimmed


def parse_json_text(text: str) -> Any:
    """Decode generator output into a JSON value.

    Raises:
        ParseError: If no valid JSON can be extracted.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    cleaned = clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Generator output is not valid JSON: {exc}", text) from exc


def parse_patch_text(text: str) -> list[PatchOperation]:
    """Decode a patch response into operations.

    Accepts ``{"patch": [...]}`` or a bare operation list, either of
    which may be fenced or wrapped in prose.

    Raises:
        ParseError: If the text is not JSON or not a valid JSON Patch.
    """
    data = parse_json_text(text)
    if isinstance(data, dict) and "op" in data:
        data = [data]
    elif isinstance(data, dict):
        if "patch" not in data:
            raise ParseError("Patch response has no 'patch' member", text)
        data = data["patch"]
    if not isinstance(data, list):
        raise ParseError(
            f"Patch must be a list of operations, got {type(data).__name__}", text
        )
    try:
        return _OPS_ADAPTER.validate_python(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'/'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ParseError(f"Invalid patch operation(s): {problems}", text) from exc
