"""Null pruning.

Generators asked to fill a flattened union emit explicit nulls for every
field of the variants they did not choose. Those keys are removed so the
variant detector only sees fields that were actually set. Null elements
inside sequences are kept.
"""

from __future__ import annotations

from typing import Any


def prune_nulls(value: Any) -> Any:
    """Return a copy of *value* without null-valued mapping entries."""
    if isinstance(value, dict):
        return {k: prune_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [prune_nulls(v) for v in value]
    return value
