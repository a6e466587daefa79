"""Map-shape recovery.

Strict-schema generators cannot emit free-form objects, so maps are
requested as lists of ``{"key": ..., "value": ...}`` pairs. This stage
turns such lists back into objects.

Known ambiguity: a genuine list of two-field records whose field names
equal the pair keys is indistinguishable from an encoded map and is
converted as well.
"""

from __future__ import annotations

import json
from typing import Any

from patchloop.exceptions import NormalizationError, NormalizationErrorKind

DEFAULT_PAIR_KEYS = ("key", "value")


def _is_pair(item: Any, pair_keys: tuple[str, str]) -> bool:
    return isinstance(item, dict) and len(item) == 2 and all(k in item for k in pair_keys)


def _key_text(key: Any, path: tuple[str | int, ...]) -> str:
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, (bool, int, float)):
        return json.dumps(key)
    raise NormalizationError(
        NormalizationErrorKind.MAP_SHAPE_AMBIGUOUS,
        path,
        f"map entry key must be a scalar, got {type(key).__name__}",
    )


def recover_maps(
    value: Any,
    pair_keys: tuple[str, str] = DEFAULT_PAIR_KEYS,
    _path: tuple[str | int, ...] = (),
) -> Any:
    """Rewrite list-of-pairs sequences into mappings, recursively.

    Returns a new tree; *value* is not modified.

    Raises:
        NormalizationError: MAP_SHAPE_AMBIGUOUS when an encoded map has a
            duplicate or non-scalar key.
    """
    key_name, value_name = pair_keys
    if isinstance(value, dict):
        return {k: recover_maps(v, pair_keys, _path + (k,)) for k, v in value.items()}
    if isinstance(value, list):
        # Pair test runs on recovered elements, so the output is a fixpoint.
        items = [recover_maps(v, pair_keys, _path + (i,)) for i, v in enumerate(value)]
        if not (items and all(_is_pair(item, pair_keys) for item in items)):
            return items
        result: dict[str, Any] = {}
        for idx, item in enumerate(items):
            key = _key_text(item[key_name], _path + (idx, key_name))
            if key in result:
                raise NormalizationError(
                    NormalizationErrorKind.MAP_SHAPE_AMBIGUOUS,
                    _path + (idx,),
                    f"duplicate map key {key!r}",
                )
            result[key] = item[value_name]
        return result
    return value
