"""The normalization pipeline: map recovery, null pruning, unflattening."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from patchloop.models.config import NormalizeOptions
from patchloop.models.schema import SchemaDescriptor
from patchloop.normalize.maps import recover_maps
from patchloop.normalize.prune import prune_nulls
from patchloop.normalize.unflatten import DroppedField, Unflattener

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationReport:
    """Normalized value plus the sibling fields unflattening discarded."""

    value: Any
    dropped: tuple[DroppedField, ...] = ()


def normalize_with_report(
    raw: Any,
    schema: SchemaDescriptor | Any,
    options: NormalizeOptions | None = None,
) -> NormalizationReport:
    """Run all three stages on *raw* and report dropped fields.

    Args:
        raw: Parsed generator output. Not modified.
        schema: A SchemaDescriptor, or a type to build one for.
        options: Stage options (defaults apply when None).

    Raises:
        NormalizationError: When a stage cannot recover the tree.
    """
    options = options or NormalizeOptions()
    if not isinstance(schema, SchemaDescriptor):
        schema = SchemaDescriptor.for_type(schema)

    value = raw
    if options.recover_maps:
        value = recover_maps(value, options.pair_keys)
    value = prune_nulls(value)
    unflattener = Unflattener(options)
    value = unflattener.unflatten(value, schema)
    if unflattener.dropped:
        logger.debug("Normalization dropped %d field(s)", len(unflattener.dropped))
    return NormalizationReport(value, tuple(unflattener.dropped))


def normalize(
    raw: Any,
    schema: SchemaDescriptor | Any,
    options: NormalizeOptions | None = None,
) -> Any:
    """Return the normalized copy of *raw*. See :func:`normalize_with_report`."""
    return normalize_with_report(raw, schema, options).value
