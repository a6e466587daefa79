"""Schema-driven repairs for raw generator output.

Each stage is a pure function and can be used on its own.
"""

from patchloop.normalize.maps import recover_maps
from patchloop.normalize.pipeline import (
    NormalizationReport,
    normalize,
    normalize_with_report,
)
from patchloop.normalize.prune import prune_nulls
from patchloop.normalize.unflatten import DroppedField, Unflattener, unflatten

__all__ = [
    "DroppedField",
    "NormalizationReport",
    "Unflattener",
    "normalize",
    "normalize_with_report",
    "prune_nulls",
    "recover_maps",
    "unflatten",
]
