"""Configuration types for normalization, patching and refinement.

All configuration is immutable and passed explicitly into each session,
so concurrent sessions never share mutable policy.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ArrayStrategy(str, enum.Enum):
    """How patch operations that address array elements are applied.

    - ``REPLACE_WHOLE``: rewrite element edits into one ``replace`` of the
      enclosing array (robust to index drift).
    - ``INDEX_PRECISE``: apply literally per RFC 6902.
    - ``REORDER_REMOVALS``: apply literally, but run index removals last,
      highest index first.
    """

    REPLACE_WHOLE = "replace_whole"
    INDEX_PRECISE = "index_precise"
    REORDER_REMOVALS = "reorder_removals"


class ConflictStrategy(str, enum.Enum):
    """What happens when a patch operation does not resolve."""

    ATOMIC = "atomic"
    PARTIAL_APPLY = "partial_apply"


class InvalidResultStrategy(str, enum.Enum):
    """What the session keeps after a patch produced an invalid value."""

    ITERATE_FORWARD = "iterate_forward"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class NormalizeOptions:
    """Options for the normalization pipeline.

    Attributes:
        pair_keys: Key names of a list-of-pairs encoded map.
        discriminator_keys: Sibling keys checked (after the schema's own
            discriminator field) for a variant name in flattened unions.
        recover_maps: Whether to run list-of-pairs map recovery.
    """

    pair_keys: tuple[str, str] = ("key", "value")
    discriminator_keys: tuple[str, ...] = ("type", "kind", "variant", "tag")
    recover_maps: bool = True

    def __post_init__(self) -> None:
        if len(self.pair_keys) != 2 or self.pair_keys[0] == self.pair_keys[1]:
            raise ValueError(f"pair_keys must be two distinct names, got {self.pair_keys!r}")
        if not isinstance(self.discriminator_keys, tuple):
            object.__setattr__(self, "discriminator_keys", tuple(self.discriminator_keys))


@dataclass(frozen=True)
class EscalationPolicy:
    """Switch to a stronger generator after repeated failures.

    Attributes:
        after_attempts: Attempts on the primary generator before switching.
        target: Generator identity (model name) to escalate to.
    """

    after_attempts: int
    target: str

    def __post_init__(self) -> None:
        if self.after_attempts < 1:
            raise ValueError("after_attempts must be >= 1")


@dataclass(frozen=True)
class RefinementConfig:
    """Per-session refinement policy.

    Attributes:
        max_retries: Patch requests allowed per generator target. The
            initial generation is not a retry, so a session makes at most
            ``max_retries + 1`` attempts before escalation.
        model: Identity of the primary generator (None = generator default).
        escalation: Optional escalation policy.
        array_strategy: Patch engine array handling.
        conflict_strategy: Patch engine conflict handling.
        on_invalid: Keep or discard an invalid patched value.
        strict: Strict (exact-type) structural decoding.
    """

    max_retries: int = 3
    model: str | None = None
    escalation: EscalationPolicy | None = None
    array_strategy: ArrayStrategy = ArrayStrategy.REPLACE_WHOLE
    conflict_strategy: ConflictStrategy = ConflictStrategy.PARTIAL_APPLY
    on_invalid: InvalidResultStrategy = InvalidResultStrategy.ITERATE_FORWARD
    strict: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
