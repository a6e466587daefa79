"""patchloop: schema-driven repair and JSON Patch refinement of LLM output.

Raw generator output is normalized against a target schema, validated,
and, when invalid, refined through RFC 6902 patches requested from the
generator until it validates or the retry budget runs out.
"""

from patchloop._version import __version__

# Sessions
from patchloop.session import RefinementSession, SessionState

# Configuration
from patchloop.models.config import (
    ArrayStrategy,
    ConflictStrategy,
    EscalationPolicy,
    InvalidResultStrategy,
    NormalizeOptions,
    RefinementConfig,
)

# Schema, validation and attempt models
from patchloop.models.schema import DescriptorKind, SchemaDescriptor, VariantDescriptor, VariantShape
from patchloop.models.outcome import IssueKind, ValidationIssue, ValidationOutcome
from patchloop.models.attempt import AttemptStatus, RefinementAttempt, RefinementResult
from patchloop.models.patch import PatchDocument, PatchOperation, SkippedOperation

# Normalization
from patchloop.normalize import (
    DroppedField,
    NormalizationReport,
    normalize,
    normalize_with_report,
    prune_nulls,
    recover_maps,
    unflatten,
)

# Patch engine and decoding
from patchloop.engine.patcher import PatchResult, apply_patch
from patchloop.engine.decoder import decode_and_validate, encode
from patchloop.engine.parsing import parse_json_text, parse_patch_text

# Generators and trace sinks
from patchloop.llm.protocols import Generator
from patchloop.storage.sink import MemoryTraceSink, SqlTraceSink, TraceSink

# Exceptions
from patchloop.exceptions import (
    BudgetExhaustedError,
    GenerationTimeoutError,
    GeneratorError,
    NormalizationError,
    NormalizationErrorKind,
    ParseError,
    PatchApplyError,
    PatchErrorKind,
    PatchloopError,
    SchemaError,
    SessionCancelledError,
    SessionStateError,
    UnflattenError,
)

__all__ = [
    "__version__",
    # Sessions
    "RefinementSession",
    "SessionState",
    # Config
    "ArrayStrategy",
    "ConflictStrategy",
    "EscalationPolicy",
    "InvalidResultStrategy",
    "NormalizeOptions",
    "RefinementConfig",
    # Models
    "DescriptorKind",
    "SchemaDescriptor",
    "VariantDescriptor",
    "VariantShape",
    "IssueKind",
    "ValidationIssue",
    "ValidationOutcome",
    "AttemptStatus",
    "RefinementAttempt",
    "RefinementResult",
    "PatchDocument",
    "PatchOperation",
    "SkippedOperation",
    # Normalization
    "DroppedField",
    "NormalizationReport",
    "normalize",
    "normalize_with_report",
    "prune_nulls",
    "recover_maps",
    "unflatten",
    # Engine
    "PatchResult",
    "apply_patch",
    "decode_and_validate",
    "encode",
    "parse_json_text",
    "parse_patch_text",
    # Collaborators
    "Generator",
    "MemoryTraceSink",
    "SqlTraceSink",
    "TraceSink",
    # Exceptions
    "PatchloopError",
    "SchemaError",
    "ParseError",
    "NormalizationError",
    "NormalizationErrorKind",
    "UnflattenError",
    "PatchApplyError",
    "PatchErrorKind",
    "GeneratorError",
    "GenerationTimeoutError",
    "BudgetExhaustedError",
    "SessionCancelledError",
    "SessionStateError",
]
