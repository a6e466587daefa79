"""Schema descriptors: static, introspectable shapes of a target type.

A SchemaDescriptor is built once per target (from a JSON Schema document
or from a Python type through pydantic) and shared read-only by every
normalization pass and refinement session.

Tagged unions follow the externally-tagged convention: each payload
variant is an object with exactly one required property named after the
variant, and unit variants are bare strings::

    class Mstl(BaseModel):
        model_config = ConfigDict(extra="forbid")
        Mstl: MstlParams

    ForecastModel = Union[Literal["Auto"], Mstl]
"""

from __future__ import annotations

import dataclasses
import enum
import functools
import types
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import TypeAdapter

from patchloop.exceptions import SchemaError

_EMPTY: Mapping[str, "SchemaDescriptor"] = types.MappingProxyType({})


class DescriptorKind(str, enum.Enum):
    """Structural kind of a schema node."""

    OBJECT = "object"
    TAGGED_UNION = "tagged_union"
    SCALAR = "scalar"
    MAPPING = "mapping"
    SEQUENCE = "sequence"


class VariantShape(str, enum.Enum):
    """Payload shape of a tagged-union variant."""

    UNIT = "unit"
    NEWTYPE = "newtype"
    STRUCT = "struct"


@dataclass(frozen=True, eq=False)
class VariantDescriptor:
    """One variant of a tagged union.

    Attributes:
        tag_name: Exact variant name as it appears on the wire.
        shape: UNIT (bare tag string), NEWTYPE (single payload value) or
            STRUCT (named payload fields).
        inner: Payload descriptor. For STRUCT this is the OBJECT
            descriptor holding the variant's fields; None for UNIT.
    """

    tag_name: str
    shape: VariantShape
    inner: SchemaDescriptor | None = None

    @property
    def required_fields(self) -> frozenset[str]:
        if self.inner is not None and self.inner.kind is DescriptorKind.OBJECT:
            return self.inner.required
        return frozenset()

    @property
    def all_fields(self) -> tuple[str, ...]:
        if self.inner is not None and self.inner.kind is DescriptorKind.OBJECT:
            return tuple(self.inner.fields)
        return ()

    def __repr__(self) -> str:
        return f"VariantDescriptor({self.tag_name!r}, {self.shape.value})"


@dataclass(frozen=True, eq=False)
class SchemaDescriptor:
    """Immutable description of a target shape.

    ``fields`` is a read-only mapping; for recursive object definitions
    it is filled after the descriptor is created, which is why equality
    is identity-based and the repr does not descend.
    """

    kind: DescriptorKind
    fields: Mapping[str, SchemaDescriptor] = field(default_factory=lambda: _EMPTY)
    required: frozenset[str] = frozenset()
    values: SchemaDescriptor | None = None
    items: SchemaDescriptor | None = None
    variants: tuple[VariantDescriptor, ...] = ()
    discriminator_field: str | None = None
    nullable: bool = False
    title: str | None = None

    def __repr__(self) -> str:
        parts = [self.kind.value]
        if self.title:
            parts.append(f"title={self.title!r}")
        if self.kind is DescriptorKind.OBJECT:
            parts.append(f"fields={list(self.fields)}")
        if self.kind is DescriptorKind.TAGGED_UNION:
            parts.append(f"variants={[v.tag_name for v in self.variants]}")
            if self.discriminator_field:
                parts.append(f"discriminator={self.discriminator_field!r}")
        if self.nullable:
            parts.append("nullable")
        return f"SchemaDescriptor({', '.join(parts)})"

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def field_schema(self, name: str) -> SchemaDescriptor | None:
        return self.fields.get(name)

    def variant(self, tag: str) -> VariantDescriptor | None:
        """Find a variant by tag, exact match first, then case-insensitive."""
        for v in self.variants:
            if v.tag_name == tag:
                return v
        folded = tag.casefold()
        for v in self.variants:
            if v.tag_name.casefold() == folded:
                return v
        return None

    @property
    def is_unit_only(self) -> bool:
        return bool(self.variants) and all(
            v.shape is VariantShape.UNIT for v in self.variants
        )

    def with_discriminator(self, name: str | None) -> SchemaDescriptor:
        return dataclasses.replace(self, discriminator_field=name)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_json_schema(cls, schema: Mapping[str, Any]) -> SchemaDescriptor:
        """Build a descriptor from a JSON Schema document.

        Raises:
            SchemaError: On unresolvable ``$ref`` or a recursive union.
        """
        return _DescriptorBuilder(schema).build(schema)

    @classmethod
    def for_type(cls, tp: Any) -> SchemaDescriptor:
        """Build (and cache) the descriptor for a pydantic-validatable type."""
        try:
            return _descriptor_for_type(tp)
        except TypeError:
            # Unhashable type expressions (e.g. Annotated with dict metadata)
            return cls.from_json_schema(json_schema_for(tp))


# ----------------------------------------------------------------------
# Type helpers
# ----------------------------------------------------------------------


@functools.lru_cache(maxsize=256)
def _cached_adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


def type_adapter(tp: Any) -> TypeAdapter:
    """Return a (cached where possible) pydantic TypeAdapter for *tp*."""
    try:
        return _cached_adapter(tp)
    except TypeError:
        return TypeAdapter(tp)


def json_schema_for(tp: Any) -> dict[str, Any]:
    """JSON Schema of *tp* as sent to the generator."""
    return type_adapter(tp).json_schema()


@functools.lru_cache(maxsize=256)
def _descriptor_for_type(tp: Any) -> SchemaDescriptor:
    return SchemaDescriptor.from_json_schema(json_schema_for(tp))


def _is_null_schema(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == "null"


def _string_tags(node: Mapping[str, Any]) -> list[str] | None:
    """Unit tags from a string ``enum``/``const`` schema, else None."""
    if "enum" in node:
        values = node["enum"]
    elif "const" in node:
        values = [node["const"]]
    else:
        return None
    if values and all(isinstance(v, str) for v in values):
        return list(values)
    return None


class _DescriptorBuilder:
    """Single-use JSON Schema walker with ``$ref`` memoization."""

    def __init__(self, root: Mapping[str, Any]) -> None:
        self._root = root
        self._defs: dict[str, Any] = {
            **root.get("definitions", {}),
            **root.get("$defs", {}),
        }
        self._cache: dict[str, SchemaDescriptor] = {}
        self._building: set[str] = set()

    def build(self, node: Any, nullable: bool = False) -> SchemaDescriptor:
        if not isinstance(node, Mapping):
            return SchemaDescriptor(DescriptorKind.SCALAR, nullable=nullable)

        if "$ref" in node:
            desc = self._resolve_ref(node["$ref"])
            return dataclasses.replace(desc, nullable=True) if nullable else desc

        all_of = node.get("allOf")
        if isinstance(all_of, list) and len(all_of) == 1:
            return self.build(all_of[0], nullable)

        branches = node.get("anyOf") or node.get("oneOf")
        if isinstance(branches, list):
            return self._build_union(branches, node, nullable)

        node_type = node.get("type")
        if isinstance(node_type, list):
            non_null = [t for t in node_type if t != "null"]
            nullable = nullable or len(non_null) < len(node_type)
            node_type = non_null[0] if len(non_null) == 1 else None

        title = node.get("title")
        tags = _string_tags(node)
        if tags is not None:
            return SchemaDescriptor(
                DescriptorKind.TAGGED_UNION,
                variants=tuple(VariantDescriptor(t, VariantShape.UNIT) for t in tags),
                nullable=nullable,
                title=title,
            )

        if node_type == "object" or "properties" in node:
            if node.get("properties"):
                return self._build_object(node, nullable)
            extra = node.get("additionalProperties")
            values = self.build(extra) if isinstance(extra, Mapping) else None
            return SchemaDescriptor(
                DescriptorKind.MAPPING,
                values=values or SchemaDescriptor(DescriptorKind.SCALAR),
                nullable=nullable,
                title=title,
            )

        if node_type == "array":
            return SchemaDescriptor(
                DescriptorKind.SEQUENCE,
                items=self.build(node.get("items", {})),
                nullable=nullable,
                title=title,
            )

        return SchemaDescriptor(DescriptorKind.SCALAR, nullable=nullable, title=title)

    # ------------------------------------------------------------------

    def _lookup(self, ref: str) -> Mapping[str, Any]:
        if ref == "#":
            return self._root
        for prefix in ("#/$defs/", "#/definitions/"):
            if ref.startswith(prefix):
                name = ref[len(prefix):]
                if name in self._defs:
                    return self._defs[name]
        raise SchemaError(f"Unresolvable $ref: {ref}")

    def _resolve_ref(self, ref: str) -> SchemaDescriptor:
        if ref in self._cache:
            return self._cache[ref]
        if ref in self._building:
            raise SchemaError(f"Recursive non-object schema at {ref} is not supported")
        target = self._lookup(ref)
        if target.get("properties"):
            # Objects are cached before their fields are built so that
            # recursive definitions terminate.
            return self._build_object(target, False, cache_key=ref)
        self._building.add(ref)
        try:
            desc = self.build(target)
        finally:
            self._building.discard(ref)
        self._cache[ref] = desc
        return desc

    def _build_object(
        self,
        node: Mapping[str, Any],
        nullable: bool,
        cache_key: str | None = None,
    ) -> SchemaDescriptor:
        fields: dict[str, SchemaDescriptor] = {}
        desc = SchemaDescriptor(
            DescriptorKind.OBJECT,
            fields=types.MappingProxyType(fields),
            required=frozenset(node.get("required", ())),
            nullable=nullable,
            title=node.get("title"),
        )
        if cache_key is not None:
            self._cache[cache_key] = desc
        for name, prop in node["properties"].items():
            child = self.build(prop)
            if (
                child.kind is DescriptorKind.TAGGED_UNION
                and child.discriminator_field is None
                and not child.is_unit_only
            ):
                child = child.with_discriminator(name)
            fields[name] = child
        return desc

    def _build_union(
        self,
        branches: list[Any],
        node: Mapping[str, Any],
        nullable: bool,
    ) -> SchemaDescriptor:
        non_null = [b for b in branches if not _is_null_schema(b)]
        nullable = nullable or len(non_null) < len(branches)
        if len(non_null) == 1:
            return self.build(non_null[0], nullable)

        variants: list[VariantDescriptor] = []
        for branch in non_null:
            found = self._variants_of(branch)
            if found is None:
                return SchemaDescriptor(
                    DescriptorKind.SCALAR, nullable=nullable, title=node.get("title")
                )
            variants.extend(found)

        discriminator = node.get("discriminator")
        disc_field = (
            discriminator.get("propertyName")
            if isinstance(discriminator, Mapping)
            else None
        )
        return SchemaDescriptor(
            DescriptorKind.TAGGED_UNION,
            variants=tuple(variants),
            discriminator_field=disc_field,
            nullable=nullable,
            title=node.get("title"),
        )

    def _variants_of(self, branch: Any) -> list[VariantDescriptor] | None:
        if not isinstance(branch, Mapping):
            return None
        resolved = branch
        seen: set[str] = set()
        while "$ref" in resolved:
            ref = resolved["$ref"]
            if ref in seen:
                return None
            seen.add(ref)
            resolved = self._lookup(ref)

        tags = _string_tags(resolved)
        if tags is not None:
            return [VariantDescriptor(t, VariantShape.UNIT) for t in tags]

        nested = resolved.get("anyOf") or resolved.get("oneOf")
        if isinstance(nested, list):
            collected: list[VariantDescriptor] = []
            for sub in nested:
                if _is_null_schema(sub):
                    continue
                found = self._variants_of(sub)
                if found is None:
                    return None
                collected.extend(found)
            return collected

        props = resolved.get("properties") or {}
        required = list(resolved.get("required", ()))
        if len(props) == 1 and list(props) == required:
            tag = required[0]
            inner = self.build(props[tag])
            shape = (
                VariantShape.STRUCT
                if inner.kind is DescriptorKind.OBJECT
                else VariantShape.NEWTYPE
            )
            return [VariantDescriptor(tag, shape, inner)]
        return None
