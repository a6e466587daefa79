"""Tagged-union unflattening.

Generators asked for an externally tagged enum often merge the chosen
variant's fields into the surrounding object::

    {"model": "Mstl", "seasonalPeriods": [12], "trendModel": "Ets"}

instead of nesting them under the variant name::

    {"model": {"Mstl": {"seasonalPeriods": [12], "trendModel": "Ets"}}}

This stage walks the tree alongside its SchemaDescriptor and rebuilds
the canonical form at every tagged-union node. Variant selection order
is: discriminator value, then a sibling whose string value names a
tag, then required-field presence, then failure. When several unions are
flattened into one object, each claims the keys its own payload declares.
Fields that belong to no selected variant are dropped and reported as
DroppedField warnings.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from patchloop.engine.pointer import format_pointer
from patchloop.exceptions import NormalizationErrorKind, UnflattenError
from patchloop.models.config import NormalizeOptions
from patchloop.models.schema import (
    DescriptorKind,
    SchemaDescriptor,
    VariantDescriptor,
    VariantShape,
)

logger = logging.getLogger(__name__)

Path = tuple[str | int, ...]


@dataclass(frozen=True)
class DroppedField:
    """A sibling key discarded while rebuilding a tagged-union node.

    Attributes:
        path: Location of the node the key was removed from.
        key: The discarded key.
        variant: Tag of the variant that was selected for the node.
    """

    path: Path
    key: str
    variant: str

    def __str__(self) -> str:
        return f"{format_pointer(self.path + (self.key,))} (not a field of {self.variant})"


class Unflattener:
    """One unflattening pass; collects dropped fields as it goes.

    Instances are cheap and single-use. Use :func:`unflatten` unless the
    dropped-field report is needed.
    """

    def __init__(self, options: NormalizeOptions | None = None) -> None:
        self.options = options or NormalizeOptions()
        self.dropped: list[DroppedField] = []

    def unflatten(self, value: Any, schema: SchemaDescriptor) -> Any:
        return self._node(value, schema, ())

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _node(self, value: Any, desc: SchemaDescriptor | None, path: Path) -> Any:
        if desc is None or value is None:
            return copy.deepcopy(value)
        if desc.kind is DescriptorKind.TAGGED_UNION:
            return self._union(value, desc, path)
        if desc.kind is DescriptorKind.OBJECT and isinstance(value, dict):
            return self._object(value, desc, path)
        if desc.kind is DescriptorKind.MAPPING and isinstance(value, dict):
            return {k: self._node(v, desc.values, path + (k,)) for k, v in value.items()}
        if desc.kind is DescriptorKind.SEQUENCE and isinstance(value, list):
            return [self._node(v, desc.items, path + (i,)) for i, v in enumerate(value)]
        return copy.deepcopy(value)

    def _object(self, node: dict, desc: SchemaDescriptor, path: Path) -> dict:
        claims = self._claim_extras(node, desc)
        rebuilt: dict[str, Any] = {}
        consumed: set[str] = set()
        for name, field_desc in desc.fields.items():
            if name not in node:
                continue
            variant, keys = claims.get(name, (None, []))
            if variant is not None and (keys or variant.shape is VariantShape.STRUCT):
                # Variant named by the field, payload spread over the parent.
                flat = {name: node[name], **{k: node[k] for k in keys}}
                rebuilt[name] = self._flattened(
                    flat, field_desc, path + (name,), discriminator=name
                )
                consumed.update(keys)
            else:
                rebuilt[name] = self._node(node[name], field_desc, path + (name,))

        leftover = [k for k in node if k not in desc.fields and k not in consumed]
        if claims and leftover:
            first, (variant, _) = next(iter(claims.items()))
            self._drop(path + (first,), leftover, variant.tag_name)
            consumed.update(leftover)

        result: dict[str, Any] = {}
        for key, value in node.items():
            if key in consumed:
                continue
            result[key] = rebuilt[key] if key in rebuilt else copy.deepcopy(value)
        return result

    def _claim_extras(
        self, node: dict, desc: SchemaDescriptor
    ) -> dict[str, tuple[VariantDescriptor, list[str]]]:
        """Share the object's undeclared keys among unions flattened into it.

        Covers every union field whose value is a tag string, in declaration
        order. Object payloads claim the extras their own fields declare. A
        payload with no declared fields (scalar, mapping or nested union
        newtype) takes whatever no object payload claimed. Unit variants
        claim nothing.
        """
        extras = [k for k in node if k not in desc.fields]
        claims: dict[str, tuple[VariantDescriptor, list[str]]] = {}
        open_payloads: list[str] = []
        taken: set[str] = set()
        for name, field_desc in desc.fields.items():
            raw = node.get(name)
            if not (
                isinstance(raw, str)
                and field_desc.kind is DescriptorKind.TAGGED_UNION
                and not field_desc.is_unit_only
            ):
                continue
            variant = field_desc.variant(raw)
            if variant is None:
                continue
            keys: list[str] = []
            if variant.shape is VariantShape.UNIT:
                claims[name] = (variant, keys)
                continue
            if variant.inner is not None and variant.inner.kind is DescriptorKind.OBJECT:
                keys = [k for k in extras if k in variant.inner.fields and k not in taken]
                taken.update(keys)
            else:
                open_payloads.append(name)
            claims[name] = (variant, keys)

        for name in open_payloads:
            rest = [k for k in extras if k not in taken]
            claims[name][1].extend(rest)
            taken.update(rest)
        return claims

    def _union(self, value: Any, desc: SchemaDescriptor, path: Path) -> Any:
        if isinstance(value, str):
            variant = desc.variant(value)
            if variant is None:
                return value
            if variant.shape is VariantShape.UNIT:
                return variant.tag_name
            if variant.shape is VariantShape.STRUCT and not variant.required_fields:
                return {variant.tag_name: {}}
            return value

        if not isinstance(value, dict):
            return copy.deepcopy(value)

        if len(value) == 1:
            ((key, payload),) = value.items()
            variant = desc.variant(key)
            if variant is not None:
                if variant.shape is VariantShape.UNIT:
                    return variant.tag_name
                return {
                    variant.tag_name: self._node(
                        payload, variant.inner, path + (variant.tag_name,)
                    )
                }
        return self._flattened(value, desc, path)

    # ------------------------------------------------------------------
    # Flattened nodes
    # ------------------------------------------------------------------

    def _flattened(
        self,
        node: dict,
        desc: SchemaDescriptor,
        path: Path,
        discriminator: str | None = None,
    ) -> Any:
        variant, used_key = self._select(node, desc, path, discriminator)
        payload = {k: v for k, v in node.items() if k != used_key}
        logger.debug(
            "Unflattening %s as variant %s", format_pointer(path) or "/", variant.tag_name
        )
        return self._construct(variant, payload, path)

    def _discriminator_keys(
        self, desc: SchemaDescriptor, discriminator: str | None
    ) -> list[str]:
        keys: list[str] = []
        for key in (discriminator, desc.discriminator_field, *self.options.discriminator_keys):
            if key and key not in keys:
                keys.append(key)
        return keys

    def _select(
        self,
        node: dict,
        desc: SchemaDescriptor,
        path: Path,
        discriminator: str | None,
    ) -> tuple[VariantDescriptor, str | None]:
        for key in self._discriminator_keys(desc, discriminator):
            tag = node.get(key)
            if isinstance(tag, str):
                variant = desc.variant(tag)
                if variant is not None:
                    return variant, key

        named = self._sibling_tag(node, desc, path)
        if named is not None:
            return named

        present = set(node)
        candidates = [
            v
            for v in desc.variants
            if v.shape is not VariantShape.UNIT
            and v.inner is not None
            and v.inner.kind is DescriptorKind.OBJECT
            and v.required_fields <= present
            and (v.required_fields or present & set(v.all_fields))
        ]
        if candidates:
            return _best_by_required(candidates, present, path), None

        if not present:
            for v in desc.variants:
                if v.shape is VariantShape.UNIT:
                    return v, None

        tags = ", ".join(v.tag_name for v in desc.variants)
        raise UnflattenError(
            NormalizationErrorKind.NO_MATCH,
            path,
            f"keys {sorted(present)} match no variant of [{tags}]",
        )

    def _sibling_tag(
        self, node: dict, desc: SchemaDescriptor, path: Path
    ) -> tuple[VariantDescriptor, str] | None:
        """Find a tag under an unconfigured key, e.g. ``{"model": "mstl", ...}``.

        Keys declared by any variant payload are not considered.
        """
        declared = {f for v in desc.variants for f in v.all_fields}
        matches = [
            (desc.variant(value), key)
            for key, value in node.items()
            if key not in declared and isinstance(value, str) and desc.variant(value)
        ]
        if len(matches) > 1:
            raise UnflattenError(
                NormalizationErrorKind.AMBIGUOUS,
                path,
                "several keys name a variant: " + ", ".join(key for _, key in matches),
            )
        return matches[0] if matches else None

    def _construct(self, variant: VariantDescriptor, payload: dict, path: Path) -> Any:
        tag = variant.tag_name
        if variant.shape is VariantShape.UNIT:
            self._drop(path, payload, tag)
            return tag

        inner = variant.inner
        if variant.shape is VariantShape.STRUCT:
            fields = self._object(payload, inner, path + (tag,))
            self._drop(path, [k for k in fields if k not in inner.fields], tag)
            return {tag: {k: v for k, v in fields.items() if k in inner.fields}}

        # Newtype: the remaining siblings are the payload itself when the
        # inner shape is keyed, otherwise there must be exactly one.
        if inner.kind in (
            DescriptorKind.OBJECT,
            DescriptorKind.MAPPING,
            DescriptorKind.TAGGED_UNION,
        ):
            return {tag: self._node(payload, inner, path + (tag,))}
        if len(payload) == 1:
            (only,) = payload.values()
            return {tag: self._node(only, inner, path + (tag,))}
        raise UnflattenError(
            NormalizationErrorKind.NO_MATCH,
            path,
            f"variant {tag!r} takes a single value, found {len(payload)} sibling field(s)",
        )

    def _drop(self, path: Path, keys: Iterable[str], variant: str) -> None:
        for key in keys:
            dropped = DroppedField(path, key, variant)
            logger.warning("Dropped flattened field %s", dropped)
            self.dropped.append(dropped)


def _best_by_required(
    candidates: Sequence[VariantDescriptor], present: set[str], path: Path
) -> VariantDescriptor:
    """Pick the candidate with the largest required set.

    Ties go to declaration order unless the present keys include fields
    unique to more than one tied variant.
    """
    best = max(len(v.required_fields) for v in candidates)
    tied = [v for v in candidates if len(v.required_fields) == best]
    if len(tied) == 1:
        return tied[0]

    supported = []
    for v in tied:
        others = set().union(*(set(o.all_fields) for o in tied if o is not v))
        if present & (set(v.all_fields) - others):
            supported.append(v)
    if len(supported) > 1:
        raise UnflattenError(
            NormalizationErrorKind.AMBIGUOUS,
            path,
            "fields of several variants present: "
            + ", ".join(v.tag_name for v in supported),
        )
    return supported[0] if supported else tied[0]


def unflatten(
    value: Any,
    schema: SchemaDescriptor,
    options: NormalizeOptions | None = None,
) -> Any:
    """Rewrite flattened tagged unions in *value* into canonical form.

    Raises:
        UnflattenError: AMBIGUOUS or NO_MATCH at the failing node's path.
    """
    return Unflattener(options).unflatten(value, schema)
