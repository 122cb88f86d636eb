"""
Input types for store mutations.

Values are encoded once, before the transaction opens, so a value that
cannot be represented as JSON is rejected as a ValidationError without
touching the database.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from .codec import encode_value


@dataclass(frozen=True)
class CollectionInput:
    """Properties to upsert into one collection.

    Attributes:
        collection: Collection name
        properties: Property name -> JSON value
    """

    collection: str
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteCollectionInput:
    """Properties to remove from one collection.

    An empty property list removes the whole collection from the document.

    Attributes:
        collection: Collection name
        properties: Property names to remove
    """

    collection: str
    properties: Sequence[str] = ()


@dataclass(frozen=True)
class PreparedProperty:
    name: str
    value: Any
    encoded: str


@dataclass(frozen=True)
class PreparedCollection:
    name: str
    properties: tuple[PreparedProperty, ...]


def _check_name(name: Any, field_name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{field_name} name is required", field_name=field_name)
    if len(name) > 255:
        raise ValidationError(f"{field_name} name exceeds 255 characters", field_name=field_name)
    return name


def prepare_collections(collections: Sequence[CollectionInput]) -> list[PreparedCollection]:
    """Validate and encode upsert input.

    Collections are merged by name (later entries win per property) and
    returned sorted by name, which is also the order their rows are locked in.

    Raises:
        ValidationError: On an empty list, a blank name or a non-JSON value
    """
    if not collections:
        raise ValidationError("At least one collection is required", field_name="collections")

    merged: dict[str, dict[str, PreparedProperty]] = {}
    for item in collections:
        name = _check_name(item.collection, "collection")
        props = merged.setdefault(name, {})
        for prop_name, value in (item.properties or {}).items():
            _check_name(prop_name, "property")
            props[prop_name] = PreparedProperty(prop_name, value, encode_value(value))

    return [
        PreparedCollection(name, tuple(props[p] for p in sorted(props)))
        for name, props in sorted(merged.items())
    ]


def prepare_deletes(collections: Sequence[DeleteCollectionInput] | None) -> list[DeleteCollectionInput]:
    """Validate delete input.

    Entries are merged by collection name and returned sorted by name, the
    same lock order prepare_collections() gives writers. An entry without
    property names removes the whole collection and absorbs any other entry
    for that name.

    Raises:
        ValidationError: On a blank collection or property name
    """
    merged: dict[str, set[str] | None] = {}
    for item in collections or ():
        name = _check_name(item.collection, "collection")
        props = {_check_name(p, "property") for p in (item.properties or ())}
        if not props or (name in merged and merged[name] is None):
            merged[name] = None
        else:
            merged[name] = merged.get(name, set()) | props

    return [
        DeleteCollectionInput(name, tuple(sorted(props)) if props else ())
        for name, props in sorted(merged.items())
    ]
