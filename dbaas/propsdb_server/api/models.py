"""
Request models for the PropsDB HTTP API.

Existing clients send loosely typed bodies:
- `version` as a number or a numeric string
- `collections` as a single object or a list of objects

Both shapes are accepted and normalized here, before the store sees them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..store import CollectionInput, DeleteCollectionInput


def _flex_version(value: Any) -> Any:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("version must be a non-negative integer")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise ValueError(f"invalid version string {value!r}")
        return int(value)
    if isinstance(value, int) and value < 0:
        raise ValueError("version must be a non-negative integer")
    return value


def _flex_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return value


class CollectionBody(BaseModel):
    """Properties to set in one collection."""

    collection: str = Field(..., min_length=1, description="Collection name")
    properties: dict[str, Any] = Field(default_factory=dict, description="Property values")


class DeleteCollectionBody(BaseModel):
    """Properties to delete from one collection; none means the whole collection."""

    collection: str = Field(..., min_length=1, description="Collection name")
    properties: list[str] = Field(default_factory=list, description="Property names")


class VersionBody(BaseModel):
    """Body carrying only the expected document version."""

    version: int = Field(0, ge=0, description="Expected document version")

    @field_validator("version", mode="before")
    @classmethod
    def flex_version(cls, value: Any) -> Any:
        return _flex_version(value)


class SetPropertiesBody(VersionBody):
    """Body of POST /{document}."""

    collections: list[CollectionBody] = Field(default_factory=list)

    @field_validator("collections", mode="before")
    @classmethod
    def flex_collections(cls, value: Any) -> Any:
        return _flex_list(value)

    def to_inputs(self) -> list[CollectionInput]:
        return [CollectionInput(c.collection, c.properties) for c in self.collections]


class DeletePropertiesBody(VersionBody):
    """Body of DELETE /{document}."""

    model_config = ConfigDict(populate_by_name=True)

    collections: list[DeleteCollectionBody] = Field(default_factory=list)
    delete_document: bool = Field(False, alias="deleteDocument")

    @field_validator("collections", mode="before")
    @classmethod
    def flex_collections(cls, value: Any) -> Any:
        return _flex_list(value)

    def to_inputs(self) -> list[DeleteCollectionInput]:
        return [DeleteCollectionInput(c.collection, tuple(c.properties)) for c in self.collections]


def parse_collections(values: list[str] | None) -> list[str]:
    """Flatten repeated and comma-separated `collections` query values."""
    names: list[str] = []
    for value in values or []:
        for name in value.split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return names
