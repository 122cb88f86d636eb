"""
Typed result tree for property reads.

Reads fetch flat rows of

    (document_name, document_version, collection_name, property_name, property_value)

and fold them bottom-up into

    PropertyTree
      └── DocumentNode (version)
            └── CollectionNode
                  └── property name -> decoded value

The tree serializes to the wire format

    {documentName: {"__version": "<N>", collectionName: {propertyName: value}}}

Collections without properties (LEFT JOIN rows with NULL property columns)
are kept in the tree. `has_content` is False when no collection holds a
property, which the HTTP boundary reports as 204 rather than 404.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

VERSION_KEY = "__version"


@dataclass
class CollectionNode:
    """Properties of one collection."""

    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.properties)


@dataclass
class DocumentNode:
    """One document with its version and collections."""

    version: int
    collections: dict[str, CollectionNode] = field(default_factory=dict)

    def collection(self, name: str) -> CollectionNode:
        node = self.collections.get(name)
        if node is None:
            node = self.collections[name] = CollectionNode()
        return node

    @property
    def has_content(self) -> bool:
        return any(node.properties for node in self.collections.values())

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {VERSION_KEY: str(self.version)}
        for name, node in self.collections.items():
            out[name] = node.to_dict()
        return out


@dataclass
class PropertyTree:
    """Documents keyed by name."""

    documents: dict[str, DocumentNode] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, rows: Iterable[Any]) -> PropertyTree:
        """Fold flat join rows into a tree.

        Args:
            rows: Rows with document_name, document_version, collection_name,
                property_name and property_value attributes. collection_name
                and the property columns may be None (outer joins).

        Returns:
            The folded tree
        """
        tree = cls()
        for row in rows:
            doc = tree.documents.get(row.document_name)
            if doc is None:
                doc = tree.documents[row.document_name] = DocumentNode(version=row.document_version)

            if row.collection_name is None:
                continue
            coll = doc.collection(row.collection_name)

            if row.property_name is not None:
                coll.properties[row.property_name] = row.property_value
        return tree

    def __len__(self) -> int:
        return len(self.documents)

    def __getitem__(self, name: str) -> DocumentNode:
        return self.documents[name]

    @property
    def has_content(self) -> bool:
        """True if any collection of any document holds at least one property."""
        return any(doc.has_content for doc in self.documents.values())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the nested wire format."""
        return {name: doc.to_dict() for name, doc in self.documents.items()}
