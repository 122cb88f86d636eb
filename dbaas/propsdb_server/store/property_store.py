"""
PropertyStore: the exposed operations of one data scope.

This is the seam the HTTP boundary talks to. Each call:
    1. validates its arguments (owner, document name, version, input)
    2. opens exactly one transaction (snapshot for reads)
    3. runs the reader, writer or deleter inside it

Invariants:
    - The user scope requires an owner; the application scope rejects one
    - Errors are raised as PropsDbError subclasses, never engine exceptions
    - No caching, no retries; a VersionConflictError goes back to the caller

Usage:
    >>> store = PropertyStore(database, Scope.USER)
    >>> result = store.set_properties(
    ...     "settings", 0, [CollectionInput("ui", {"theme": "dark"})], owner=user_id
    ... )
    >>> store.get_properties("settings", "ui", owner=user_id).to_dict()
    {'settings': {'__version': '1', 'ui': {'theme': 'dark'}}}
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..errors import ValidationError
from . import deleter, reader, writer
from .database import Database
from .inputs import CollectionInput, DeleteCollectionInput, prepare_collections, prepare_deletes
from .schema import Scope, tables_for
from .tree import PropertyTree
from .versioning import MutationResult

logger = logging.getLogger(__name__)


class PropertyStore:
    """Versioned hierarchical properties for one scope.

    Thread safety:
        Stateless apart from the engine pool; safe to share between threads.
    """

    def __init__(self, database: Database, scope: Scope) -> None:
        """Initialize the store.

        Args:
            database: Engines and transaction scopes
            scope: Scope this store reads and writes
        """
        self.database = database
        self.scope = scope
        self.tables = tables_for(scope)

    def _owner(self, owner: str | None) -> str | None:
        if self.scope.owned:
            if not owner:
                raise ValidationError("Owner is required for user data", field_name="owner")
            if len(owner) > 36:
                raise ValidationError("Owner id exceeds 36 characters", field_name="owner")
            return owner
        if owner is not None:
            raise ValidationError("Application data has no owner", field_name="owner")
        return None

    @staticmethod
    def _document(document: Any) -> str:
        if not isinstance(document, str) or not document.strip():
            raise ValidationError("Document name is required", field_name="document")
        if len(document) > 255:
            raise ValidationError("Document name exceeds 255 characters", field_name="document")
        return document

    @staticmethod
    def _version(version: Any) -> int:
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ValidationError("Version must be a non-negative integer", field_name="version")
        return version

    # ── reads ────────────────────────────────────────────────────────

    def get_properties(self, document: str, collection: str, owner: str | None = None) -> PropertyTree:
        """Fetch one collection of a document.

        Raises:
            NotFoundError: If the document/collection pair does not exist
        """
        owner = self._owner(owner)
        document = self._document(document)
        if not collection:
            raise ValidationError("Collection name is required", field_name="collection")
        with self.database.snapshot(self.scope, "get_properties") as conn:
            return reader.fetch_collection(conn, self.tables, document, collection, owner)

    def get_collections(
        self,
        document: str,
        collections: Sequence[str] | None = None,
        owner: str | None = None,
    ) -> PropertyTree:
        """Fetch a document, optionally limited to the named collections.

        Raises:
            NotFoundError: If the document does not exist or the filter matches nothing
        """
        owner = self._owner(owner)
        document = self._document(document)
        with self.database.snapshot(self.scope, "get_collections") as conn:
            return reader.fetch_collections(conn, self.tables, document, collections, owner)

    def get_documents(self, owner: str | None = None) -> PropertyTree:
        """Fetch all documents of the scope (of one owner in the user scope).

        Raises:
            NotFoundError: If there are none
        """
        owner = self._owner(owner)
        with self.database.snapshot(self.scope, "get_documents") as conn:
            return reader.fetch_documents(conn, self.tables, owner)

    # ── mutations ────────────────────────────────────────────────────

    def set_properties(
        self,
        document: str,
        version: int,
        collections: Sequence[CollectionInput],
        owner: str | None = None,
    ) -> MutationResult:
        """Upsert collections and properties, creating the document at version 0.

        Raises:
            ValidationError: On bad arguments or a non-JSON value
            VersionConflictError: If version is stale
        """
        owner = self._owner(owner)
        document = self._document(document)
        version = self._version(version)
        prepared = prepare_collections(collections)

        with self.database.transaction(self.scope, "set_properties") as conn:
            result = writer.set_properties(conn, self.tables, document, version, prepared, owner)

        logger.debug(
            "set_properties committed",
            extra={
                "scope": self.scope.value,
                "document": document,
                "new_version": result.new_version,
                "affected_rows": result.affected_rows,
            },
        )
        return result

    def delete_collection(
        self,
        document: str,
        version: int,
        collection: str,
        owner: str | None = None,
    ) -> MutationResult:
        """Remove one collection from a document.

        Raises:
            NotFoundError: If the document does not exist
            VersionConflictError: If version is stale
        """
        owner = self._owner(owner)
        document = self._document(document)
        version = self._version(version)
        if not collection:
            raise ValidationError("Collection name is required", field_name="collection")

        with self.database.transaction(self.scope, "delete_collection") as conn:
            result = deleter.delete_collection(conn, self.tables, document, version, collection, owner)

        logger.debug(
            "delete_collection committed",
            extra={
                "scope": self.scope.value,
                "document": document,
                "collection": collection,
                "new_version": result.new_version,
            },
        )
        return result

    def delete_properties(
        self,
        document: str,
        version: int,
        collections: Sequence[DeleteCollectionInput] | None = None,
        delete_document: bool = False,
        owner: str | None = None,
    ) -> MutationResult:
        """Remove properties or collections, or the whole document.

        Args:
            document: Document name
            version: Version the caller last read
            collections: What to remove; ignored when delete_document is set
            delete_document: Delete the document instead
            owner: Owner id (user scope only)

        Raises:
            NotFoundError: If the document does not exist
            VersionConflictError: If version is stale
        """
        if delete_document:
            return self.delete_document(document, version, owner=owner)

        owner = self._owner(owner)
        document = self._document(document)
        version = self._version(version)
        prepared = prepare_deletes(collections)

        with self.database.transaction(self.scope, "delete_properties") as conn:
            result = deleter.delete_properties(conn, self.tables, document, version, prepared, owner)

        logger.debug(
            "delete_properties committed",
            extra={
                "scope": self.scope.value,
                "document": document,
                "new_version": result.new_version,
                "affected_rows": result.affected_rows,
            },
        )
        return result

    def delete_document(self, document: str, version: int, owner: str | None = None) -> MutationResult:
        """Delete a whole document.

        Raises:
            NotFoundError: If the document does not exist
            VersionConflictError: If version is stale
        """
        owner = self._owner(owner)
        document = self._document(document)
        version = self._version(version)

        with self.database.transaction(self.scope, "delete_document") as conn:
            result = deleter.delete_document(conn, self.tables, document, version, owner)

        logger.info("Document deleted", extra={"scope": self.scope.value, "document": document})
        return result
