"""
Delete path: whole documents, single collections, and selected properties.

All three are version-gated like the write path. Removing structure only
ever removes links; rows left without references are deleted by
reclaim_orphans() before the transaction commits.

Invariants:
    - A delete against an absent document is NotFound, never a create
    - A document delete removes its collection links, never a collection
      another document still links to
    - delete_properties() advances the version at most once per call
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Connection, delete, func, select

from ..errors import NotFoundError, VersionConflictError
from .inputs import DeleteCollectionInput
from .reaper import reclaim_orphans
from .schema import ScopeTables
from .versioning import (
    LockedDocument,
    MutationResult,
    advance_version,
    check_version,
    lock_document,
    unchanged,
)

logger = logging.getLogger(__name__)


def _lock_existing(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    version: int,
    owner: str | None,
) -> LockedDocument:
    locked = lock_document(conn, tables, document, owner)
    if locked is None:
        raise NotFoundError(f"Document '{document}' not found", document=document)
    check_version(document, version, locked)
    return locked


def _linked_collection(conn: Connection, tables: ScopeTables, document_id: int, name: str) -> int | None:
    c = tables.collections
    dc = tables.document_collections
    stmt = (
        select(c.c.collection_id)
        .select_from(c.join(dc, dc.c.collection_id == c.c.collection_id))
        .where(dc.c.document_id == document_id, c.c.collection_name == name)
        .with_for_update(of=c)
        .with_hint(c, "WITH (UPDLOCK, ROWLOCK)", dialect_name="mssql")
    )
    return conn.execute(stmt).scalar_one_or_none()


def _unlink_collection(conn: Connection, tables: ScopeTables, document_id: int, collection_id: int) -> int:
    c = tables.collections
    dc = tables.document_collections
    cp = tables.collection_properties

    removed = conn.execute(
        delete(dc).where(dc.c.document_id == document_id, dc.c.collection_id == collection_id)
    ).rowcount

    remaining = conn.execute(
        select(func.count()).select_from(dc).where(dc.c.collection_id == collection_id)
    ).scalar_one()
    if remaining == 0:
        conn.execute(delete(cp).where(cp.c.collection_id == collection_id))
        conn.execute(delete(c).where(c.c.collection_id == collection_id))
    return removed


def _unlink_properties(conn: Connection, tables: ScopeTables, collection_id: int, names: Sequence[str]) -> int:
    p = tables.properties
    cp = tables.collection_properties
    property_ids = select(p.c.property_id).where(p.c.property_name.in_(list(names)))
    return conn.execute(
        delete(cp).where(cp.c.collection_id == collection_id, cp.c.property_id.in_(property_ids))
    ).rowcount


def delete_document(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    version: int,
    owner: str | None = None,
) -> MutationResult:
    """Delete a document and its collection links.

    Returns:
        MutationResult with new_version 0 and the number of deleted documents

    Raises:
        NotFoundError: If the document does not exist
        VersionConflictError: If the version does not match
    """
    docs = tables.documents
    dc = tables.document_collections
    locked = _lock_existing(conn, tables, document, version, owner)

    conn.execute(delete(dc).where(dc.c.document_id == locked.document_id))
    deleted = conn.execute(
        delete(docs).where(
            docs.c.document_id == locked.document_id,
            docs.c.document_version == locked.version,
        )
    ).rowcount
    if deleted == 0:
        raise VersionConflictError(
            document,
            version,
            message=f"E_VERSION - Failed to delete document '{document}' due to concurrent modification",
        )

    reclaim_orphans(conn, tables)
    logger.debug("Deleted document", extra={"scope": tables.scope.value, "document": document})
    return MutationResult(new_version=0, affected_rows=deleted)


def delete_collection(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    version: int,
    collection: str,
    owner: str | None = None,
) -> MutationResult:
    """Remove one collection from a document.

    The collection row itself survives while other documents link to it.
    A collection not linked to the document is a no-op.

    Raises:
        NotFoundError: If the document does not exist
        VersionConflictError: If the version does not match
    """
    locked = _lock_existing(conn, tables, document, version, owner)

    collection_id = _linked_collection(conn, tables, locked.document_id, collection)
    changed = collection_id is not None and _unlink_collection(conn, tables, locked.document_id, collection_id) > 0

    reclaim_orphans(conn, tables)
    if not changed:
        return unchanged(locked)
    return advance_version(conn, tables, locked)


def delete_properties(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    version: int,
    collections: Sequence[DeleteCollectionInput],
    owner: str | None = None,
) -> MutationResult:
    """Remove properties, or whole collections, from a document.

    Each entry is handled on its own: an entry without property names
    removes the collection, an entry naming a collection the document does
    not link to is skipped.

    Raises:
        NotFoundError: If the document does not exist
        VersionConflictError: If the version does not match
    """
    locked = _lock_existing(conn, tables, document, version, owner)

    changed = False
    for item in collections:
        collection_id = _linked_collection(conn, tables, locked.document_id, item.collection)
        if collection_id is None:
            logger.debug(
                "Skipping collection not on document",
                extra={"document": document, "collection": item.collection},
            )
            continue
        if not item.properties:
            removed = _unlink_collection(conn, tables, locked.document_id, collection_id)
        else:
            removed = _unlink_properties(conn, tables, collection_id, item.properties)
        if removed:
            changed = True

    reclaim_orphans(conn, tables)
    if not changed:
        return unchanged(locked)
    return advance_version(conn, tables, locked)
