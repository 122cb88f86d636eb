"""
Write path: version-checked structural merge of collections and properties.

    lock document ──> check version ──> create document if absent
         │
         └─> per collection (name order):
                find-or-create collection, lock its row
                link to document if not linked          -> dirty
                per property:
                    absent        -> insert + link       -> dirty
                    value differs -> update              -> dirty
         │
    reclaim orphans ──> dirty ? advance version : unchanged

Invariants:
    - Runs inside one transaction opened by the caller
    - Collection rows are locked in name order, after the document row
    - Value comparison uses canonical JSON on both sides

How to change safely:
    - Any new structural change must mark the write dirty
    - Keep collection locking before property reads, or two documents sharing
      a collection can insert duplicate properties
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Connection, insert, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import VersionConflictError
from .codec import same_value
from .inputs import PreparedCollection, PreparedProperty
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

_MSSQL_ROW_LOCK = "WITH (UPDLOCK, ROWLOCK)"


def _create_document(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    owner: str | None,
) -> LockedDocument:
    values: dict = {"document_name": document, "document_version": 0}
    if tables.scope.owned:
        values["user_id"] = owner
    try:
        result = conn.execute(insert(tables.documents).values(**values))
    except IntegrityError as e:
        # Another writer created the document between our lock attempt and insert
        raise VersionConflictError(
            document,
            0,
            message=f"E_VERSION - document '{document}' was created concurrently",
        ) from e
    logger.debug("Created document", extra={"scope": tables.scope.value, "document": document})
    return LockedDocument(document_id=result.inserted_primary_key[0], name=document, version=0)


def _lock_collection(conn: Connection, tables: ScopeTables, name: str) -> int | None:
    c = tables.collections
    stmt = (
        select(c.c.collection_id)
        .where(c.c.collection_name == name)
        .with_for_update()
        .with_hint(c, _MSSQL_ROW_LOCK, dialect_name="mssql")
    )
    return conn.execute(stmt).scalar_one_or_none()


def find_or_create_collection(conn: Connection, tables: ScopeTables, name: str) -> int:
    """Get the id of a collection by name, creating it if needed.

    The returned row is locked until the transaction ends.
    """
    collection_id = _lock_collection(conn, tables, name)
    if collection_id is not None:
        return collection_id

    try:
        with conn.begin_nested():
            result = conn.execute(insert(tables.collections).values(collection_name=name))
        return result.inserted_primary_key[0]
    except IntegrityError:
        # Lost the create race; the savepoint rolled back, use the winner's row
        collection_id = _lock_collection(conn, tables, name)
        if collection_id is None:
            raise
        return collection_id


def _link_collection(conn: Connection, tables: ScopeTables, document_id: int, collection_id: int) -> bool:
    dc = tables.document_collections
    linked = conn.execute(
        select(dc.c.collection_id).where(
            dc.c.document_id == document_id,
            dc.c.collection_id == collection_id,
        )
    ).first()
    if linked is not None:
        return False
    conn.execute(insert(dc).values(document_id=document_id, collection_id=collection_id))
    return True


def _merge_property(conn: Connection, tables: ScopeTables, collection_id: int, prop: PreparedProperty) -> bool:
    p = tables.properties
    cp = tables.collection_properties

    existing = conn.execute(
        select(p.c.property_id, p.c.property_value)
        .select_from(p.join(cp, cp.c.property_id == p.c.property_id))
        .where(cp.c.collection_id == collection_id, p.c.property_name == prop.name)
    ).first()

    if existing is None:
        result = conn.execute(insert(p).values(property_name=prop.name, property_value=prop.value))
        conn.execute(
            insert(cp).values(collection_id=collection_id, property_id=result.inserted_primary_key[0])
        )
        return True

    if same_value(existing.property_value, prop.encoded):
        return False

    conn.execute(
        update(p).where(p.c.property_id == existing.property_id).values(property_value=prop.value)
    )
    return True


def set_properties(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    version: int,
    collections: Sequence[PreparedCollection],
    owner: str | None = None,
) -> MutationResult:
    """Upsert collections and properties into a document.

    Args:
        conn: Connection inside an open transaction
        tables: Scope tables
        document: Document name
        version: Version the caller last read (0 for a new document)
        collections: Validated input from prepare_collections()
        owner: Owner id (user scope only)

    Returns:
        MutationResult; affected_rows is 0 when nothing changed

    Raises:
        VersionConflictError: If the version does not match, at lock time or
            at the guarded version update
    """
    locked = lock_document(conn, tables, document, owner)
    check_version(document, version, locked)

    dirty = False
    if locked is None:
        locked = _create_document(conn, tables, document, owner)
        dirty = True

    for coll in collections:
        collection_id = find_or_create_collection(conn, tables, coll.name)
        if _link_collection(conn, tables, locked.document_id, collection_id):
            dirty = True
        for prop in coll.properties:
            if _merge_property(conn, tables, collection_id, prop):
                dirty = True

    reclaim_orphans(conn, tables)

    if not dirty:
        logger.debug(
            "No changes to apply",
            extra={"scope": tables.scope.value, "document": document, "version": locked.version},
        )
        return unchanged(locked)

    return advance_version(conn, tables, locked)
