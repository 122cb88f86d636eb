"""
Optimistic concurrency control for documents.

Every mutation follows the same compare-and-swap:

    1. lock_document()    SELECT ... FOR UPDATE on the document row
    2. check_version()    caller's expected version == stored version
    3. ...structural changes...
    4. advance_version()  UPDATE ... SET version = v + 1 WHERE version = v

Step 4 re-checks the version read in step 1. Under isolation levels where
the lock in step 1 does not hold (or the row did not exist yet), a
concurrent writer that committed first leaves zero rows matching and the
mutation aborts with VersionConflictError.

Invariants:
    - A document version only ever advances by exactly 1 per commit
    - No-op mutations still take the document lock
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Connection, select, update
from sqlalchemy.sql.elements import ColumnElement

from ..errors import VersionConflictError
from .schema import ScopeTables

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockedDocument:
    """A document row read under an exclusive lock.

    Attributes:
        document_id: Primary key
        name: Document name
        version: Version read under the lock
    """

    document_id: int
    name: str
    version: int


@dataclass(frozen=True)
class MutationResult:
    """Outcome of an accepted write or delete.

    Attributes:
        new_version: Document version after the mutation (0 after a document delete)
        affected_rows: Rows changed by the version update, or deleted documents
    """

    new_version: int
    affected_rows: int


def document_match(tables: ScopeTables, document: str, owner: str | None) -> list[ColumnElement[bool]]:
    """Build the WHERE clauses identifying one document in a scope."""
    docs = tables.documents
    clauses = [docs.c.document_name == document]
    if tables.scope.owned:
        clauses.append(docs.c.user_id == owner)
    return clauses


def lock_document(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    owner: str | None,
) -> LockedDocument | None:
    """Read a document row under an exclusive row lock.

    Args:
        conn: Connection inside an open transaction
        tables: Scope tables
        document: Document name
        owner: Owner id (user scope only)

    Returns:
        The locked document, or None if it does not exist
    """
    docs = tables.documents
    stmt = (
        select(docs.c.document_id, docs.c.document_version)
        .where(*document_match(tables, document, owner))
        .with_for_update()
        .with_hint(docs, "WITH (UPDLOCK, ROWLOCK)", dialect_name="mssql")
    )
    row = conn.execute(stmt).first()
    if row is None:
        return None
    return LockedDocument(document_id=row.document_id, name=document, version=row.document_version)


def check_version(document: str, expected: int, locked: LockedDocument | None) -> None:
    """Compare the caller's expected version with the locked row.

    An absent document only accepts expected version 0.

    Raises:
        VersionConflictError: If the versions differ
    """
    actual = locked.version if locked is not None else 0
    if expected != actual:
        logger.info(
            "Version conflict",
            extra={"document": document, "expected_version": expected, "actual_version": actual},
        )
        raise VersionConflictError(
            document,
            expected,
            locked.version if locked is not None else None,
        )


def advance_version(conn: Connection, tables: ScopeTables, locked: LockedDocument) -> MutationResult:
    """Increment the document version, guarded by the version read under lock.

    Args:
        conn: Connection inside the mutation's transaction
        tables: Scope tables
        locked: Document as read by lock_document()

    Returns:
        MutationResult with the new version and affected row count

    Raises:
        VersionConflictError: If the guarded update matched no row
    """
    docs = tables.documents
    new_version = locked.version + 1
    result = conn.execute(
        update(docs)
        .where(docs.c.document_id == locked.document_id)
        .where(docs.c.document_version == locked.version)
        .values(document_version=new_version)
    )
    if result.rowcount == 0:
        logger.info(
            "Concurrent modification detected on version update",
            extra={"document": locked.name, "read_version": locked.version},
        )
        raise VersionConflictError(
            locked.name,
            locked.version,
            message=(
                f"E_VERSION - Failed to update document '{locked.name}' "
                "due to concurrent modification"
            ),
        )
    return MutationResult(new_version=new_version, affected_rows=result.rowcount)


def unchanged(locked: LockedDocument) -> MutationResult:
    """Result for an accepted mutation that changed nothing."""
    return MutationResult(new_version=locked.version, affected_rows=0)
