"""
Read path for the property store.

All reads select the same flat projection over

    documents -> documents_collections -> collections
              -> collections_properties -> properties

with property columns outer-joined, so collections that currently hold no
properties still appear. Results are folded by PropertyTree.from_rows().

Invariants:
    - Every query is restricted to one scope, and to one owner in the user scope
    - Reads take no locks beyond the engine's default isolation
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Connection, Select, select

from ..errors import NotFoundError
from .schema import ScopeTables
from .tree import PropertyTree
from .versioning import document_match

logger = logging.getLogger(__name__)


def _projection(tables: ScopeTables, outer_collections: bool = False) -> Select:
    d = tables.documents
    dc = tables.document_collections
    c = tables.collections
    cp = tables.collection_properties
    p = tables.properties

    joined = d.join(dc, d.c.document_id == dc.c.document_id, isouter=outer_collections).join(
        c, dc.c.collection_id == c.c.collection_id, isouter=outer_collections
    )
    joined = joined.outerjoin(cp, c.c.collection_id == cp.c.collection_id).outerjoin(
        p, cp.c.property_id == p.c.property_id
    )

    return (
        select(
            d.c.document_name,
            d.c.document_version,
            c.c.collection_name,
            p.c.property_name,
            p.c.property_value,
        )
        .select_from(joined)
        .order_by(d.c.document_name, c.c.collection_name, p.c.property_name)
    )


def normalize_filter(collections: Sequence[str] | None) -> list[str]:
    """Drop blank names from a collection filter, keeping first-seen order.

    A filter whose first name is blank is no filter at all.
    """
    if not collections or not collections[0].strip():
        return []
    seen: dict[str, None] = {}
    for name in collections:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


def fetch_collection(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    collection: str,
    owner: str | None = None,
) -> PropertyTree:
    """Fetch one collection of one document.

    Raises:
        NotFoundError: If the document/collection pair does not exist
    """
    stmt = _projection(tables).where(
        *document_match(tables, document, owner),
        tables.collections.c.collection_name == collection,
    )
    tree = PropertyTree.from_rows(conn.execute(stmt))
    if not tree:
        raise NotFoundError(
            f"Document '{document}' or collection '{collection}' not found",
            document=document,
            collections=[collection],
        )
    return tree


def fetch_collections(
    conn: Connection,
    tables: ScopeTables,
    document: str,
    collections: Sequence[str] | None = None,
    owner: str | None = None,
) -> PropertyTree:
    """Fetch a document, optionally limited to some collections.

    Without a filter the document is returned even if it has no collections.

    Raises:
        NotFoundError: If the document does not exist, or the filter matches nothing
    """
    names = normalize_filter(collections)
    stmt = _projection(tables, outer_collections=not names).where(
        *document_match(tables, document, owner)
    )
    if names:
        stmt = stmt.where(tables.collections.c.collection_name.in_(names))

    tree = PropertyTree.from_rows(conn.execute(stmt))
    if not tree:
        raise NotFoundError(f"Document '{document}' not found", document=document, collections=names)
    return tree


def fetch_documents(conn: Connection, tables: ScopeTables, owner: str | None = None) -> PropertyTree:
    """Fetch every document in the scope, or every document of one owner.

    Raises:
        NotFoundError: If there are no documents
    """
    stmt = _projection(tables, outer_collections=True)
    if tables.scope.owned:
        stmt = stmt.where(tables.documents.c.user_id == owner)

    tree = PropertyTree.from_rows(conn.execute(stmt))
    if not tree:
        raise NotFoundError(f"No {tables.scope.value} documents found")
    return tree
