"""
Orphan reclamation.

After a structural change, rows that no document can reach any more are
removed in dependency order:

    1. collections with no documents_collections link
    2. collections_properties links whose collection is gone
    3. properties with no collections_properties link

Step 2 is a no-op on engines that enforce the cascading foreign keys, but
engines (or deployments) without them would otherwise keep the links alive
and with them the properties.

Invariants:
    - Runs inside the mutation's transaction; a failure aborts the mutation
    - Idempotent: a second run right after the first deletes nothing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Connection, delete, select

from .schema import ScopeTables

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReclaimStats:
    """Rows removed by one reclamation pass."""

    collections: int = 0
    links: int = 0
    properties: int = 0

    @property
    def total(self) -> int:
        return self.collections + self.links + self.properties


def reclaim_orphans(conn: Connection, tables: ScopeTables) -> ReclaimStats:
    """Delete collections and properties that are no longer referenced.

    Args:
        conn: Connection inside the mutation's transaction
        tables: Scope tables

    Returns:
        Number of rows removed per step
    """
    c = tables.collections
    p = tables.properties
    dc = tables.document_collections
    cp = tables.collection_properties

    collections = conn.execute(
        delete(c).where(c.c.collection_id.not_in(select(dc.c.collection_id)))
    ).rowcount

    links = conn.execute(
        delete(cp).where(cp.c.collection_id.not_in(select(c.c.collection_id)))
    ).rowcount

    properties = conn.execute(
        delete(p).where(p.c.property_id.not_in(select(cp.c.property_id)))
    ).rowcount

    stats = ReclaimStats(collections=collections, links=links, properties=properties)
    if stats.total:
        logger.debug(
            "Reclaimed orphans",
            extra={
                "scope": tables.scope.value,
                "collections": collections,
                "links": links,
                "properties": properties,
            },
        )
    return stats
