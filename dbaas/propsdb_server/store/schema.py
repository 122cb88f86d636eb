"""
Relational schema for the PropsDB property store.

Each scope owns five tables:

    documents:
        - document_id BIGINT PK
        - user_id CHAR(36) (user scope only)
        - document_name VARCHAR(255)
        - document_version BIGINT, starts at 0
        - created_at, updated_at
        - UNIQUE (document_name) or UNIQUE (user_id, document_name)

    collections:
        - collection_id BIGINT PK
        - collection_name VARCHAR(255) UNIQUE
        - created_at, updated_at

    properties:
        - property_id BIGINT PK
        - property_name VARCHAR(255)
        - property_value JSON
        - created_at, updated_at

    documents_collections:
        - document_id -> documents ON DELETE CASCADE
        - collection_id -> collections ON DELETE CASCADE
        - PRIMARY KEY (document_id, collection_id)

    collections_properties:
        - collection_id -> collections ON DELETE CASCADE
        - property_id -> properties ON DELETE CASCADE
        - PRIMARY KEY (collection_id, property_id)

Invariants:
    - Collections are shared by name within a scope
    - Properties are shared by (collection, name) through the link table
    - Scopes never reference each other's tables

How to change safely:
    - Table and column names match existing deployments, do not rename
    - New columns need server defaults so existing rows stay valid
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Identifier = BigInteger().with_variant(Integer(), "sqlite")

# JSON on MySQL/SQLite, JSONB on PostgreSQL, NVARCHAR(max) on SQL Server.
JsonValue = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Scope(Enum):
    """Data partitions of the property store."""

    APPLICATION = "application"
    USER = "user"

    @property
    def owned(self) -> bool:
        """Whether documents in this scope belong to an owner."""
        return self is Scope.USER


@dataclass(frozen=True)
class ScopeTables:
    """The five tables that make up one scope.

    Attributes:
        scope: Scope these tables belong to
        documents: Versioned top-level documents
        collections: Named collections, shared by name
        properties: Named JSON values
        document_collections: Document -> collection links
        collection_properties: Collection -> property links
    """

    scope: Scope
    documents: Table
    collections: Table
    properties: Table
    document_collections: Table
    collection_properties: Table


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime, nullable=False, default=_utc_now),
        Column("updated_at", DateTime, nullable=False, default=_utc_now, onupdate=_utc_now),
    ]


def _build_scope(scope: Scope) -> ScopeTables:
    prefix = scope.value

    document_columns: list = [Column("document_id", Identifier, primary_key=True, autoincrement=True)]
    if scope.owned:
        document_columns.append(Column("user_id", String(36), nullable=False))
        unique = UniqueConstraint("user_id", "document_name", name="idx_user_document")
    else:
        unique = UniqueConstraint("document_name", name=f"uq_{prefix}_document_name")
    document_columns += [
        Column("document_name", String(255), nullable=False),
        Column("document_version", BigInteger, nullable=False, default=0, server_default="0"),
        *_timestamps(),
        unique,
    ]
    documents = Table(f"{prefix}_documents", metadata, *document_columns)

    collections = Table(
        f"{prefix}_collections",
        metadata,
        Column("collection_id", Identifier, primary_key=True, autoincrement=True),
        Column("collection_name", String(255), nullable=False),
        *_timestamps(),
        UniqueConstraint("collection_name", name=f"uq_{prefix}_collection_name"),
    )

    properties = Table(
        f"{prefix}_properties",
        metadata,
        Column("property_id", Identifier, primary_key=True, autoincrement=True),
        Column("property_name", String(255), nullable=False),
        Column("property_value", JsonValue),
        *_timestamps(),
    )

    document_collections = Table(
        f"{prefix}_documents_collections",
        metadata,
        Column(
            "document_id",
            Identifier,
            ForeignKey(documents.c.document_id, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        Column(
            "collection_id",
            Identifier,
            ForeignKey(collections.c.collection_id, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        Index(f"idx_{prefix}_dc_collection", "collection_id"),
    )

    collection_properties = Table(
        f"{prefix}_collections_properties",
        metadata,
        Column(
            "collection_id",
            Identifier,
            ForeignKey(collections.c.collection_id, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        Column(
            "property_id",
            Identifier,
            ForeignKey(properties.c.property_id, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        Index(f"idx_{prefix}_cp_property", "property_id"),
    )

    return ScopeTables(
        scope=scope,
        documents=documents,
        collections=collections,
        properties=properties,
        document_collections=document_collections,
        collection_properties=collection_properties,
    )


APPLICATION_TABLES = _build_scope(Scope.APPLICATION)
USER_TABLES = _build_scope(Scope.USER)


def tables_for(scope: Scope) -> ScopeTables:
    """Get the table set for a scope."""
    return APPLICATION_TABLES if scope is Scope.APPLICATION else USER_TABLES
