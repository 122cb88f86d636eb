"""
Relational engine access for PropsDB.

This module owns one SQLAlchemy engine per scope credential set:
- Application scope engine (DB_APP_USER, DB_APP_CONNECTION_LIMIT)
- User scope engine (DB_USER, DB_CONNECTION_LIMIT)

Every operation runs in exactly one transaction obtained from
`Database.transaction()` (mutations) or `Database.snapshot()` (reads).
Engine exceptions are translated to InfrastructureError at that boundary.

Invariants:
    - SQLite connections run with foreign keys enabled
    - SQLite write transactions start with BEGIN IMMEDIATE, taking the
      database write lock before the document row is read
    - PropsDbError raised inside a transaction passes through unchanged
      after rollback

How to change safely:
    - New dialects need a lock strategy for versioning.lock_document()
    - Keep pool sizes per scope independent
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from ..config import DatabaseConfig, DbType
from ..errors import InfrastructureError
from .codec import encode_value
from .schema import Scope, metadata

logger = logging.getLogger(__name__)

_READ_ONLY = "propsdb_read_only"


class Database:
    """Engines and transaction scopes for both data scopes.

    Thread safety:
        Engines and their pools are thread-safe. Connections are checked out
        per operation and never shared between threads.

    Example:
        >>> db = Database(DatabaseConfig(db_type=DbType.SQLITE, database="/tmp/props.db"))
        >>> db.create_schema()
        >>> with db.transaction(Scope.APPLICATION, "set_properties") as conn:
        ...     ...
    """

    def __init__(self, config: DatabaseConfig) -> None:
        """Initialize engines for both scopes.

        Args:
            config: Database configuration
        """
        self.config = config
        self._engines: dict[Scope, Engine] = {
            Scope.APPLICATION: self._create_engine(config.app_url, config.app_connection_limit),
            Scope.USER: self._create_engine(config.user_url, config.connection_limit),
        }

    @property
    def is_sqlite(self) -> bool:
        return self.config.db_type == DbType.SQLITE

    def _create_engine(self, url: URL, pool_size: int) -> Engine:
        kwargs: dict = {}
        if self.is_sqlite:
            kwargs["connect_args"] = {
                "timeout": self.config.sqlite_busy_timeout_ms / 1000.0,
                "check_same_thread": False,
            }

        engine = create_engine(
            url,
            echo=self.config.echo,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=not self.is_sqlite,
            json_serializer=encode_value,
            json_deserializer=json.loads,
            **kwargs,
        )

        if self.is_sqlite:
            self._configure_sqlite(engine)

        return engine

    def _configure_sqlite(self, engine: Engine) -> None:
        busy_timeout_ms = self.config.sqlite_busy_timeout_ms

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record) -> None:
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
                cursor.execute("PRAGMA journal_mode = WAL")
                cursor.execute("PRAGMA synchronous = NORMAL")
                cursor.execute("PRAGMA foreign_keys = ON")
            finally:
                cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn: Connection) -> None:
            if conn.get_execution_options().get(_READ_ONLY):
                conn.exec_driver_sql("BEGIN")
            else:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

    @contextmanager
    def transaction(self, scope: Scope, operation: str) -> Iterator[Connection]:
        """Open a read-write transaction.

        Commits when the block exits normally, rolls back otherwise.

        Args:
            scope: Scope whose credentials and pool to use
            operation: Operation name for logs and errors

        Yields:
            Connection inside an open transaction

        Raises:
            InfrastructureError: On any engine failure, including commit
        """
        try:
            with self._engines[scope].begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error(
                f"{operation} failed: {e}",
                exc_info=True,
                extra={"scope": scope.value, "operation": operation},
            )
            raise InfrastructureError(f"{operation} failed: {e}", operation=operation) from e

    @contextmanager
    def snapshot(self, scope: Scope, operation: str) -> Iterator[Connection]:
        """Open a read transaction at the engine's default isolation level.

        Args:
            scope: Scope whose credentials and pool to use
            operation: Operation name for logs and errors

        Yields:
            Connection inside an open transaction
        """
        try:
            with self._engines[scope].connect() as conn:
                conn.execution_options(**{_READ_ONLY: True})
                with conn.begin():
                    yield conn
        except SQLAlchemyError as e:
            logger.error(
                f"{operation} failed: {e}",
                exc_info=True,
                extra={"scope": scope.value, "operation": operation},
            )
            raise InfrastructureError(f"{operation} failed: {e}", operation=operation) from e

    def create_schema(self) -> None:
        """Create all tables for both scopes if they don't exist."""
        try:
            metadata.create_all(self._engines[Scope.APPLICATION])
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Schema creation failed: {e}", operation="create_schema") from e
        logger.info(
            "Database schema ready",
            extra={"db_type": self.config.db_type.value, "database": self.config.database},
        )

    def ping(self, scope: Scope) -> None:
        """Check connectivity for a scope.

        Raises:
            InfrastructureError: If the engine cannot be reached
        """
        with self.snapshot(scope, "ping") as conn:
            conn.exec_driver_sql("SELECT 1")

    def dispose(self) -> None:
        """Close all pooled connections."""
        for engine in self._engines.values():
            engine.dispose()
