"""
Shared fixtures for PropsDB tests.

Stores run against a file-backed SQLite database in a temporary directory,
so both scope engines (and all threads) see the same data.
"""

import pytest

from dbaas.propsdb_server.config import DatabaseConfig, DbType
from dbaas.propsdb_server.store import Database, PropertyStore, Scope


@pytest.fixture
def database(tmp_path):
    """Create a SQLite database with the schema in place."""
    db = Database(
        DatabaseConfig(
            db_type=DbType.SQLITE,
            database=str(tmp_path / "propsdb.sqlite3"),
            app_connection_limit=8,
            connection_limit=8,
        )
    )
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def app_store(database):
    """Store for the application scope."""
    return PropertyStore(database, Scope.APPLICATION)


@pytest.fixture
def user_store(database):
    """Store for the user scope."""
    return PropertyStore(database, Scope.USER)
