"""
Unit tests for environment configuration.
"""

import pytest

from dbaas.propsdb_server.config import (
    AuthorizerConfig,
    DatabaseConfig,
    DbType,
    HttpConfig,
    ServerConfig,
)

_ENV = {
    "DB_TYPE": "mariadb",
    "DB_HOST": "db.internal",
    "DB_APP_DATABASE": "jam_build",
    "DB_APP_USER": "app",
    "DB_APP_PASSWORD": "app-secret",
    "DB_APP_CONNECTION_LIMIT": "3",
    "DB_USER": "user",
    "DB_PASSWORD": "user-secret",
    "DB_CONNECTION_LIMIT": "7",
    "AUTHZ_URL": "http://authorizer:8080",
    "AUTHZ_CLIENT_ID": "client-123",
    "PORT": "5000",
}


@pytest.fixture
def env(monkeypatch):
    for key, value in _ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


class TestDbType:
    """Tests for DB_TYPE parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("mysql", DbType.MYSQL),
            ("MariaDB", DbType.MYSQL),
            ("postgres", DbType.POSTGRES),
            ("postgresql", DbType.POSTGRES),
            ("sqlite", DbType.SQLITE),
            ("mssql", DbType.SQLSERVER),
            ("sqlserver", DbType.SQLSERVER),
        ],
    )
    def test_aliases(self, value, expected):
        assert DbType.parse(value) is expected

    def test_unknown_rejected(self):
        with pytest.raises(ValueError, match="Invalid DB_TYPE"):
            DbType.parse("oracle")


class TestServerConfig:
    """Tests for ServerConfig.from_env()."""

    def test_from_env(self, env):
        """All sections load from the environment."""
        config = ServerConfig.from_env()

        assert config.database.db_type is DbType.MYSQL
        assert config.database.port == 3306
        assert config.database.app_connection_limit == 3
        assert config.database.connection_limit == 7
        assert config.authorizer.client_id == "client-123"
        assert config.http.port == 5000

    def test_separate_credentials(self, env):
        """Each scope connects with its own user."""
        db = ServerConfig.from_env().database

        assert db.app_url.username == "app"
        assert db.user_url.username == "user"
        assert db.app_url.drivername == "mysql+pymysql"
        assert db.app_url.query["charset"] == "utf8mb4"

    def test_missing_database(self, env):
        env.delenv("DB_APP_DATABASE")
        with pytest.raises(ValueError, match="DB_APP_DATABASE"):
            ServerConfig.from_env()

    def test_missing_user(self, env):
        env.delenv("DB_USER")
        with pytest.raises(ValueError, match="DB_USER"):
            ServerConfig.from_env()

    def test_missing_authorizer(self, env):
        env.delenv("AUTHZ_CLIENT_ID")
        with pytest.raises(ValueError, match="AUTHZ_CLIENT_ID"):
            ServerConfig.from_env()

    def test_sqlite_needs_no_users(self, env):
        """SQLite has no credentials."""
        env.setenv("DB_TYPE", "sqlite")
        env.setenv("DB_APP_DATABASE", "/tmp/props.db")
        env.delenv("DB_APP_USER")
        env.delenv("DB_USER")

        config = ServerConfig.from_env()

        assert config.database.app_url.drivername == "sqlite+pysqlite"
        assert config.database.app_url.database == "/tmp/props.db"
        assert config.database.user_url.database == "/tmp/props.db"

    def test_postgres_url(self):
        db = DatabaseConfig(db_type=DbType.POSTGRES, host="pg", port=5432, database="props", app_user="a")
        assert db.app_url.drivername == "postgresql+psycopg"
        assert db.app_url.host == "pg"

    def test_redirect_url_default(self):
        """Redirect URL falls back to the bind address."""
        config = ServerConfig(http=HttpConfig(host="0.0.0.0", port=3000))
        assert config.redirect_url == "http://localhost:3000"

    def test_redirect_url_explicit(self):
        config = ServerConfig(authorizer=AuthorizerConfig(redirect_url="https://example.com"))
        assert config.redirect_url == "https://example.com"


class TestHttpConfig:
    """Tests for HttpConfig.from_env()."""

    def test_defaults(self, monkeypatch):
        for key in ("HOST", "PORT", "API_PREFIX", "CORS_ORIGINS"):
            monkeypatch.delenv(key, raising=False)

        http = HttpConfig.from_env()

        assert http.port == 3000
        assert http.api_prefix == "/api"
        assert http.cors_origins == ("http://localhost:3000", "http://localhost:5173")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("API_PREFIX", "/props/")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example,")

        http = HttpConfig.from_env()

        assert http.api_prefix == "/props"
        assert http.cors_origins == ("https://a.example", "https://b.example")
