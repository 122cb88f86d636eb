"""
Configuration management for PropsDB Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Application and user scopes connect with separate credentials and pools
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep DB_* names compatible with existing deployments
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.engine import URL

logger = logging.getLogger(__name__)


class DbType(Enum):
    """Supported relational engine families."""

    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite"
    SQLSERVER = "sqlserver"

    @classmethod
    def parse(cls, value: str) -> DbType:
        """Parse a DB_TYPE value, accepting the common aliases."""
        aliases = {
            "mysql": cls.MYSQL,
            "mariadb": cls.MYSQL,
            "postgres": cls.POSTGRES,
            "postgresql": cls.POSTGRES,
            "sqlite": cls.SQLITE,
            "sqlserver": cls.SQLSERVER,
            "mssql": cls.SQLSERVER,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Invalid DB_TYPE '{value}'. Must be one of: {', '.join(sorted(aliases))}"
            ) from None


_DRIVERS = {
    DbType.MYSQL: "mysql+pymysql",
    DbType.POSTGRES: "postgresql+psycopg",
    DbType.SQLITE: "sqlite+pysqlite",
    DbType.SQLSERVER: "mssql+pyodbc",
}

_DEFAULT_PORTS = {
    DbType.MYSQL: 3306,
    DbType.POSTGRES: 5432,
    DbType.SQLITE: None,
    DbType.SQLSERVER: 1433,
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class DatabaseConfig:
    """Relational engine configuration.

    The application scope and the user scope use different credential sets
    and independently sized connection pools against the same database.

    Attributes:
        db_type: Engine family
        host: Database host
        port: Database port (None = driver default)
        database: Database name, or file path for SQLite
        app_user: Application scope user
        app_password: Application scope password
        app_connection_limit: Application scope pool size
        user: User scope user
        password: User scope password
        connection_limit: User scope pool size
        pool_timeout: Seconds to wait for a pooled connection
        sqlite_busy_timeout_ms: SQLite busy timeout
        odbc_driver: ODBC driver name for SQL Server
        echo: Log every SQL statement
    """

    db_type: DbType = DbType.SQLITE
    host: str = "localhost"
    port: int | None = None
    database: str = "propsdb.sqlite3"
    app_user: str = ""
    app_password: str = ""
    app_connection_limit: int = 5
    user: str = ""
    password: str = ""
    connection_limit: int = 5
    pool_timeout: float = 30.0
    sqlite_busy_timeout_ms: int = 5000
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    echo: bool = False

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        db_type = DbType.parse(os.getenv("DB_TYPE", "mysql"))
        port = os.getenv("DB_PORT")
        return cls(
            db_type=db_type,
            host=os.getenv("DB_HOST", "localhost"),
            port=int(port) if port else _DEFAULT_PORTS[db_type],
            database=os.getenv("DB_APP_DATABASE", ""),
            app_user=os.getenv("DB_APP_USER", ""),
            app_password=os.getenv("DB_APP_PASSWORD", ""),
            app_connection_limit=int(os.getenv("DB_APP_CONNECTION_LIMIT", "5")),
            user=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            connection_limit=int(os.getenv("DB_CONNECTION_LIMIT", "5")),
            pool_timeout=float(os.getenv("DB_POOL_TIMEOUT", "30")),
            sqlite_busy_timeout_ms=int(os.getenv("DB_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            odbc_driver=os.getenv("DB_ODBC_DRIVER", "ODBC Driver 18 for SQL Server"),
            echo=_env_bool("DB_ECHO", "false"),
        )

    def _url(self, username: str, password: str) -> URL:
        if self.db_type == DbType.SQLITE:
            return URL.create(_DRIVERS[self.db_type], database=self.database)

        query: dict[str, str] = {}
        if self.db_type == DbType.MYSQL:
            query["charset"] = "utf8mb4"
        elif self.db_type == DbType.SQLSERVER:
            query["driver"] = self.odbc_driver

        return URL.create(
            _DRIVERS[self.db_type],
            username=username or None,
            password=password or None,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )

    @property
    def app_url(self) -> URL:
        """SQLAlchemy URL for the application scope credentials."""
        return self._url(self.app_user, self.app_password)

    @property
    def user_url(self) -> URL:
        """SQLAlchemy URL for the user scope credentials.

        SQLite has no credentials, both scopes open the same file.
        """
        return self._url(self.user, self.password)


@dataclass(frozen=True)
class AuthorizerConfig:
    """External Authorizer service configuration.

    Attributes:
        url: Authorizer base URL
        client_id: Authorizer client ID
        redirect_url: Redirect URL registered with the Authorizer
        timeout_seconds: Request timeout for validation calls
        ping_timeout_seconds: Timeout for the reachability ping on initialization
    """

    url: str = ""
    client_id: str = ""
    redirect_url: str = ""
    timeout_seconds: float = 5.0
    ping_timeout_seconds: float = 1.5

    @classmethod
    def from_env(cls) -> AuthorizerConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("AUTHZ_URL", ""),
            client_id=os.getenv("AUTHZ_CLIENT_ID", ""),
            redirect_url=os.getenv("AUTHZ_REDIRECT_URL", ""),
            timeout_seconds=float(os.getenv("AUTHZ_TIMEOUT_SECONDS", "5")),
            ping_timeout_seconds=float(os.getenv("AUTHZ_PING_TIMEOUT_SECONDS", "1.5")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Bind host
        port: Bind port
        api_prefix: Prefix for all data routes
        cors_origins: Allowed CORS origins
    """

    host: str = "0.0.0.0"
    port: int = 3000
    api_prefix: str = "/api"
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "http://localhost:5173")

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables.

        CORS_ORIGINS is a comma-separated list.
        """
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            api_prefix=os.getenv("API_PREFIX", "/api").rstrip("/"),
            cors_origins=(
                tuple(o.strip() for o in origins.split(",") if o.strip())
                if origins is not None
                else cls.cors_origins
            ),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        database: Relational engine configuration
        authorizer: Authorizer service configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    authorizer: AuthorizerConfig = field(default_factory=AuthorizerConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            database=DatabaseConfig.from_env(),
            authorizer=AuthorizerConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.database.database:
            raise ValueError("DB_APP_DATABASE is required")

        if self.database.db_type != DbType.SQLITE:
            if not self.database.app_user:
                raise ValueError("DB_APP_USER is required")
            if not self.database.user:
                raise ValueError("DB_USER is required")

        if self.database.app_connection_limit < 1 or self.database.connection_limit < 1:
            raise ValueError("DB_APP_CONNECTION_LIMIT and DB_CONNECTION_LIMIT must be >= 1")

        if not self.authorizer.url:
            raise ValueError("AUTHZ_URL is required")
        if not self.authorizer.client_id:
            raise ValueError("AUTHZ_CLIENT_ID is required")

    @property
    def redirect_url(self) -> str:
        """Authorizer redirect URL, derived from the bind address if unset."""
        if self.authorizer.redirect_url:
            return self.authorizer.redirect_url
        host = "localhost" if self.http.host in ("0.0.0.0", "") else self.http.host
        return f"http://{host}:{self.http.port}"

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_type": self.database.db_type.value,
                "db_host": self.database.host
                if self.database.db_type != DbType.SQLITE
                else None,
                "db_database": self.database.database,
                "db_app_pool": self.database.app_connection_limit,
                "db_user_pool": self.database.connection_limit,
                "authz_url": self.authorizer.url,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "api_prefix": self.http.api_prefix,
                "log_level": self.observability.log_level,
            },
        )
