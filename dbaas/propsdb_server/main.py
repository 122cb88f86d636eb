"""
PropsDB Server - Main entry point.

This module wires the server together:
- Database engines for the application and user scopes
- Schema creation
- One PropertyStore per scope
- The Authorizer provider
- The FastAPI application, served by uvicorn

Usage:
    python -m dbaas.propsdb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration is validated before any connection is opened
    - Engines are disposed on shutdown
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .auth import AuthorizerProvider
from .config import ServerConfig
from .errors import InfrastructureError
from .store import Database, PropertyStore, Scope

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    database = Database(config.database)
    try:
        database.create_schema()
    except InfrastructureError as e:
        logger.error(f"Server startup failed: {e.message}", exc_info=True)
        database.dispose()
        sys.exit(1)

    app = create_app(
        app_store=PropertyStore(database, Scope.APPLICATION),
        user_store=PropertyStore(database, Scope.USER),
        authorizer=AuthorizerProvider(config.authorizer),
        database=database,
        redirect_url=config.redirect_url,
        http=config.http,
    )

    logger.info(f"Starting PropsDB server on {config.http.host}:{config.http.port}")
    try:
        uvicorn.run(app, host=config.http.host, port=config.http.port, log_config=None)
    finally:
        database.dispose()
        logger.info("PropsDB server stopped")


if __name__ == "__main__":
    main()
