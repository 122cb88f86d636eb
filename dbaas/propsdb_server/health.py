"""
Health checks shared by the /health route and the healthcheck command.

A PropsDB instance is healthy when both database scopes answer a ping and
the Authorizer is reachable.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from .auth import AuthorizerProvider
from .errors import InfrastructureError
from .store import Database, Scope

logger = logging.getLogger(__name__)


async def check_health(database: Database, authorizer: AuthorizerProvider) -> dict[str, Any]:
    """Ping the database scopes and the Authorizer.

    Returns:
        Result with "status" set to "healthy" or "unhealthy", per-dependency
        "database" and "authorizer" states, and "details"
    """
    result: dict[str, Any] = {"status": "healthy", "details": {}}
    errors: list[str] = []

    try:
        for scope in Scope:
            await run_in_threadpool(database.ping, scope)
        result["database"] = "ok"
        result["details"]["database_type"] = database.config.db_type.value
    except InfrastructureError as e:
        result["database"] = "unreachable"
        result["details"]["database_error"] = e.message
        errors.append(f"Database ping failed: {e.message}")

    try:
        await authorizer.ping()
        result["authorizer"] = "ok"
        result["details"]["authorizer_url"] = authorizer.config.url
    except InfrastructureError as e:
        result["authorizer"] = "unreachable"
        result["details"]["authorizer_error"] = e.message
        errors.append(e.message)

    if errors:
        result["status"] = "unhealthy"
        result["error"] = "; ".join(errors)
        logger.warning(f"Health check failed: {result['error']}")
    return result
