"""
Standalone health check for PropsDB.

Loads the server configuration from the environment, pings both database
scopes and the Authorizer, prints the result as JSON and exits 0 when
healthy, 1 otherwise. Intended as a container HEALTHCHECK command.

Usage:
    propsdb-healthcheck
    python -m dbaas.propsdb_server.tools.healthcheck --compact

Invariants:
    - Output on stdout is the same document GET /health returns
    - Logs go to stderr only
    - No schema changes; the check only reads
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

import httpx

from ..auth import AuthorizerProvider
from ..config import ServerConfig
from ..health import check_health
from ..main import setup_logging
from ..store import Database


async def run_healthcheck(
    config: ServerConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Run one health check against the configured dependencies.

    Args:
        config: Server configuration
        transport: Optional transport for the Authorizer client (tests)

    Returns:
        The health result, see health.check_health()
    """
    database = Database(config.database)
    authorizer = AuthorizerProvider(config.authorizer, transport=transport)
    try:
        return await check_health(database, authorizer)
    finally:
        await authorizer.close()
        database.dispose()

def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="PropsDB health check")
    parser.add_argument("--compact", action="store_true", help="Print JSON on one line")
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    result = asyncio.run(run_healthcheck(config))

    print(json.dumps(result, indent=None if args.compact else 2))
    sys.exit(0 if result["status"] == "healthy" else 1)

if __name__ == "__main__":
    main()
