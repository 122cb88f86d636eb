"""
Once-only construction of the Authorizer client.

The application owns exactly one AuthorizerClient. It is built by
AuthorizerProvider.initialize(), which pings the Authorizer first and
only then publishes the client.

Invariants:
    - Concurrent initialize() calls share one attempt: one ping, one client
    - A failed attempt is not cached; the next initialize() tries again
    - After success, initialize() returns the same client without I/O
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from ..config import AuthorizerConfig
from ..errors import InfrastructureError
from .authorizer import AuthorizerClient

logger = logging.getLogger(__name__)


class AuthorizerProvider:
    """Holds the process-wide AuthorizerClient.

    Example:
        >>> provider = AuthorizerProvider(config.authorizer)
        >>> client = await provider.initialize("http://localhost:3000")
        >>> user = await client.authenticate(token, ["user"])
    """

    def __init__(
        self,
        config: AuthorizerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider without any I/O.

        Args:
            config: Authorizer configuration
            transport: Optional transport for the client (tests)
        """
        self.config = config
        self._transport = transport
        self._client: AuthorizerClient | None = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> AuthorizerClient:
        """The initialized client.

        Raises:
            InfrastructureError: If initialize() has not succeeded yet
        """
        if self._client is None:
            raise InfrastructureError("Authorizer client not initialized", operation="authorize")
        return self._client

    async def initialize(self, redirect_url: str) -> AuthorizerClient:
        """Build the client once, after a successful reachability ping.

        Args:
            redirect_url: Redirect URL registered with the Authorizer

        Returns:
            The shared client

        Raises:
            InfrastructureError: If the Authorizer cannot be reached
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            client = AuthorizerClient(
                url=self.config.url,
                client_id=self.config.client_id,
                redirect_url=redirect_url,
                timeout_seconds=self.config.timeout_seconds,
                transport=self._transport,
            )
            try:
                await client.ping(self.config.ping_timeout_seconds)
            except InfrastructureError:
                await client.close()
                logger.warning(f"Authorizer not reachable at {self.config.url}")
                raise

            logger.info(
                "Authorizer client initialized",
                extra={
                    "authz_url": self.config.url,
                    "client_id": self.config.client_id,
                    "redirect_url": redirect_url,
                },
            )
            self._client = client
            return client

    async def ping(self) -> None:
        """Check Authorizer reachability, with or without an initialized client.

        Raises:
            InfrastructureError: If it is not reachable
        """
        if self._client is not None:
            await self._client.ping(self.config.ping_timeout_seconds)
            return

        temporary = AuthorizerClient(
            url=self.config.url,
            client_id=self.config.client_id,
            redirect_url="",
            timeout_seconds=self.config.ping_timeout_seconds,
            transport=self._transport,
        )
        try:
            await temporary.ping()
        finally:
            await temporary.close()

    async def close(self) -> None:
        """Close the client, if any."""
        if self._client is not None:
            await self._client.close()
            self._client = None
