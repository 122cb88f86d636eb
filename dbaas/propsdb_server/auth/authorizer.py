"""
Client for the external Authorizer service.

Sessions are validated against the Authorizer GraphQL API:

    session cookie  ──> validate_session(cookie, roles)        -> user
    JWT (has '.')   ──> validate_jwt_token(token, roles)       -> is_valid
                        profile (Authorization: Bearer <jwt>)  -> user

Invariants:
    - Every failure to establish an identity raises AuthorizationError
    - Transport failures raise InfrastructureError, not AuthorizationError
    - Tokens are never logged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import httpx

from ..errors import AuthorizationError, InfrastructureError

logger = logging.getLogger(__name__)

_USER_FIELDS = "id email given_name family_name nickname roles"

VALIDATE_SESSION = f"""
query validateSession($params: ValidateSessionInput) {{
  validate_session(params: $params) {{ is_valid user {{ {_USER_FIELDS} }} }}
}}
"""

VALIDATE_JWT = """
query validateJwtToken($params: ValidateJWTTokenInput!) {
  validate_jwt_token(params: $params) { is_valid }
}
"""

PROFILE = f"""
query profile {{ profile {{ {_USER_FIELDS} }} }}
"""


@dataclass(frozen=True)
class AuthUser:
    """Identity returned by the Authorizer.

    Attributes:
        id: Stable user id, used as the owner of user documents
        email: Email address, if known
        roles: Roles granted to the user
        raw: Full user object as returned
    """

    id: str
    email: str | None = None
    roles: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> AuthUser:
        if not payload or not payload.get("id"):
            raise AuthorizationError("Authorizer returned no user")
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            roles=tuple(payload.get("roles") or ()),
            raw=payload,
        )


def normalize_token(token: str) -> str:
    """Undo URI escaping and form decoding of a session token.

    Base64 session tokens contain '+', which form decoding turns into spaces.
    """
    token = unquote(token)
    if " " in token:
        token = token.replace(" ", "+")
    return token


class AuthorizerClient:
    """GraphQL client for session and JWT validation.

    Attributes:
        url: Authorizer base URL
        client_id: Authorizer client id
        redirect_url: Redirect URL sent as the request origin
    """

    def __init__(
        self,
        url: str,
        client_id: str,
        redirect_url: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Authorizer base URL
            client_id: Authorizer client id
            redirect_url: Redirect URL registered with the Authorizer
            timeout_seconds: Request timeout
            transport: Optional transport (tests)
        """
        self.url = url.rstrip("/")
        self.client_id = client_id
        self.redirect_url = redirect_url
        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "x-authorizer-client-id": client_id,
                "x-authorizer-url": self.url,
                "Origin": redirect_url,
            },
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._http.post(
                "/graphql",
                json={"query": query, "variables": variables or {}},
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Authorizer request failed: {e}")
            raise InfrastructureError(f"Authorizer request failed: {e}", operation="authorize") from e

        if response.status_code >= 500:
            raise InfrastructureError(
                f"Authorizer returned HTTP {response.status_code}", operation="authorize"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise InfrastructureError("Authorizer returned invalid JSON", operation="authorize") from e

        errors = body.get("errors")
        if errors:
            message = errors[0].get("message", "unknown error")
            raise AuthorizationError(f"Invalid session: {message}")
        return body.get("data") or {}

    async def validate_session(self, cookie: str, roles: list[str]) -> AuthUser:
        """Validate a session cookie for the given roles.

        Raises:
            AuthorizationError: If the session is invalid or lacks a role
        """
        data = await self._graphql(VALIDATE_SESSION, {"params": {"cookie": cookie, "roles": roles}})
        result = data.get("validate_session") or {}
        if not result.get("is_valid"):
            raise AuthorizationError("Invalid session: session is not valid", roles=roles)
        return AuthUser.from_payload(result.get("user"))

    async def validate_jwt(self, token: str, roles: list[str]) -> AuthUser:
        """Validate a JWT access token for the given roles, then fetch its profile.

        Raises:
            AuthorizationError: If the token is invalid or lacks a role
        """
        data = await self._graphql(
            VALIDATE_JWT,
            {"params": {"token_type": "access_token", "token": token, "roles": roles}},
        )
        result = data.get("validate_jwt_token") or {}
        if not result.get("is_valid"):
            raise AuthorizationError("Invalid session: JWT is not valid", roles=roles)

        profile = await self._graphql(PROFILE, headers={"Authorization": f"Bearer {token}"})
        return AuthUser.from_payload(profile.get("profile"))

    async def authenticate(self, token: str, roles: list[str]) -> AuthUser:
        """Validate a session cookie or JWT and return the user.

        Args:
            token: Raw value of the session cookie
            roles: Roles the user must hold

        Returns:
            The authenticated user
        """
        token = normalize_token(token)
        if "." in token:
            return await self.validate_jwt(token, roles)
        return await self.validate_session(token, roles)

    async def ping(self, timeout_seconds: float | None = None) -> None:
        """Check that the Authorizer is reachable.

        Raises:
            InfrastructureError: If it is not
        """
        kwargs: dict[str, Any] = {}
        if timeout_seconds is not None:
            kwargs["timeout"] = timeout_seconds
        try:
            response = await self._http.get("/healthz", **kwargs)
        except httpx.HTTPError as e:
            raise InfrastructureError(f"Authorizer ping failed: {e}", operation="authorizer_ping") from e
        if response.status_code >= 500:
            raise InfrastructureError(
                f"Authorizer ping failed: HTTP {response.status_code}", operation="authorizer_ping"
            )
