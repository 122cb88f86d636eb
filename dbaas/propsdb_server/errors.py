"""
Error types for PropsDB.

This module defines every exception the property store raises:
- PropsDbError: Base exception
- NotFoundError: Document/collection pair or enumeration yields nothing
- VersionConflictError: Optimistic concurrency rejection (retryable)
- ValidationError: Malformed input
- AuthorizationError: Missing/invalid session or role (HTTP boundary only)
- InfrastructureError: Engine or connection failure

Invariants:
    - All errors inherit from PropsDbError
    - VersionConflictError is never raised for infrastructure failures
    - InfrastructureError keeps the engine exception as __cause__
"""

from __future__ import annotations

from typing import Any


class PropsDbError(Exception):
    """Base exception for all PropsDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PROPSDB_ERROR"
        self.details = details or {}


class NotFoundError(PropsDbError):
    """Requested data does not exist.

    Raised when:
    - The document/collection pair does not jointly exist
    - A collection filter matches nothing
    - An enumeration yields no documents
    - A delete targets an absent document
    """

    def __init__(
        self,
        message: str,
        document: str | None = None,
        collections: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"document": document, "collections": collections or []},
        )
        self.document = document
        self.collections = collections or []


class VersionConflictError(PropsDbError):
    """Expected version does not match the stored version.

    This is a normal outcome of optimistic concurrency. The caller should
    re-read the document, reconcile and retry with the current version.

    Attributes:
        document: Document name
        expected_version: Version supplied by the caller
        actual_version: Version found in storage (None if absent or unknown)
    """

    def __init__(
        self,
        document: str,
        expected_version: int,
        actual_version: int | None = None,
        message: str | None = None,
    ) -> None:
        msg = message or (
            f"E_VERSION - document '{document}' expected version {expected_version}, "
            f"found {actual_version if actual_version is not None else 'none'}"
        )
        super().__init__(
            msg,
            code="E_VERSION",
            details={
                "document": document,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.document = document
        self.expected_version = expected_version
        self.actual_version = actual_version


class ValidationError(PropsDbError):
    """Input validation failed.

    Raised when:
    - Document name is missing
    - Collection list is empty on set
    - A property value cannot be encoded as JSON
    - Version is not a non-negative integer
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class AuthorizationError(PropsDbError):
    """Session is missing, invalid or lacks a required role."""

    def __init__(
        self,
        message: str,
        error_type: str = "data.authorization",
        roles: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="AUTHORIZATION_ERROR",
            details={"type": error_type, "roles": roles or []},
        )
        self.error_type = error_type
        self.roles = roles or []


class InfrastructureError(PropsDbError):
    """Database or external service failure.

    Surfaced verbatim, never retried internally.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="INFRASTRUCTURE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation
