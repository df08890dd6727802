"""Unified error hierarchy for the PMS permission service.

All domain errors inherit from PmsError. Stores and the resolver raise
these directly; the gateway maps each one to an HTTP status.
"""

from __future__ import annotations

from collections.abc import Iterable


class PmsError(Exception):
    """Base error for all permission service exceptions."""

    def __init__(self, message: str, code: str = "PMS_ERROR") -> None:
        self.code = code
        super().__init__(message)


# -- Auth errors (raised by the gateway, never by stores) --


class AuthenticationError(PmsError):
    """Authentication failed (invalid token, expired, etc.)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationError(PmsError):
    """Authorization denied (insufficient privilege)."""

    def __init__(self, required_permission: str = "") -> None:
        msg = (
            f"Permission denied: {required_permission}"
            if required_permission
            else "Permission denied"
        )
        self.required_permission = required_permission
        super().__init__(msg, code="AUTH_DENIED")


# -- Domain errors --


class NotFoundError(PmsError):
    """Required context is missing (e.g. no membership for a user)."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
        )


class ConflictError(PmsError):
    """A write collided with a concurrent write to the same scope key."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFLICT")


class AmbiguousRoleError(PmsError):
    """A user holds more than one active role in the same project.

    There is no agreed precedence between roles, so resolution refuses
    to pick one. Callers must pass the role explicitly.
    """

    def __init__(self, project_id: object, user_id: object, roles: Iterable[str]) -> None:
        self.project_id = project_id
        self.user_id = user_id
        self.roles = tuple(sorted(roles))
        super().__init__(
            f"User {user_id} holds multiple roles in project {project_id}: "
            f"{', '.join(self.roles)}",
            code="AMBIGUOUS_ROLE",
        )


class ValidationError(PmsError):
    """Input validation failed (unknown key, disallowed cell, bad value)."""

    def __init__(self, message: str, field: str = "") -> None:
        self.field = field
        super().__init__(message, code="VALIDATION")


class ServiceUnavailableError(PmsError):
    """A backing service (database) is temporarily unavailable."""

    def __init__(self, service: str, message: str = "") -> None:
        self.service = service
        super().__init__(
            message or f"Service temporarily unavailable: {service}",
            code="SERVICE_UNAVAILABLE",
        )


__all__ = [
    "AmbiguousRoleError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "NotFoundError",
    "PmsError",
    "ServiceUnavailableError",
    "ValidationError",
]
