"""
Custom Exceptions

Centralized exception definitions for better error handling.
Every application error is an HTTPException carrying a client-safe
message; the handlers in main.py serialize them to the uniform
{"status_code", "message", "errors"} envelope.
"""
from typing import Optional, Sequence

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for application errors with optional field errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        errors: Optional[Sequence[dict]] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.errors = list(errors) if errors else None


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Validation failed", errors: Optional[Sequence[dict]] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, errors=errors)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(errors=[{"field": field, "message": message}])


class DuplicateIdentityError(AppError):
    """Raised when an email or subdomain is already registered."""

    def __init__(self, detail: str = "This identity is already registered."):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class AuthenticationError(AppError):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Could not validate credentials", headers: Optional[dict] = None):
        headers = {"WWW-Authenticate": "Bearer", **(headers or {})}
        super().__init__(status.HTTP_401_UNAUTHORIZED, detail, headers=headers)


class InvalidCredentialsError(AuthenticationError):
    """
    Unknown email or wrong password.

    Both cases use this class and the same message so the caller cannot
    tell which part was wrong.
    """

    def __init__(self):
        super().__init__("Invalid email or password.")


class AccountInactiveError(AuthenticationError):
    """Raised when the user or its company account is deactivated."""

    def __init__(self, detail: str = "User account is inactive."):
        super().__init__(detail)


class InvalidTokenError(AuthenticationError):
    """Malformed token, bad signature or wrong issuer/audience."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail)


class TokenExpiredError(AuthenticationError):
    """Token signature is valid but its lifetime is over."""

    def __init__(self):
        super().__init__("Token has expired", headers={"Token-Expired": "true"})


class ForbiddenAccessError(AppError):
    """Raised when the caller's role does not allow the action."""

    def __init__(self, detail: str = "Access to this resource is forbidden."):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class TenantAccessViolationError(AppError):
    """
    Raised when a cross-tenant data access is detected.

    This is a CRITICAL security error and should be logged/alerted on.
    """

    def __init__(
        self,
        detail: str = "Cross-tenant data access is not allowed.",
        requested_tenant_id: Optional[str] = None,
        actual_tenant_id: Optional[str] = None,
    ):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)
        self.requested_tenant_id = requested_tenant_id
        self.actual_tenant_id = actual_tenant_id


class NotFoundError(AppError):
    """Raised when an entity cannot be found in the current tenant."""

    def __init__(self, entity: str = "Resource", entity_id: str = ""):
        detail = f"{entity} not found: {entity_id}" if entity_id else f"{entity} not found"
        super().__init__(status.HTTP_404_NOT_FOUND, detail)


class UnauthenticatedContextError(AppError):
    """
    Tenant context read before it was populated.

    This is a programming error. The internal message goes to the logs;
    clients only see a generic 500.
    """

    def __init__(self, internal_message: str = "Tenant context has not been set. Ensure the user is authenticated."):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
        self.internal_message = internal_message

    def __str__(self):
        return self.internal_message


class TransientStorageError(AppError):
    """Storage connectivity failure that persisted after bounded retries."""

    def __init__(self, attempts: int = 0):
        super().__init__(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "A storage error occurred while processing your request",
        )
        self.attempts = attempts

