"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.

The identity of a request lives in request.state, populated by
TenantMiddleware. These dependencies only read it; they never touch the
database to authenticate, so introspection endpoints need no storage
access.
"""
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPBearer

from app.core.exceptions import AuthenticationError, ForbiddenAccessError, UnauthenticatedContextError
from app.core.tenant_context import TenantContext
from app.core.tokens import TokenClaims
from app.utils.logging import log_security_event
import logging

logger = logging.getLogger(__name__)

# Only documents the scheme in OpenAPI; the middleware does the parsing
bearer_scheme = HTTPBearer(auto_error=False)


def get_tenant_context(request: Request) -> TenantContext:
    """
    The TenantContext created by TenantMiddleware for this request.

    CRITICAL: Missing context means the middleware did not run, which is a
    wiring bug rather than a client error.
    """
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        logger.error("No tenant context in request state - middleware may not be installed")
        raise UnauthenticatedContextError("TenantMiddleware did not populate request.state.tenant_context")
    return context


def get_current_claims(
    request: Request,
    _credentials=Depends(bearer_scheme),
) -> TokenClaims:
    """
    Claims of the validated bearer token.

    Re-raises the failure recorded by the middleware (expired tokens keep
    their Token-Expired header) or 401 when no token was sent.
    """
    auth_error = getattr(request.state, "auth_error", None)
    if auth_error is not None:
        raise auth_error

    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise AuthenticationError("Not authenticated")
    return claims


def require_roles(*roles: str) -> Callable[..., TokenClaims]:
    """
    Build a dependency that admits only the given role strings.

    Usage:
        @router.delete("/{id}")
        async def delete(claims: TokenClaims = Depends(require_roles("Admin"))):
            ...
    """
    allowed = {str(getattr(role, "value", role)) for role in roles}

    def dependency(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in allowed:
            log_security_event(
                "forbidden_role",
                {
                    "user_id": claims.user_id,
                    "tenant_id": claims.tenant_id,
                    "role": claims.role,
                    "path": request.url.path,
                },
                logger,
            )
            raise ForbiddenAccessError()
        return claims

    return dependency
