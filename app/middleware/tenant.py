"""
Tenant Middleware

Populates the request's TenantContext from the bearer token before any
endpoint or data access runs. This is CRITICAL for multi-tenant isolation.

ARCHITECTURE: The tenant is resolved from the signed token's tenant_id
claim, never from a client-controlled header or subdomain. Each request
gets a brand new TenantContext on request.state; it is never shared
across requests.

Anonymous requests (registration, login, health) pass through with an
unpopulated context. An invalid or expired token does not abort the
request here: the failure is stored on request.state.auth_error and
raised by the authentication dependency, so public routes stay reachable
while protected routes report "token expired" precisely.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from typing import Optional
import logging

from app.core.exceptions import AuthenticationError
from app.core.tenant_context import TenantContext
from app.core.tokens import TokenService, get_token_service
from app.utils.logging import log_security_event

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Runs on EVERY request and attaches:
    - request.state.tenant_context: TenantContext (populated if the token is valid)
    - request.state.claims: TokenClaims or None
    - request.state.auth_error: AuthenticationError or None
    """

    def __init__(self, app, token_service: Optional[TokenService] = None):
        super().__init__(app)
        self._token_service = token_service

    @property
    def token_service(self) -> TokenService:
        return self._token_service or get_token_service()

    async def dispatch(self, request: Request, call_next):
        context = TenantContext()
        request.state.tenant_context = context
        request.state.claims = None
        request.state.auth_error = None

        token = extract_bearer_token(request)
        if token:
            try:
                claims = self.token_service.decode_token(token)
            except AuthenticationError as exc:
                request.state.auth_error = exc
                log_security_event(
                    "invalid_token",
                    {"reason": exc.detail, "path": request.url.path},
                    logger,
                )
            else:
                context.set(claims.tenant_id, claims.user_id)
                request.state.claims = claims
                logger.debug(f"Request for tenant {claims.tenant_id} by user {claims.user_id}")

        return await call_next(request)
