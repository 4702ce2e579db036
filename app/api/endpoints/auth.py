"""
Authentication Endpoints

Company registration, login and current-user introspection.

Registration creates a new tenant together with its first Admin user.
Login resolves the tenant from the (globally unique) email, so clients
never send a tenant identifier.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_claims
from app.core.exceptions import InvalidCredentialsError
from app.core.security import PasswordHasher, get_password_hasher
from app.core.tokens import TokenClaims, TokenService, get_token_service
from app.database import get_db
from app.models.user import User
from app.schemas.auth import AuthResponse, CurrentUserResponse, LoginRequest, RegisterRequest
from app.services.auth_service import AuthService
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def get_auth_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> AuthService:
    return AuthService(db, hasher)


def build_auth_response(user: User, token_service: TokenService) -> AuthResponse:
    issued = token_service.issue_token(user)
    return AuthResponse(
        token=issued.token,
        expires_at=issued.expires_at,
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        tenant_id=user.tenant_id,
        company_name=user.tenant.company_name,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    registration: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
    token_service: TokenService = Depends(get_token_service),
):
    """
    Register a new company and its first admin user.

    Returns a session token so the new admin is signed in immediately.
    400 on validation failure, duplicate email or taken subdomain.
    """
    user = service.register_company(
        company_name=registration.company_name,
        subdomain=registration.subdomain,
        first_name=registration.first_name,
        last_name=registration.last_name,
        email=registration.email,
        password=registration.password,
        contact_phone=registration.contact_phone,
    )
    return build_auth_response(user, token_service)


@router.post("/login", response_model=AuthResponse)
def login(
    credentials: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    token_service: TokenService = Depends(get_token_service),
):
    """
    Authenticate and return a session token.

    SECURITY: Unknown email and wrong password produce the same 401 so
    the response does not reveal which part was wrong.
    """
    user = service.authenticate(credentials.email, credentials.password)
    if user is None:
        raise InvalidCredentialsError()
    return build_auth_response(user, token_service)


@router.get("/me", response_model=CurrentUserResponse)
def me(claims: TokenClaims = Depends(get_current_claims)):
    """Identity from the validated token. No storage access."""
    return CurrentUserResponse(
        user_id=claims.user_id,
        email=claims.email,
        full_name=claims.full_name,
        role=claims.role,
        tenant_id=claims.tenant_id,
    )
