"""
Token Service

Issues and validates signed session tokens (JWT, HS256 via python-jose).

Token payload:
- sub: user id
- email, name (full name), role
- tenant_id: consumed by TenantMiddleware to populate the TenantContext
- iss / aud / iat / exp

Lifetime is ACCESS_TOKEN_EXPIRE_DAYS (7 days). There is no clock-skew
leeway: a token is rejected as soon as its exp has passed.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, NamedTuple, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.config import Settings, get_settings
from app.core.exceptions import InvalidTokenError, TokenExpiredError

REQUIRED_CLAIMS = ("sub", "tenant_id", "exp")


class IssuedToken(NamedTuple):
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    """Identity extracted from a validated token."""

    user_id: str
    tenant_id: str
    email: Optional[str]
    full_name: Optional[str]
    role: Optional[str]
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        return cls(
            user_id=str(payload["sub"]),
            tenant_id=str(payload["tenant_id"]),
            email=payload.get("email"),
            full_name=payload.get("name"),
            role=payload.get("role"),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


class TokenService:
    def __init__(self, settings: Settings):
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.issuer = settings.JWT_ISSUER
        self.audience = settings.JWT_AUDIENCE
        self.lifetime = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)

    def issue_token(self, user, now: Optional[datetime] = None) -> IssuedToken:
        """Sign a token for user and return it with its expiry."""
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + self.lifetime

        payload = {
            "sub": str(user.id),
            "email": user.email,
            "name": user.full_name,
            "role": user.role,
            "tenant_id": str(user.tenant_id),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=expires_at)

    def generate_token(self, user) -> str:
        return self.issue_token(user).token

    def decode_token(self, token: str) -> TokenClaims:
        """
        Verify signature, issuer, audience and lifetime.

        Raises TokenExpiredError for expired tokens and InvalidTokenError
        for everything else, so callers can tell the client its session
        expired rather than reporting a generic failure.
        """
        if not token:
            raise InvalidTokenError("Missing token")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"leeway": 0},
            )
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise InvalidTokenError()

        if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
            raise InvalidTokenError("Invalid token payload")

        return TokenClaims.from_payload(payload)

    def validate_token(self, token: str) -> bool:
        try:
            self.decode_token(token)
        except (InvalidTokenError, TokenExpiredError):
            return False
        return True

    def get_user_id_from_token(self, token: str) -> Optional[str]:
        try:
            return self.decode_token(token).user_id
        except (InvalidTokenError, TokenExpiredError):
            return None


@lru_cache()
def get_token_service() -> TokenService:
    return TokenService(get_settings())
