from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from jose import jwt

from app.config import Settings
from app.core.exceptions import InvalidTokenError, TokenExpiredError
from app.core.tokens import TokenService

SECRET = "unit-test-signing-key-0123456789abcdef"


def _service(**overrides):
    return TokenService(Settings(SECRET_KEY=SECRET, **overrides))


def _user(**overrides):
    values = dict(
        id="user-1",
        email="admin@acme.com",
        full_name="Ada Builder",
        role="Admin",
        tenant_id="tenant-1",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_token_round_trip_recovers_identity():
    service = _service()
    issued = service.issue_token(_user())

    claims = service.decode_token(issued.token)

    assert service.validate_token(issued.token)
    assert service.get_user_id_from_token(issued.token) == "user-1"
    assert claims.tenant_id == "tenant-1"
    assert claims.email == "admin@acme.com"
    assert claims.full_name == "Ada Builder"
    assert claims.role == "Admin"


def test_token_expires_after_seven_days():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    issued = _service().issue_token(_user(), now=now)

    assert issued.expires_at == now + timedelta(days=7)


def test_expired_token_is_distinguished_from_invalid():
    service = _service()
    issued = service.issue_token(_user(), now=datetime.now(timezone.utc) - timedelta(days=8))

    with pytest.raises(TokenExpiredError) as exc:
        service.decode_token(issued.token)

    assert exc.value.headers["Token-Expired"] == "true"
    assert not service.validate_token(issued.token)
    assert service.get_user_id_from_token(issued.token) is None


def test_token_expired_by_one_second_is_rejected():
    service = _service()
    lifetime = timedelta(days=7)
    issued = service.issue_token(_user(), now=datetime.now(timezone.utc) - lifetime - timedelta(seconds=1))

    assert not service.validate_token(issued.token)


def test_bad_signature_is_invalid():
    token = _service().generate_token(_user())
    other = TokenService(Settings(SECRET_KEY="a-completely-different-signing-key-xyz"))

    with pytest.raises(InvalidTokenError):
        other.decode_token(token)


def test_wrong_audience_is_invalid():
    token = _service(JWT_AUDIENCE="SomeoneElse").generate_token(_user())

    assert not _service().validate_token(token)


def test_malformed_token_is_invalid():
    service = _service()

    assert not service.validate_token("not.a.token")
    with pytest.raises(InvalidTokenError):
        service.decode_token("")


def test_token_without_tenant_claim_is_invalid():
    service = _service()
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "sub": "user-1",
            "iss": service.issuer,
            "aud": service.audience,
            "iat": now,
            "exp": now + timedelta(hours=1),
        },
        SECRET,
        algorithm="HS256",
    )

    with pytest.raises(InvalidTokenError):
        service.decode_token(token)
