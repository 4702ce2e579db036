from types import SimpleNamespace

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.api.deps import get_current_claims, get_tenant_context, require_roles
from app.config import get_settings
from app.core.exceptions import ForbiddenAccessError, UnauthenticatedContextError
from app.core.tokens import get_token_service
from app.middleware.rate_limit import RateLimitMiddleware, TenantRateLimiter
from app.middleware.tenant import TenantMiddleware, extract_bearer_token


def _token(tenant_id, role="Admin"):
    user = SimpleNamespace(
        id=f"user-{tenant_id}",
        email=f"admin@{tenant_id}.com",
        full_name="Ada Builder",
        role=role,
        tenant_id=tenant_id,
    )
    return get_token_service().generate_token(user)


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _build_request(headers=None, claims=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/projects",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "scheme": "http",
    }
    request = Request(scope)
    request.state.claims = claims
    request.state.auth_error = None
    return request


@pytest.fixture
def context_app():
    app = FastAPI()
    app.add_middleware(TenantMiddleware)

    @app.get("/whoami")
    def whoami(request: Request):
        context = get_tenant_context(request)
        if not context.is_set:
            return {"tenant_id": None, "context_id": id(context)}
        return {"tenant_id": context.tenant_id, "user_id": context.user_id, "context_id": id(context)}

    return TestClient(app)


def test_context_is_populated_from_token(context_app):
    body = context_app.get("/whoami", headers=_auth(_token("tenant-a"))).json()

    assert body["tenant_id"] == "tenant-a"
    assert body["user_id"] == "user-tenant-a"


def test_each_request_gets_a_fresh_context(context_app):
    first = context_app.get("/whoami", headers=_auth(_token("tenant-a"))).json()
    second = context_app.get("/whoami", headers=_auth(_token("tenant-b"))).json()
    anonymous = context_app.get("/whoami").json()

    assert first["tenant_id"] == "tenant-a"
    assert second["tenant_id"] == "tenant-b"
    assert anonymous["tenant_id"] is None


def test_invalid_token_leaves_context_unset(context_app):
    body = context_app.get("/whoami", headers=_auth("garbage")).json()

    assert body["tenant_id"] is None


def test_extract_bearer_token_ignores_other_schemes():
    assert extract_bearer_token(_build_request({"Authorization": "Bearer abc"})) == "abc"
    assert extract_bearer_token(_build_request({"Authorization": "Basic abc"})) is None
    assert extract_bearer_token(_build_request()) is None


def test_get_tenant_context_without_middleware_is_a_wiring_error():
    with pytest.raises(UnauthenticatedContextError):
        get_tenant_context(_build_request())


def test_require_roles_denies_other_roles():
    claims = SimpleNamespace(user_id="u1", tenant_id="t1", role="Viewer")
    dependency = require_roles("Admin", "Manager")

    with pytest.raises(ForbiddenAccessError) as exc:
        dependency(request=_build_request(claims=claims), claims=claims)

    assert exc.value.status_code == 403


def test_require_roles_admits_listed_role():
    claims = SimpleNamespace(user_id="u1", tenant_id="t1", role="Manager")

    assert require_roles("Admin", "Manager")(request=_build_request(claims=claims), claims=claims) is claims


def test_get_current_claims_returns_middleware_claims():
    claims = SimpleNamespace(user_id="u1", tenant_id="t1", role="Admin")

    assert get_current_claims(_build_request(claims=claims)) is claims


class StubRedis:
    """In-memory stand-in for the transaction and hash commands the limiter uses."""

    def __init__(self):
        self.hashes = {}
        self.ttls = {}
        self.watched = []
        self.queuing = False

    def transaction(self, func, *watches, value_from_callable=False):
        self.watched.extend(watches)
        self.queuing = False
        value = func(self)
        return value if value_from_callable else []

    def multi(self):
        self.queuing = True

    def hgetall(self, key):
        assert not self.queuing, "reads must happen before MULTI"
        return dict(self.hashes.get(key, {}))

    def hset(self, key, mapping):
        assert self.queuing, "writes must be queued after MULTI"
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        assert self.queuing, "writes must be queued after MULTI"
        self.ttls[key] = seconds


def test_bucket_refills_over_time():
    limiter = TenantRateLimiter(StubRedis(), rate_per_minute=60, burst=2)

    assert limiter.consume("t1", now=100.0) == (True, 0)
    assert limiter.consume("t1", now=100.0) == (True, 0)
    assert limiter.consume("t1", now=100.5) == (False, 1)
    assert limiter.consume("t1", now=101.0) == (True, 0)


def test_bucket_expires_once_it_would_be_full():
    redis_client = StubRedis()
    limiter = TenantRateLimiter(redis_client, rate_per_minute=30, burst=4)

    limiter.consume("t1", now=0.0)

    assert redis_client.ttls[TenantRateLimiter.key_for("t1")] == 8


def test_bucket_is_read_and_spent_in_one_watched_transaction():
    redis_client = StubRedis()
    limiter = TenantRateLimiter(redis_client, rate_per_minute=60, burst=1)

    assert limiter.consume("t1", now=0.0) == (True, 0)
    assert limiter.consume("t1", now=0.0) == (False, 1)

    assert redis_client.watched == [TenantRateLimiter.key_for("t1")] * 2
    assert redis_client.hashes[TenantRateLimiter.key_for("t1")]["tokens"] == "0.0"


@pytest.fixture
def rate_limited_app(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_BURST", "2")
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "1")
    get_settings.cache_clear()

    app = FastAPI()
    # Added first so it runs after TenantMiddleware
    app.add_middleware(RateLimitMiddleware, redis_client=StubRedis())
    app.add_middleware(TenantMiddleware)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    yield TestClient(app)

    monkeypatch.undo()
    get_settings.cache_clear()


def test_rate_limit_is_per_tenant(rate_limited_app):
    acme = _auth(_token("tenant-a"))
    bolt = _auth(_token("tenant-b"))

    assert rate_limited_app.get("/ping", headers=acme).status_code == 200
    assert rate_limited_app.get("/ping", headers=acme).status_code == 200

    limited = rate_limited_app.get("/ping", headers=acme)
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1
    assert limited.json()["status_code"] == 429

    assert rate_limited_app.get("/ping", headers=bolt).status_code == 200


def test_anonymous_requests_are_not_rate_limited(rate_limited_app):
    for _ in range(5):
        assert rate_limited_app.get("/ping").status_code == 200
