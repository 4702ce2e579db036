import os

# Must be set before app.config is first imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-construction-tracker-suite"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_RETRY_BACKOFF_SECONDS"] = "0"

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers tenant-scoped models)
from app.core.security import PasswordHasher
from app.core.tenant_context import TenantContext
from app.core.tokens import get_token_service
from app.data.scoping import bind_tenant_context, install_tenant_scoping
from app.database import Base, get_db, get_read_db
from app.main import app as api_app
from app.services.auth_service import AuthService

PASSWORD = "Abc12345!"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    install_tenant_scoping(factory)
    return factory


@pytest.fixture
def hasher():
    return PasswordHasher(rounds=4)


@pytest.fixture
def session_for(session_factory):
    """Open sessions bound to a tenant context; all closed at teardown."""
    sessions = []

    def _open(tenant_id=None, user_id=None):
        session = session_factory()
        bind_tenant_context(session, TenantContext(tenant_id, user_id))
        sessions.append(session)
        return session

    yield _open

    for session in sessions:
        session.close()


@pytest.fixture
def register(session_for, hasher):
    """Register a company through AuthService and return its admin user."""

    def _register(subdomain, email=None, password=PASSWORD, company_name=None):
        service = AuthService(session_for(), hasher)
        return service.register_company(
            company_name=company_name or subdomain.title(),
            subdomain=subdomain,
            first_name="Ada",
            last_name="Builder",
            email=email or f"admin@{subdomain}.com",
            password=password,
        )

    return _register


@pytest.fixture
def token_for():
    """Issue a session token for any object shaped like a User."""
    service = get_token_service()

    def _issue(user):
        return service.generate_token(user)

    return _issue


@pytest.fixture
def client(engine, session_factory):
    def override_get_db(request: Request):
        context = getattr(request.state, "tenant_context", None) or TenantContext()
        session = session_factory()
        bind_tenant_context(session, context)
        try:
            yield session
        finally:
            session.close()

    def override_get_read_db():
        connection = engine.connect()
        try:
            yield connection
        finally:
            connection.close()

    api_app.dependency_overrides[get_db] = override_get_db
    api_app.dependency_overrides[get_read_db] = override_get_read_db
    try:
        yield TestClient(api_app)
    finally:
        api_app.dependency_overrides.clear()
