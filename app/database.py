"""
Database Configuration and Session Management

This module handles SQLAlchemy setup with connection pooling.

Two engines are configured:
- the write engine behind SessionLocal (ORM, transactional, tenant-scoped)
- the read engine used by the read repositories (Core SQL, may point at a
  read replica through DATABASE_READ_URL)

Every ORM session is bound to the TenantContext of the request that owns
it. The tenant-scoping listeners read that context to filter queries and
stamp writes.
"""
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool
from app.config import get_settings
from app.core.tenant_context import TenantContext
from app.data.scoping import bind_tenant_context, install_tenant_scoping
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_engine(url: str) -> Engine:
    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using (handles stale connections)
        echo=settings.DEBUG,
    )
    event.listen(engine, "connect", _set_connection_timezone)
    return engine


def _set_connection_timezone(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    # SQLite doesn't support SET TIME ZONE, so we skip it
    if settings.DATABASE_URL.startswith("postgresql"):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET TIME ZONE 'UTC'")
        cursor.close()
    logger.debug("New database connection established")


engine = _build_engine(settings.DATABASE_URL)

if settings.read_database_url == settings.DATABASE_URL:
    read_engine = engine
else:
    read_engine = _build_engine(settings.read_database_url)

# expire_on_commit=False keeps attributes readable after commit; the auth
# flows return ORM objects that are serialized after the session commits.
SessionLocal = sessionmaker(
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)
install_tenant_scoping(SessionLocal)

# Base class for all models
Base = declarative_base()


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency that provides a write-side session for the request.

    The session is bound to the request's TenantContext, populated by
    TenantMiddleware before any endpoint code runs.
    """
    context = getattr(request.state, "tenant_context", None) or TenantContext()
    db = SessionLocal()
    bind_tenant_context(db, context)
    try:
        yield db
    finally:
        db.close()


def get_read_db() -> Generator[Connection, None, None]:
    """Dependency that provides a read-side connection."""
    connection = read_engine.connect()
    try:
        yield connection
    finally:
        connection.close()


def check_database_connection(db: Session) -> bool:
    """Run a trivial query; used by the detailed health check."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.error("Database health check failed", exc_info=True)
        return False


def init_db():
    """
    Initialize database tables.

    In production, you'd use migrations instead. This is here for
    dev/testing convenience.
    """
    import app.models  # noqa: F401  (registers tables and tenant scoping)

    logger.warning("init_db() called - use migrations in production!")
    Base.metadata.create_all(bind=engine)
