"""
User Model

Users belong to exactly one tenant and carry a role string.

IMPORTANT: tenant_id is set once at creation and never changes. The
tenant-scoping flush listener restores it if an update tries to.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    Role strings, lowest to highest.

    Authorization is a plain role-string membership check (see
    app/api/deps.require_roles); there is no permission hierarchy.
    """
    VIEWER = "Viewer"
    WORKER = "Worker"
    MANAGER = "Manager"
    ADMIN = "Admin"
    SUPER_ADMIN = "SuperAdmin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # CRITICAL: Tenant foreign key for data isolation
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Always stored lowercased
    email = Column(String(256), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)

    # Opaque bcrypt digest, never the plaintext
    password_hash = Column(String(500), nullable=False)

    role = Column(String(50), default=UserRole.VIEWER.value, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)

    phone_number = Column(String(20), nullable=True)
    job_title = Column(String(100), nullable=True)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    tenant = relationship("Tenant", back_populates="users")

    __table_args__ = (
        # Unique within tenant
        Index("ix_users_tenant_email", "tenant_id", "email", unique=True),
        # Also unique globally: login resolves the tenant from the email alone
        Index("ix_users_email", "email", unique=True),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
