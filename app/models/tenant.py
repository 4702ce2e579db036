"""
Tenant Model

The tenant is the primary isolation boundary: one construction company per
tenant, with complete data isolation from every other company.

ARCHITECTURAL DECISION: Shared database, shared schema, tenant_id column on
every tenant-owned table. The tenant row itself is not tenant-scoped; it is
looked up by subdomain during registration and through the user during
login.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from app.database import Base
import uuid


class SubscriptionPlan:
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class Tenant(Base):
    __tablename__ = "tenants"

    # UUIDs avoid enumeration and are assigned by the creator
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    company_name = Column(String(200), nullable=False)

    # Lowercase slug, globally unique (e.g. acme.constructiontracker.app)
    subdomain = Column(String(50), nullable=False)

    contact_email = Column(String(256), nullable=False)
    contact_phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)

    subscription_plan = Column(String(50), default=SubscriptionPlan.FREE, nullable=False)

    # Gate on all access: inactive tenants cannot log in
    is_active = Column(Boolean, default=True, nullable=False)

    # Stamped by the before_flush listener
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    users = relationship(
        "User",
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    projects = relationship(
        "Project",
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        # CRITICAL: storage-level uniqueness, concurrent registrations race on this
        Index("ix_tenants_subdomain", "subdomain", unique=True),
    )

    def __repr__(self):
        return f"<Tenant {self.subdomain}>"
