"""
Project Model

A construction project owned by one tenant. Registered with the tenant
scope, so every ORM query for projects is filtered to the current tenant.
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.database import Base
import uuid


class ProjectStatus:
    PLANNING = "Planning"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"

    ALL = (PLANNING, IN_PROGRESS, ON_HOLD, COMPLETED)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default=ProjectStatus.PLANNING, nullable=False)

    # User id of the creator; kept as a plain column so deleting a user
    # leaves the project history intact
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    tenant = relationship("Tenant", back_populates="projects")

    __table_args__ = (
        Index("ix_projects_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return f"<Project {self.name} (tenant={self.tenant_id})>"
