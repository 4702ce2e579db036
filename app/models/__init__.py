"""
Database Models

Tenant-owned models are registered with the tenant scope here, at import
time, so the scoping listeners and read repositories know about them
before any session is used.
"""
from app.data.scoping import tenant_scope
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.models.project import Project, ProjectStatus

tenant_scope.register(User, "users")
tenant_scope.register(Project, "projects")

__all__ = ["Tenant", "User", "UserRole", "Project", "ProjectStatus"]
