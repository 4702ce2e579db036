"""
Project Endpoints

Tenant-scoped project operations.

Reads go through ReadRepository with the tenant id taken from the token.
Writes go through WriteRepository, whose session is bound to the request's
TenantContext, so tenant_id is never taken from the request body.

RBAC (role strings):
- List/view projects: any authenticated user
- Create/update project: Manager, Admin, SuperAdmin
- Delete project / admin data: Admin
"""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from app.api.deps import get_current_claims, require_roles
from app.core.exceptions import NotFoundError
from app.core.tokens import TokenClaims
from app.data.repositories import ReadRepository, WriteRepository
from app.database import get_db, get_read_db
from app.models.project import Project
from app.models.user import UserRole
from app.schemas.project import ProjectCreate, ProjectListResponse, ProjectResponse, ProjectUpdate
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

PROJECT_EDITORS = (UserRole.MANAGER, UserRole.ADMIN, UserRole.SUPER_ADMIN)


@router.get("", response_model=ProjectListResponse)
def list_projects(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    claims: TokenClaims = Depends(get_current_claims),
    connection: Connection = Depends(get_read_db),
):
    """List the caller's tenant projects, newest first."""
    projects = ReadRepository.for_model(connection, Project)
    result = projects.get_paged(claims.tenant_id, page_number=page, page_size=page_size)

    logger.debug(f"Listed {len(result.items)} projects for tenant {claims.tenant_id}")

    return ProjectListResponse(
        items=[ProjectResponse.model_validate(row) for row in result.items],
        page_number=result.page_number,
        page_size=result.page_size,
        total_count=result.total_count,
        total_pages=result.total_pages,
        has_previous_page=result.has_previous_page,
        has_next_page=result.has_next_page,
    )


@router.get("/admin")
def get_admin_data(claims: TokenClaims = Depends(require_roles(UserRole.ADMIN))):
    """Admin-only endpoint."""
    logger.info(f"Admin endpoint accessed by user {claims.user_id}")
    return {
        "message": "This endpoint is only accessible to Admins",
        "user": {
            "user_id": claims.user_id,
            "email": claims.email,
            "role": claims.role,
            "tenant_id": claims.tenant_id,
        },
    }


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    connection: Connection = Depends(get_read_db),
):
    row = ReadRepository.for_model(connection, Project).get_by_id(project_id, claims.tenant_id)
    if row is None:
        raise NotFoundError("Project", project_id)
    return ProjectResponse.model_validate(row)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    project_data: ProjectCreate,
    claims: TokenClaims = Depends(require_roles(*PROJECT_EDITORS)),
    db: Session = Depends(get_db),
):
    project = Project(
        name=project_data.name,
        description=project_data.description,
        status=project_data.status,
        created_by=claims.user_id,
    )
    WriteRepository(db, Project).add(project)

    logger.info(f"Project created: {project.id} in tenant {project.tenant_id}")
    return project


@router.put("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: str,
    changes: ProjectUpdate,
    claims: TokenClaims = Depends(require_roles(*PROJECT_EDITORS)),
    db: Session = Depends(get_db),
):
    # Scoped lookup: another tenant's project is simply not found
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)

    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(project, field, value)

    return WriteRepository(db, Project).update(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    claims: TokenClaims = Depends(require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    deleted = WriteRepository(db, Project).delete_by_id(project_id, claims.tenant_id)
    if not deleted:
        raise NotFoundError("Project", project_id)

    logger.info(f"Project deleted: {project_id} by user {claims.user_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
