"""
Project Schemas

Request/response models for project operations.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ProjectCreate(BaseModel):
    """Schema for creating a project. tenant_id always comes from the token."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: str = Field("Planning", pattern="^(Planning|In Progress|On Hold|Completed)$")


class ProjectResponse(BaseModel):
    """Project response schema."""
    id: str
    tenant_id: str
    name: str
    description: Optional[str]
    status: str
    created_by: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ProjectListResponse(BaseModel):
    """Paginated list of projects."""
    items: list[ProjectResponse]
    page_number: int
    page_size: int
    total_count: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool


class ProjectUpdate(BaseModel):
    """Schema for updating a project. All fields optional."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(Planning|In Progress|On Hold|Completed)$")
