"""
Pydantic schemas for project endpoints.

WHAT: Request/response schemas for project management API.

WHY: Projects anchor budgets and tasks; the schemas keep the project itself
small (name, client, status, dates) and leave budget and task data to their
own nested endpoints.
"""

from datetime import datetime, date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crm.models.project import ProjectStatus


class ProjectCreate(BaseModel):
    """
    Project creation request schema.

    WHAT: Validates data for creating a new project.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255, description="Project name/title")
    description: Optional[str] = Field(default=None, max_length=5000)
    client_id: Optional[int] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: Optional[date] = None
    due_date: Optional[date] = None

    @model_validator(mode="after")
    def check_dates(self) -> "ProjectCreate":
        if self.start_date and self.due_date and self.due_date < self.start_date:
            raise ValueError("due_date must not be before start_date")
        return self


class ProjectUpdate(BaseModel):
    """Partial project update; only provided fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    client_id: Optional[int] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    client_id: Optional[int]
    name: str
    description: Optional[str]
    status: ProjectStatus
    start_date: Optional[date]
    due_date: Optional[date]
    created_at: datetime
    updated_at: datetime


class ProjectListResponse(BaseModel):
    items: List[ProjectResponse]
    total: int
    skip: int
    limit: int


class ProjectActivityCreate(BaseModel):
    """A timeline entry posted by a member (call, meeting, note, ...)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    activity_type: str = Field(default="note", min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=5000)
    details: Optional[Dict[str, Any]] = None


class ProjectActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    activity_type: str
    description: str
    user_id: Optional[int]
    user_name: Optional[str]
    details: Optional[Dict[str, Any]]
    created_at: datetime


class ProjectActivityListResponse(BaseModel):
    items: List[ProjectActivityResponse]
    total: int
    skip: int
    limit: int
