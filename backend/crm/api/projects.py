"""
Project management API endpoints.

WHAT: RESTful API for projects and their activity timeline. Budgets and
tasks live under /projects/{project_id} in their own routers.

HOW: Org-scoped CRUD; the linked client must belong to the same organization.
Creating a project and changing it write timeline entries in the same
transaction.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user, require_role
from crm.core.exceptions import ResourceNotFoundError, ValidationError
from crm.db.session import get_db
from crm.dao.client import ClientDAO
from crm.dao.project import ProjectDAO
from crm.models.project import ProjectStatus
from crm.models.user import User
from crm.schemas.project import (
    ProjectCreate,
    ProjectUpdate,
    ProjectResponse,
    ProjectListResponse,
    ProjectActivityCreate,
    ProjectActivityResponse,
    ProjectActivityListResponse,
)
from crm.services.project_activity_service import ProjectActivityService
from crm.services.task_service import get_project_or_404


router = APIRouter(prefix="/projects", tags=["projects"])


async def _check_client(db: AsyncSession, client_id: Optional[int], org_id: int) -> None:
    if client_id is not None and not await ClientDAO(db).get_by_id_and_org(client_id, org_id):
        raise ResourceNotFoundError(
            message=f"Client with id {client_id} not found",
            resource_type="Client",
            resource_id=client_id,
        )


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create project",
    description="Create a new project (ADMIN only)",
)
async def create_project(
    data: ProjectCreate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    """
    Raises:
        ResourceNotFoundError (404): If the client is not in the organization
    """
    await _check_client(db, data.client_id, current_user.org_id)
    project = await ProjectDAO(db).create(org_id=current_user.org_id, **data.model_dump())
    await ProjectActivityService(db).record_created(project, current_user)
    return ProjectResponse.model_validate(project)


@router.get("", response_model=ProjectListResponse, summary="List projects")
async def list_projects(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    status_filter: Optional[ProjectStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProjectListResponse:
    projects, total = await ProjectDAO(db).list_projects(
        current_user.org_id, status=status_filter, client_id=client_id, skip=skip, limit=limit
    )
    return ProjectListResponse(
        items=[ProjectResponse.model_validate(p) for p in projects],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{project_id}", response_model=ProjectResponse, summary="Get project")
async def get_project(
    project_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    project = await get_project_or_404(db, project_id, current_user.org_id)
    return ProjectResponse.model_validate(project)


@router.put(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Update project",
    description="Partially update a project (ADMIN only)",
)
async def update_project(
    project_id: int,
    data: ProjectUpdate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> ProjectResponse:
    project = await get_project_or_404(db, project_id, current_user.org_id)
    changes = data.model_dump(exclude_unset=True)
    for required in ("name", "status"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    if "client_id" in changes:
        await _check_client(db, changes["client_id"], current_user.org_id)

    start = changes.get("start_date", project.start_date)
    due = changes.get("due_date", project.due_date)
    if start and due and due < start:
        raise ValidationError(message="due_date must not be before start_date", field="due_date")

    before = {field: getattr(project, field) for field in changes}
    project = await ProjectDAO(db).update_instance(project, **changes)
    await ProjectActivityService(db).record_changes(project, before, current_user)
    return ProjectResponse.model_validate(project)


@router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete project",
    description="Delete a project with its budget and tasks (ADMIN only)",
)
async def delete_project(
    project_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    project = await get_project_or_404(db, project_id, current_user.org_id)
    await ProjectDAO(db).delete_instance(project)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Activity timeline
# ============================================================================


@router.get(
    "/{project_id}/activities",
    response_model=ProjectActivityListResponse,
    summary="List project activities",
    description="Project timeline, newest first, optionally filtered by type",
)
async def list_project_activities(
    project_id: int,
    activity_type: Optional[str] = Query(None, alias="type", max_length=50),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProjectActivityListResponse:
    activities, total = await ProjectActivityService(db).list_activities(
        project_id, current_user.org_id, activity_type=activity_type, skip=skip, limit=limit
    )
    return ProjectActivityListResponse(
        items=[ProjectActivityResponse.model_validate(a) for a in activities],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post(
    "/{project_id}/activities",
    response_model=ProjectActivityResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log project activity",
    description="Add an entry (call, meeting, note, ...) to the project timeline",
)
async def create_project_activity(
    project_id: int,
    data: ProjectActivityCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProjectActivityResponse:
    activity = await ProjectActivityService(db).add_activity(
        project_id, current_user.org_id, data, current_user
    )
    return ProjectActivityResponse.model_validate(activity)
