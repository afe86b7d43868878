"""
Project task API endpoints.

WHAT: Tasks of a project, recurring task templates and the endpoints that
turn due templates into tasks.

HOW: Nested under /projects/{project_id}. Generation is also run hourly by
the scheduler; the generate endpoints let a user check and trigger it for a
single project.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user
from crm.db.session import get_db
from crm.models.task import TaskStatus, TaskPriority
from crm.models.user import User
from crm.schemas.task import (
    TaskCreate,
    TaskUpdate,
    TaskResponse,
    TaskListResponse,
    RecurringTaskCreate,
    RecurringTaskUpdate,
    RecurringTaskResponse,
    RecurringTaskGenerateResponse,
    RecurringTaskStatusResponse,
)
from crm.services.task_service import TaskService
from crm.services.recurring_task_service import RecurringTaskService


router = APIRouter(prefix="/projects/{project_id}", tags=["tasks"])


# ============================================================================
# Tasks
# ============================================================================


@router.get(
    "/tasks",
    response_model=TaskListResponse,
    summary="List tasks",
    description="Tasks ordered by due date, with status counts for the whole project",
)
async def list_tasks(
    project_id: int,
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    assigned_to: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TaskListResponse:
    tasks, total, summary = await TaskService(db).list_tasks(
        project_id,
        current_user.org_id,
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        skip=skip,
        limit=limit,
    )
    return TaskListResponse(
        items=[TaskResponse.model_validate(t) for t in tasks],
        total=total,
        skip=skip,
        limit=limit,
        summary=summary,
    )


@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create task",
)
async def create_task(
    project_id: int,
    data: TaskCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TaskResponse:
    task = await TaskService(db).create_task(project_id, current_user.org_id, data)
    return TaskResponse.model_validate(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse, summary="Get task")
async def get_task(
    project_id: int,
    task_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TaskResponse:
    task = await TaskService(db).get_task(project_id, task_id, current_user.org_id)
    return TaskResponse.model_validate(task)


@router.put(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Update task",
    description="Partially update a task; completing it stamps completed_at",
)
async def update_task(
    project_id: int,
    task_id: int,
    data: TaskUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TaskResponse:
    task = await TaskService(db).update_task(project_id, task_id, current_user.org_id, data)
    return TaskResponse.model_validate(task)


@router.delete(
    "/tasks/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete task",
)
async def delete_task(
    project_id: int,
    task_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await TaskService(db).delete_task(project_id, task_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Recurring tasks
# ============================================================================


@router.get(
    "/recurring-tasks",
    response_model=List[RecurringTaskResponse],
    summary="List recurring tasks",
)
async def list_recurring_tasks(
    project_id: int,
    active_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[RecurringTaskResponse]:
    templates = await RecurringTaskService(db).list_recurring_tasks(
        project_id, current_user.org_id, active_only=active_only
    )
    return [RecurringTaskResponse.model_validate(t) for t in templates]


@router.post(
    "/recurring-tasks",
    response_model=RecurringTaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create recurring task",
    description="Create a template; next_due is its first occurrence on or after start_date",
)
async def create_recurring_task(
    project_id: int,
    data: RecurringTaskCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringTaskResponse:
    template = await RecurringTaskService(db).create_recurring_task(
        project_id, current_user.org_id, data
    )
    return RecurringTaskResponse.model_validate(template)


@router.get(
    "/recurring-tasks/generate",
    response_model=RecurringTaskStatusResponse,
    summary="Recurring generation status",
    description="Number of templates due now and the most recently generated tasks",
)
async def get_generation_status(
    project_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringTaskStatusResponse:
    result = await RecurringTaskService(db).generation_status(project_id, current_user.org_id)
    return RecurringTaskStatusResponse.model_validate(result, from_attributes=True)


@router.post(
    "/recurring-tasks/generate",
    response_model=RecurringTaskGenerateResponse,
    summary="Generate recurring tasks",
    description="Create tasks for every due occurrence of the project's templates",
)
async def generate_recurring_tasks(
    project_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringTaskGenerateResponse:
    tasks = await RecurringTaskService(db).generate_due_tasks(project_id, current_user.org_id)
    return RecurringTaskGenerateResponse(
        generated=len(tasks),
        tasks=[TaskResponse.model_validate(t) for t in tasks],
    )


@router.get(
    "/recurring-tasks/{recurring_task_id}",
    response_model=RecurringTaskResponse,
    summary="Get recurring task",
)
async def get_recurring_task(
    project_id: int,
    recurring_task_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringTaskResponse:
    template = await RecurringTaskService(db).get_recurring_task(
        project_id, recurring_task_id, current_user.org_id
    )
    return RecurringTaskResponse.model_validate(template)


@router.put(
    "/recurring-tasks/{recurring_task_id}",
    response_model=RecurringTaskResponse,
    summary="Update recurring task",
    description="Partially update a template; schedule changes recompute next_due",
)
async def update_recurring_task(
    project_id: int,
    recurring_task_id: int,
    data: RecurringTaskUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringTaskResponse:
    template = await RecurringTaskService(db).update_recurring_task(
        project_id, recurring_task_id, current_user.org_id, data
    )
    return RecurringTaskResponse.model_validate(template)


@router.delete(
    "/recurring-tasks/{recurring_task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete recurring task",
    description="Delete a template; tasks it already generated are kept",
)
async def delete_recurring_task(
    project_id: int,
    recurring_task_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await RecurringTaskService(db).delete_recurring_task(
        project_id, recurring_task_id, current_user.org_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
