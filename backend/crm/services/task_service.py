"""
Task Service.

WHAT: CRUD for project tasks.

WHY: Tasks are always reached through their project; the service checks the
project belongs to the caller's organization before touching a task, so a
task id from another tenant reads as missing.
"""

import logging
from datetime import datetime, date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.exceptions import ResourceNotFoundError
from crm.dao.project import ProjectDAO
from crm.dao.task import TaskDAO
from crm.models.project import Project
from crm.models.task import Task, TaskStatus, TaskPriority
from crm.schemas.task import TaskCreate, TaskUpdate


logger = logging.getLogger(__name__)


async def get_project_or_404(session: AsyncSession, project_id: int, org_id: int) -> Project:
    """Org-scoped project lookup shared by the project sub-resource services."""
    project = await ProjectDAO(session).get_by_id_and_org(project_id, org_id)
    if not project:
        raise ResourceNotFoundError(
            message=f"Project with id {project_id} not found",
            resource_type="Project",
            resource_id=project_id,
        )
    return project


class TaskService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.task_dao = TaskDAO(session)

    async def list_tasks(
        self,
        project_id: int,
        org_id: int,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        assigned_to: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
        today: Optional[date] = None,
    ) -> Tuple[List[Task], int, Dict[str, int]]:
        """
        Tasks of a project plus status counts for the whole project.

        Returns:
            (page of tasks, total matching count, summary counts)
        """
        await get_project_or_404(self.session, project_id, org_id)
        tasks, total = await self.task_dao.list_for_project(
            project_id, org_id, status, priority, assigned_to, skip, limit
        )
        summary = await self.task_dao.summary(project_id, org_id, today or date.today())
        return tasks, total, summary

    async def get_task(self, project_id: int, task_id: int, org_id: int) -> Task:
        await get_project_or_404(self.session, project_id, org_id)
        task = await self.task_dao.get_in_project(task_id, project_id, org_id)
        if not task:
            raise ResourceNotFoundError(
                message=f"Task with id {task_id} not found",
                resource_type="Task",
                resource_id=task_id,
            )
        return task

    async def create_task(self, project_id: int, org_id: int, data: TaskCreate) -> Task:
        await get_project_or_404(self.session, project_id, org_id)
        task = await self.task_dao.create(
            org_id=org_id,
            project_id=project_id,
            completed_at=datetime.utcnow() if data.status == TaskStatus.COMPLETED else None,
            **data.model_dump(),
        )
        logger.info("Created task %s in project %s", task.id, project_id)
        return task

    async def update_task(
        self,
        project_id: int,
        task_id: int,
        org_id: int,
        data: TaskUpdate,
    ) -> Task:
        """
        Apply a partial update.

        WHAT: Moving to completed stamps completed_at; moving to any other
        status clears it.
        """
        task = await self.get_task(project_id, task_id, org_id)
        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)
        for required in ("title", "status", "priority", "due_date", "tags"):
            if required in changes and changes[required] is None:
                changes.pop(required)

        new_status = changes.get("status")
        if new_status is not None and new_status != task.status:
            changes["completed_at"] = (
                datetime.utcnow() if new_status == TaskStatus.COMPLETED else None
            )

        return await self.task_dao.update_instance(task, **changes)

    async def delete_task(self, project_id: int, task_id: int, org_id: int) -> None:
        task = await self.get_task(project_id, task_id, org_id)
        await self.task_dao.delete_instance(task)
