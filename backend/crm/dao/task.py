"""
Task and recurring task DAOs.

WHAT: Database operations for project tasks and recurring task templates.

HOW: Listing orders tasks the way people triage them: high priority first,
then earliest due date, then newest.
"""

from datetime import date
from typing import Dict, List, Optional, Tuple
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.task import Task, TaskStatus, TaskPriority, RecurringTask


_PRIORITY_ORDER = case(
    (Task.priority == TaskPriority.HIGH, 1),
    (Task.priority == TaskPriority.MEDIUM, 2),
    else_=3,
)


class TaskDAO(BaseDAO[Task]):
    def __init__(self, session: AsyncSession):
        super().__init__(Task, session)

    async def list_for_project(
        self,
        project_id: int,
        org_id: int,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        assigned_to: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Task], int]:
        conditions = [Task.project_id == project_id, Task.org_id == org_id]
        if status is not None:
            conditions.append(Task.status == status)
        if priority is not None:
            conditions.append(Task.priority == priority)
        if assigned_to:
            conditions.append(Task.assigned_to == assigned_to)

        total = await self.session.scalar(select(func.count()).select_from(Task).where(*conditions))
        result = await self.session.execute(
            select(Task)
            .where(*conditions)
            .order_by(_PRIORITY_ORDER, Task.due_date.asc(), Task.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def get_in_project(self, task_id: int, project_id: int, org_id: int) -> Optional[Task]:
        result = await self.session.execute(
            select(Task).where(
                Task.id == task_id,
                Task.project_id == project_id,
                Task.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def summary(self, project_id: int, org_id: int, today: date) -> Dict[str, int]:
        """Task counts per status plus overdue count."""
        result = await self.session.execute(
            select(Task.status, func.count(Task.id))
            .where(Task.project_id == project_id, Task.org_id == org_id)
            .group_by(Task.status)
        )
        counts = {f"{s.value}_tasks": 0 for s in TaskStatus}
        total = 0
        for status, count in result.all():
            counts[f"{status.value}_tasks"] = count
            total += count

        overdue = await self.session.scalar(
            select(func.count(Task.id)).where(
                Task.project_id == project_id,
                Task.org_id == org_id,
                Task.due_date < today,
                Task.status.not_in([TaskStatus.COMPLETED, TaskStatus.CANCELLED]),
            )
        )
        counts["total_tasks"] = total
        counts["overdue_tasks"] = int(overdue or 0)
        return counts

    async def exists_for_occurrence(self, recurring_task_id: int, due_date: date) -> bool:
        count = await self.session.scalar(
            select(func.count(Task.id)).where(
                Task.recurring_task_id == recurring_task_id,
                Task.due_date == due_date,
            )
        )
        return bool(count)

    async def recent_generated(self, project_id: int, org_id: int, limit: int = 10) -> List[Task]:
        result = await self.session.execute(
            select(Task)
            .where(
                Task.project_id == project_id,
                Task.org_id == org_id,
                Task.recurring_task_id.is_not(None),
            )
            .order_by(Task.created_at.desc(), Task.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class RecurringTaskDAO(BaseDAO[RecurringTask]):
    def __init__(self, session: AsyncSession):
        super().__init__(RecurringTask, session)

    async def list_for_project(
        self,
        project_id: int,
        org_id: int,
        active_only: bool = False,
    ) -> List[RecurringTask]:
        query = select(RecurringTask).where(
            RecurringTask.project_id == project_id,
            RecurringTask.org_id == org_id,
        )
        if active_only:
            query = query.where(RecurringTask.is_active.is_(True))
        result = await self.session.execute(query.order_by(RecurringTask.title))
        return list(result.scalars().all())

    async def get_in_project(
        self,
        recurring_task_id: int,
        project_id: int,
        org_id: int,
    ) -> Optional[RecurringTask]:
        result = await self.session.execute(
            select(RecurringTask).where(
                RecurringTask.id == recurring_task_id,
                RecurringTask.project_id == project_id,
                RecurringTask.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_due(
        self,
        today: date,
        project_id: Optional[int] = None,
        org_id: Optional[int] = None,
    ) -> List[RecurringTask]:
        """
        Active templates due on or before today whose next occurrence is not past
        their end date.

        Rows are locked (skip_locked) for the duration of the generation run.
        """
        query = select(RecurringTask).where(
            RecurringTask.is_active.is_(True),
            RecurringTask.next_due <= today,
            (RecurringTask.end_date.is_(None)) | (RecurringTask.end_date >= RecurringTask.next_due),
        )
        if project_id is not None:
            query = query.where(RecurringTask.project_id == project_id)
        if org_id is not None:
            query = query.where(RecurringTask.org_id == org_id)
        result = await self.session.execute(
            query.order_by(RecurringTask.next_due)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_due(self, project_id: int, org_id: int, today: date) -> int:
        return int(
            await self.session.scalar(
                select(func.count(RecurringTask.id)).where(
                    RecurringTask.project_id == project_id,
                    RecurringTask.org_id == org_id,
                    RecurringTask.is_active.is_(True),
                    RecurringTask.next_due <= today,
                    (RecurringTask.end_date.is_(None)) | (RecurringTask.end_date >= RecurringTask.next_due),
                )
            )
            or 0
        )
