"""
Recurring Task Service.

WHAT: CRUD for recurring task templates and generation of their due
occurrences as ordinary project tasks.

WHY: Generation runs both on demand (per project, through the API) and hourly
from the scheduler (across every project). Either way an occurrence must turn
into exactly one task, and a template that was not run for a while must catch
up without producing an unbounded burst.

HOW: Due templates are read with SKIP LOCKED row locks. Each occurrence is
checked against existing tasks and inserted inside a savepoint guarded by the
(recurring_task_id, due_date) unique constraint.
"""

import logging
from datetime import datetime, date, timedelta
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.config import settings
from crm.core.exceptions import ResourceNotFoundError, ValidationError
from crm.dao.task import TaskDAO, RecurringTaskDAO
from crm.models.task import Task, TaskFrequency, TaskStatus, RecurringTask
from crm.schemas.task import RecurringTaskCreate, RecurringTaskUpdate
from crm.services.recurrence import advance_date, is_past_end
from crm.services.task_service import get_project_or_404


logger = logging.getLogger(__name__)


SCHEDULE_FIELDS = {"frequency", "interval", "days_of_week", "day_of_month", "start_date"}


def _anchor_day(template: RecurringTask) -> Optional[int]:
    if template.frequency == TaskFrequency.MONTHLY:
        return template.day_of_month or template.start_date.day
    if template.frequency == TaskFrequency.YEARLY:
        return template.start_date.day
    return None


def first_occurrence(template: RecurringTask) -> date:
    """
    The first occurrence on or after the template's start date.

    A weekly template with days_of_week starts on the first listed weekday;
    a monthly template with day_of_month starts on that day (clamped to the
    month's length) of the start month, or of the next month when that day
    has already passed.
    """
    start = template.start_date
    if template.frequency == TaskFrequency.WEEKLY and template.days_of_week:
        for offset in range(7):
            candidate = start + timedelta(days=offset)
            if candidate.weekday() in template.days_of_week:
                return candidate
    if template.frequency == TaskFrequency.MONTHLY and template.day_of_month:
        candidate = start + relativedelta(day=template.day_of_month)
        if candidate < start:
            candidate = start + relativedelta(months=1, day=template.day_of_month)
        return candidate
    return start


def next_occurrence(template: RecurringTask, current: date) -> date:
    return advance_date(
        current,
        template.frequency,
        interval=template.interval or 1,
        day_of_month=_anchor_day(template),
        days_of_week=template.days_of_week if template.frequency == TaskFrequency.WEEKLY else None,
    )


class RecurringTaskService:
    """Recurring task templates and task generation."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.recurring_dao = RecurringTaskDAO(session)
        self.task_dao = TaskDAO(session)

    async def list_recurring_tasks(
        self,
        project_id: int,
        org_id: int,
        active_only: bool = False,
    ) -> List[RecurringTask]:
        await get_project_or_404(self.session, project_id, org_id)
        return await self.recurring_dao.list_for_project(project_id, org_id, active_only)

    async def get_recurring_task(
        self,
        project_id: int,
        recurring_task_id: int,
        org_id: int,
    ) -> RecurringTask:
        await get_project_or_404(self.session, project_id, org_id)
        template = await self.recurring_dao.get_in_project(recurring_task_id, project_id, org_id)
        if not template:
            raise ResourceNotFoundError(
                message=f"Recurring task with id {recurring_task_id} not found",
                resource_type="RecurringTask",
                resource_id=recurring_task_id,
            )
        return template

    async def create_recurring_task(
        self,
        project_id: int,
        org_id: int,
        data: RecurringTaskCreate,
    ) -> RecurringTask:
        await get_project_or_404(self.session, project_id, org_id)
        template = RecurringTask(org_id=org_id, project_id=project_id, **data.model_dump())
        template.next_due = first_occurrence(template)
        self.session.add(template)
        await self.session.flush()
        await self.session.refresh(template)
        logger.info(
            "Created recurring task %s (%s, first due %s)",
            template.id,
            template.frequency.value,
            template.next_due,
        )
        return template

    async def update_recurring_task(
        self,
        project_id: int,
        recurring_task_id: int,
        org_id: int,
        data: RecurringTaskUpdate,
    ) -> RecurringTask:
        """
        Apply a partial update.

        WHAT: A schedule change recomputes next_due. Occurrences that were
        already generated are never regenerated, so next_due is never moved
        back to or before the last generated task's due date.
        """
        template = await self.get_recurring_task(project_id, recurring_task_id, org_id)
        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)
        for required in ("title", "frequency", "interval", "start_date", "is_active",
                         "priority", "tags"):
            if required in changes and changes[required] is None:
                changes.pop(required)

        for field, value in changes.items():
            setattr(template, field, value)

        if template.end_date and template.end_date < template.start_date:
            raise ValidationError(message="end_date must not be before start_date", field="end_date")

        if SCHEDULE_FIELDS.intersection(changes):
            next_due = first_occurrence(template)
            if template.last_generated is not None:
                latest = await self._latest_generated_due(template)
                while latest is not None and next_due <= latest:
                    next_due = next_occurrence(template, next_due)
            template.next_due = next_due

        await self.session.flush()
        await self.session.refresh(template)
        return template

    async def _latest_generated_due(self, template: RecurringTask) -> Optional[date]:
        return await self.session.scalar(
            select(func.max(Task.due_date)).where(Task.recurring_task_id == template.id)
        )

    async def delete_recurring_task(
        self,
        project_id: int,
        recurring_task_id: int,
        org_id: int,
    ) -> None:
        """Delete a template; tasks it generated are kept."""
        template = await self.get_recurring_task(project_id, recurring_task_id, org_id)
        await self.recurring_dao.delete_instance(template)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _create_occurrence(self, template: RecurringTask, due: date) -> Optional[Task]:
        if await self.task_dao.exists_for_occurrence(template.id, due):
            return None
        try:
            async with self.session.begin_nested():
                task = Task(
                    org_id=template.org_id,
                    project_id=template.project_id,
                    recurring_task_id=template.id,
                    title=template.title,
                    description=template.description,
                    status=TaskStatus.PENDING,
                    priority=template.priority,
                    due_date=due,
                    assigned_to=template.assigned_to,
                    estimated_hours=template.estimated_hours,
                    tags=list(template.tags or []),
                )
                self.session.add(task)
        except IntegrityError:
            logger.warning(
                "Recurring task %s occurrence %s was generated concurrently; skipping",
                template.id,
                due,
            )
            return None
        return task

    async def generate_due_tasks(
        self,
        project_id: Optional[int],
        org_id: Optional[int],
        today: Optional[date] = None,
        max_catch_up: Optional[int] = None,
    ) -> List[Task]:
        """
        Create a task for every due occurrence.

        WHAT: For each active template with next_due <= today, generates
        occurrences until next_due is in the future, passes end_date, or the
        per-template catch-up limit is reached.

        Args:
            project_id: Restrict to one project (None from the scheduler)
            org_id: Restrict to one organization (None from the scheduler)
            today: Reference date
            max_catch_up: Per-template occurrence limit for one run

        Returns:
            Newly created tasks
        """
        if project_id is not None and org_id is not None:
            await get_project_or_404(self.session, project_id, org_id)
        today = today or date.today()
        limit = max_catch_up if max_catch_up is not None else settings.RECURRING_MAX_CATCH_UP

        created: List[Task] = []
        for template in await self.recurring_dao.get_due(today, project_id, org_id):
            steps = 0
            due = template.next_due
            while due <= today and steps < limit and not is_past_end(due, template.end_date):
                task = await self._create_occurrence(template, due)
                if task is not None:
                    created.append(task)
                due = next_occurrence(template, due)
                steps += 1
            template.next_due = due
            template.last_generated = datetime.utcnow()

        await self.session.flush()
        for task in created:
            await self.session.refresh(task)
        if created:
            logger.info("Generated %d recurring task(s)", len(created))
        return created

    async def generation_status(
        self,
        project_id: int,
        org_id: int,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """How many templates are due, and the most recently generated tasks."""
        await get_project_or_404(self.session, project_id, org_id)
        return {
            "ready_to_generate": await self.recurring_dao.count_due(
                project_id, org_id, today or date.today()
            ),
            "recent_generated": await self.task_dao.recent_generated(project_id, org_id),
        }
