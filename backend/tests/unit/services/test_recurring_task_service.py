"""
Task and Recurring Task Service Tests.

WHAT: Project task CRUD and generation of tasks from recurring templates.

WHY: Tasks are reached only through their project, and recurring generation
must create one task per occurrence no matter how often it is triggered.
"""

import pytest
import pytest_asyncio
from datetime import date

from crm.core.exceptions import ResourceNotFoundError
from crm.models.task import TaskFrequency, TaskStatus, TaskPriority
from crm.schemas.task import (
    RecurringTaskCreate,
    RecurringTaskUpdate,
    TaskCreate,
    TaskUpdate,
)
from crm.services.recurring_task_service import RecurringTaskService
from crm.services.task_service import TaskService
from tests.factories import ProjectFactory


@pytest_asyncio.fixture
async def project(db_session, test_org):
    return await ProjectFactory.create(db_session, test_org)


@pytest.mark.asyncio
class TestTaskService:
    async def test_completion_stamps_completed_at(self, db_session, test_org, project):
        service = TaskService(db_session)
        task = await service.create_task(
            project.id, test_org.id, TaskCreate(title="Wireframes", due_date=date(2024, 5, 1))
        )
        assert task.completed_at is None

        done = await service.update_task(
            project.id, task.id, test_org.id, TaskUpdate(status=TaskStatus.COMPLETED)
        )
        assert done.completed_at is not None

        reopened = await service.update_task(
            project.id, task.id, test_org.id, TaskUpdate(status=TaskStatus.IN_PROGRESS)
        )
        assert reopened.completed_at is None

    async def test_summary_counts(self, db_session, test_org, project):
        service = TaskService(db_session)
        await service.create_task(
            project.id, test_org.id,
            TaskCreate(title="Late", due_date=date(2024, 1, 1), priority=TaskPriority.HIGH),
        )
        await service.create_task(
            project.id, test_org.id,
            TaskCreate(title="Done", due_date=date(2024, 1, 1), status=TaskStatus.COMPLETED),
        )
        await service.create_task(
            project.id, test_org.id, TaskCreate(title="Future", due_date=date(2024, 12, 1))
        )

        tasks, total, summary = await service.list_tasks(
            project.id, test_org.id, today=date(2024, 6, 1)
        )

        assert total == 3
        assert tasks[0].title == "Late"
        assert summary["total_tasks"] == 3
        assert summary["completed_tasks"] == 1
        assert summary["pending_tasks"] == 2
        assert summary["overdue_tasks"] == 1

    async def test_project_of_other_org_not_found(self, db_session, other_org, project):
        with pytest.raises(ResourceNotFoundError):
            await TaskService(db_session).list_tasks(project.id, other_org.id)


@pytest.mark.asyncio
class TestRecurringTaskGeneration:
    async def _create(self, db_session, org, project, **overrides):
        values = {
            "title": "Weekly report",
            "frequency": TaskFrequency.WEEKLY,
            "days_of_week": [0, 3],
            "start_date": date(2024, 1, 1),
        }
        values.update(overrides)
        return await RecurringTaskService(db_session).create_recurring_task(
            project.id, org.id, RecurringTaskCreate(**values)
        )

    async def test_first_due_is_first_listed_weekday(self, db_session, test_org, project):
        # 2024-01-02 is a Tuesday; Thursday is the first listed day after it
        template = await self._create(db_session, test_org, project, start_date=date(2024, 1, 2))
        assert template.next_due == date(2024, 1, 4)

    async def test_generates_each_occurrence_once(self, db_session, test_org, project):
        """
        Test weekly generation on Mondays and Thursdays.

        WHY: A second run on the same day must not duplicate any task.
        """
        template = await self._create(db_session, test_org, project)
        service = RecurringTaskService(db_session)

        tasks = await service.generate_due_tasks(project.id, test_org.id, today=date(2024, 1, 11))
        again = await service.generate_due_tasks(project.id, test_org.id, today=date(2024, 1, 11))

        assert [t.due_date for t in tasks] == [
            date(2024, 1, 1),
            date(2024, 1, 4),
            date(2024, 1, 8),
            date(2024, 1, 11),
        ]
        assert all(t.recurring_task_id == template.id for t in tasks)
        assert all(t.status == TaskStatus.PENDING for t in tasks)
        assert again == []

        refreshed = await service.get_recurring_task(project.id, template.id, test_org.id)
        assert refreshed.next_due == date(2024, 1, 15)
        assert refreshed.last_generated is not None

    async def test_end_date_stops_generation(self, db_session, test_org, project):
        await self._create(db_session, test_org, project, end_date=date(2024, 1, 5))

        tasks = await RecurringTaskService(db_session).generate_due_tasks(
            project.id, test_org.id, today=date(2024, 2, 1)
        )

        assert [t.due_date for t in tasks] == [date(2024, 1, 1), date(2024, 1, 4)]

    async def test_catch_up_limit(self, db_session, test_org, project):
        await self._create(
            db_session, test_org, project,
            frequency=TaskFrequency.DAILY, days_of_week=None,
        )

        tasks = await RecurringTaskService(db_session).generate_due_tasks(
            project.id, test_org.id, today=date(2024, 3, 1), max_catch_up=5
        )

        assert len(tasks) == 5

    async def test_schedule_change_never_regenerates(self, db_session, test_org, project):
        """
        Test that moving the schedule keeps next_due after generated work.

        WHY: Already generated occurrences must not be created again when a
        template is edited.
        """
        template = await self._create(
            db_session, test_org, project,
            frequency=TaskFrequency.DAILY, days_of_week=None,
        )
        service = RecurringTaskService(db_session)
        await service.generate_due_tasks(project.id, test_org.id, today=date(2024, 1, 3))

        updated = await service.update_recurring_task(
            project.id, template.id, test_org.id, RecurringTaskUpdate(interval=2)
        )

        assert updated.next_due == date(2024, 1, 5)

    async def test_generation_status(self, db_session, test_org, project):
        await self._create(db_session, test_org, project)
        service = RecurringTaskService(db_session)

        before = await service.generation_status(project.id, test_org.id, today=date(2024, 1, 1))
        assert before["ready_to_generate"] == 1
        assert before["recent_generated"] == []

        await service.generate_due_tasks(project.id, test_org.id, today=date(2024, 1, 1))
        after = await service.generation_status(project.id, test_org.id, today=date(2024, 1, 1))
        assert after["ready_to_generate"] == 0
        assert len(after["recent_generated"]) == 1
