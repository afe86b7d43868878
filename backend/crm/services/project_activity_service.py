"""
Project Activity Service.

WHAT: Writes and reads the project timeline.

WHY: The project endpoints log creation, edits and status changes here, and
members can post their own entries (calls, meetings, notes). Keeping the
wording and the change detection in one place means every entry reads the
same no matter which endpoint wrote it.

HOW: Runs in the caller's transaction, so a timeline entry is only kept
when the change it describes is committed.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.project_activity import ProjectActivityDAO
from crm.models.project import Project
from crm.models.project_activity import ProjectActivity, ProjectActivityType
from crm.models.user import User
from crm.schemas.project import ProjectActivityCreate
from crm.services.task_service import get_project_or_404


logger = logging.getLogger(__name__)


def _label(value: Any) -> str:
    return getattr(value, "value", value) if value is not None else "none"


class ProjectActivityService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.activity_dao = ProjectActivityDAO(session)

    async def record(
        self,
        project: Project,
        activity_type: str,
        description: str,
        user: Optional[User] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ProjectActivity:
        activity = await self.activity_dao.create(
            org_id=project.org_id,
            project_id=project.id,
            activity_type=activity_type,
            description=description,
            user_id=user.id if user else None,
            user_name=user.name if user else None,
            details=details,
        )
        logger.debug("Project %s activity: %s", project.id, activity_type)
        return activity

    async def record_created(self, project: Project, user: Optional[User] = None) -> ProjectActivity:
        return await self.record(
            project,
            ProjectActivityType.CREATED.value,
            f'Project "{project.name}" was created',
            user,
        )

    async def record_changes(
        self,
        project: Project,
        before: Dict[str, Any],
        user: Optional[User] = None,
    ) -> List[ProjectActivity]:
        """
        Log what an update changed.

        WHAT: A status change gets its own entry with the old and new status;
        any other changed fields are listed in one "updated" entry. Fields
        sent with their current value are not changes.

        Args:
            project: The project after the update
            before: Field values before the update, for the fields that were sent

        Returns:
            The entries written (possibly none)
        """
        changed = sorted(
            field for field, old in before.items() if getattr(project, field) != old
        )
        entries = []
        if "status" in changed:
            old_status = _label(before["status"])
            new_status = _label(project.status)
            entries.append(
                await self.record(
                    project,
                    ProjectActivityType.STATUS_CHANGED.value,
                    f'Project status changed from "{old_status}" to "{new_status}"',
                    user,
                    details={"from": old_status, "to": new_status},
                )
            )
            changed.remove("status")
        if changed:
            entries.append(
                await self.record(
                    project,
                    ProjectActivityType.UPDATED.value,
                    f'Project "{project.name}" was updated',
                    user,
                    details={"fields": changed},
                )
            )
        return entries

    async def add_activity(
        self,
        project_id: int,
        org_id: int,
        data: ProjectActivityCreate,
        user: User,
    ) -> ProjectActivity:
        project = await get_project_or_404(self.session, project_id, org_id)
        return await self.record(project, data.activity_type, data.description, user, data.details)

    async def list_activities(
        self,
        project_id: int,
        org_id: int,
        activity_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[ProjectActivity], int]:
        await get_project_or_404(self.session, project_id, org_id)
        return await self.activity_dao.list_for_project(
            project_id, org_id, activity_type, skip, limit
        )
