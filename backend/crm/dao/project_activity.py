"""
Project activity DAO.

WHAT: Database operations for the project timeline.

HOW: Entries are only ever inserted and listed; the newest entry comes
first, with the id as tie-breaker for entries written in the same instant.
"""

from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.project_activity import ProjectActivity


class ProjectActivityDAO(BaseDAO[ProjectActivity]):
    def __init__(self, session: AsyncSession):
        super().__init__(ProjectActivity, session)

    async def list_for_project(
        self,
        project_id: int,
        org_id: int,
        activity_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[ProjectActivity], int]:
        """
        Timeline of a project, newest first.

        Returns:
            (page of activities, total matching count)
        """
        conditions = [
            ProjectActivity.project_id == project_id,
            ProjectActivity.org_id == org_id,
        ]
        if activity_type:
            conditions.append(ProjectActivity.activity_type == activity_type)

        total = await self.session.scalar(
            select(func.count()).select_from(ProjectActivity).where(*conditions)
        )
        result = await self.session.execute(
            select(ProjectActivity)
            .where(*conditions)
            .order_by(ProjectActivity.created_at.desc(), ProjectActivity.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)
