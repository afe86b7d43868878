"""
Project Data Access Object (DAO).

WHAT: Database operations for the Project model.

WHY: Budgets, tasks and recurring tasks are nested under a project; every
nested route starts by resolving the project within the caller's
organization through this DAO.
"""

from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.project import Project, ProjectStatus


class ProjectDAO(BaseDAO[Project]):
    """Data Access Object for Project model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Project, session)

    async def list_projects(
        self,
        org_id: int,
        status: Optional[ProjectStatus] = None,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Project], int]:
        """
        List projects for an organization.

        Returns:
            (projects newest first, total matching count)
        """
        conditions = [Project.org_id == org_id]
        if status is not None:
            conditions.append(Project.status == status)
        if client_id is not None:
            conditions.append(Project.client_id == client_id)

        total = await self.session.scalar(
            select(func.count()).select_from(Project).where(*conditions)
        )
        result = await self.session.execute(
            select(Project)
            .where(*conditions)
            .order_by(Project.created_at.desc(), Project.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)
