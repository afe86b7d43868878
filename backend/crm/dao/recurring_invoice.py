"""
Recurring invoice template DAO.

WHAT: Database operations for RecurringInvoiceTemplate.

WHY: The scheduler needs "templates due on or before today" with a row lock
so that two workers running the hourly job at once cannot both generate the
same occurrence; the API needs ordinary filtered listing.
"""

from datetime import date
from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.recurring_invoice import RecurringInvoiceTemplate


class RecurringInvoiceTemplateDAO(BaseDAO[RecurringInvoiceTemplate]):
    """Data Access Object for recurring invoice templates."""

    def __init__(self, session: AsyncSession):
        super().__init__(RecurringInvoiceTemplate, session)

    async def list_templates(
        self,
        org_id: int,
        client_id: Optional[int] = None,
        project_id: Optional[int] = None,
        active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[RecurringInvoiceTemplate], int]:
        """
        List templates for an organization.

        Returns:
            (templates ordered by next generation date, total matching count)
        """
        conditions = [RecurringInvoiceTemplate.org_id == org_id]
        if client_id is not None:
            conditions.append(RecurringInvoiceTemplate.client_id == client_id)
        if project_id is not None:
            conditions.append(RecurringInvoiceTemplate.project_id == project_id)
        if active is not None:
            conditions.append(RecurringInvoiceTemplate.active.is_(active))

        total = await self.session.scalar(
            select(func.count()).select_from(RecurringInvoiceTemplate).where(*conditions)
        )
        result = await self.session.execute(
            select(RecurringInvoiceTemplate)
            .where(*conditions)
            .order_by(
                RecurringInvoiceTemplate.next_generation_date,
                RecurringInvoiceTemplate.id,
            )
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def get_due(
        self,
        today: date,
        org_id: Optional[int] = None,
    ) -> List[RecurringInvoiceTemplate]:
        """
        Active templates whose next generation date has been reached.

        WHY: skip_locked lets a second worker move on to other templates
        instead of blocking behind rows the first worker is processing.

        Args:
            today: Reference date
            org_id: Restrict to one organization (API trigger); None sweeps all

        Returns:
            Locked templates, oldest occurrence first
        """
        query = select(RecurringInvoiceTemplate).where(
            RecurringInvoiceTemplate.active.is_(True),
            RecurringInvoiceTemplate.next_generation_date <= today,
        )
        if org_id is not None:
            query = query.where(RecurringInvoiceTemplate.org_id == org_id)

        result = await self.session.execute(
            query.order_by(RecurringInvoiceTemplate.next_generation_date)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
