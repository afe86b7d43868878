"""
Client Data Access Object (DAO).

WHAT: Database operations for the Client model.

WHY: Invoices, recurring templates and transactions all reference a client;
services use this DAO to confirm the referenced client belongs to the
caller's organization before linking it.
"""

from typing import Dict, List, Optional, Tuple
from sqlalchemy import select, func, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.dao.invoice import UNPAID_STATUSES
from crm.models.client import Client
from crm.models.invoice import Invoice


class ClientDAO(BaseDAO[Client]):
    """Data Access Object for Client model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Client, session)

    async def search(
        self,
        org_id: int,
        search: Optional[str] = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Client], int]:
        """
        List clients with an optional case-insensitive name/company/email search.

        Returns:
            (clients ordered by name, total matching count)
        """
        conditions = [Client.org_id == org_id]
        if active_only:
            conditions.append(Client.is_active.is_(True))
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Client.name).like(pattern),
                    func.lower(Client.company).like(pattern),
                    func.lower(Client.email).like(pattern),
                )
            )

        total = await self.session.scalar(
            select(func.count()).select_from(Client).where(*conditions)
        )
        result = await self.session.execute(
            select(Client).where(*conditions).order_by(Client.name).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def get_stats(self, org_id: int) -> Dict[str, int]:
        """
        Client counts for the organization's dashboard.

        Returns:
            total, active and inactive client counts, plus how many clients
            have at least one invoice still awaiting money
        """
        result = await self.session.execute(
            select(
                func.count(Client.id),
                func.count(case((Client.is_active.is_(True), 1))),
            ).where(Client.org_id == org_id)
        )
        total, active = result.one()
        with_unpaid = await self.session.scalar(
            select(func.count(func.distinct(Invoice.client_id))).where(
                Invoice.org_id == org_id,
                Invoice.status.in_(UNPAID_STATUSES),
            )
        )
        return {
            "total_clients": int(total or 0),
            "active_clients": int(active or 0),
            "inactive_clients": int(total or 0) - int(active or 0),
            "clients_with_unpaid_invoices": int(with_unpaid or 0),
        }
