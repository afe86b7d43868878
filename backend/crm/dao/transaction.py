"""
Transaction Data Access Object (DAO).

WHAT: Database operations for income/expense transactions.

WHY: Transaction listing accepts user-chosen filters and sort columns.
Filters are built as SQLAlchemy expressions and sort columns are looked up in
an allow-list, so no user-supplied text is ever spliced into SQL.

HOW: Extends BaseDAO with:
- Filtered, sorted, paginated listing
- Aggregates for the financial summary and category breakdown
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.transaction import Transaction, TransactionType, TransactionStatus


# Allow-list of sortable columns (API name -> column)
SORTABLE_COLUMNS = {
    "date": Transaction.transaction_date,
    "amount": Transaction.amount,
    "category": Transaction.category,
    "type": Transaction.type,
    "description": Transaction.description,
    "created_at": Transaction.created_at,
}


@dataclass
class TransactionFilters:
    """Optional filters for transaction listing."""

    type: Optional[TransactionType] = None
    category: Optional[str] = None
    status: Optional[TransactionStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    project_id: Optional[int] = None
    client_id: Optional[int] = None

    def conditions(self, org_id: int) -> List[Any]:
        conditions = [Transaction.org_id == org_id]
        if self.type is not None:
            conditions.append(Transaction.type == self.type)
        if self.category:
            conditions.append(Transaction.category == self.category)
        if self.status is not None:
            conditions.append(Transaction.status == self.status)
        if self.date_from is not None:
            conditions.append(Transaction.transaction_date >= self.date_from)
        if self.date_to is not None:
            conditions.append(Transaction.transaction_date <= self.date_to)
        if self.project_id is not None:
            conditions.append(Transaction.project_id == self.project_id)
        if self.client_id is not None:
            conditions.append(Transaction.client_id == self.client_id)
        return conditions


class TransactionDAO(BaseDAO[Transaction]):
    """Data Access Object for Transaction model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Transaction, session)

    async def list_transactions(
        self,
        org_id: int,
        filters: TransactionFilters,
        sort_by: str = "date",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Transaction], int]:
        """
        List transactions matching filters.

        Args:
            sort_by: Key of SORTABLE_COLUMNS (validated by the caller)
            sort_order: "asc" or "desc"

        Returns:
            (page of transactions, total matching count)
        """
        conditions = filters.conditions(org_id)
        column = SORTABLE_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()

        total = await self.session.scalar(
            select(func.count()).select_from(Transaction).where(*conditions)
        )
        result = await self.session.execute(
            select(Transaction)
            .where(*conditions)
            .order_by(ordering, Transaction.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def totals_by_type(self, org_id: int, filters: TransactionFilters) -> Dict[str, Dict[str, Any]]:
        """
        Sum and count of completed transactions per type.

        Returns:
            {"income": {"total": Decimal, "count": int}, "expense": {...}}
        """
        conditions = filters.conditions(org_id) + [
            Transaction.status == TransactionStatus.COMPLETED
        ]
        result = await self.session.execute(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount), 0),
                func.count(Transaction.id),
            )
            .where(*conditions)
            .group_by(Transaction.type)
        )
        totals = {t.value: {"total": Decimal("0"), "count": 0} for t in TransactionType}
        for tx_type, total, count in result.all():
            totals[tx_type.value] = {"total": Decimal(str(total)), "count": int(count)}
        return totals

    async def amounts_between(
        self,
        org_id: int,
        start: date,
        end: date,
    ) -> List[Tuple[date, TransactionType, Decimal]]:
        """
        (date, type, amount) of completed transactions in [start, end].

        WHY: Monthly bucketing is done in Python so the query stays portable
        between PostgreSQL and SQLite.
        """
        result = await self.session.execute(
            select(Transaction.transaction_date, Transaction.type, Transaction.amount).where(
                and_(
                    Transaction.org_id == org_id,
                    Transaction.status == TransactionStatus.COMPLETED,
                    Transaction.transaction_date >= start,
                    Transaction.transaction_date <= end,
                )
            )
        )
        return [(row[0], row[1], Decimal(str(row[2]))) for row in result.all()]

    async def category_totals(
        self,
        org_id: int,
        filters: Optional[TransactionFilters] = None,
    ) -> List[Tuple[TransactionType, str, Decimal, int]]:
        """
        (type, category, total, count) per category, largest total first.

        Only completed transactions are counted.
        """
        conditions = (filters or TransactionFilters()).conditions(org_id) + [
            Transaction.status == TransactionStatus.COMPLETED
        ]
        total_column = func.coalesce(func.sum(Transaction.amount), 0)
        result = await self.session.execute(
            select(
                Transaction.type,
                Transaction.category,
                total_column,
                func.count(Transaction.id),
            )
            .where(*conditions)
            .group_by(Transaction.type, Transaction.category)
            .order_by(total_column.desc())
        )
        return [
            (row[0], row[1], Decimal(str(row[2])), int(row[3])) for row in result.all()
        ]
