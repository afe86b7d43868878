"""
Budget Data Access Objects.

WHAT: Database operations for project budgets, budget categories, expenses
and budget history.

WHY: All budget rows are nested under a project; every query here filters by
both org_id and project_id so a category or expense id from another project
is treated as missing.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.budget import ProjectBudget, BudgetCategory, BudgetExpense, BudgetHistory


class ProjectBudgetDAO(BaseDAO[ProjectBudget]):
    def __init__(self, session: AsyncSession):
        super().__init__(ProjectBudget, session)

    async def get_for_project(self, project_id: int, org_id: int) -> Optional[ProjectBudget]:
        result = await self.session.execute(
            select(ProjectBudget).where(
                ProjectBudget.project_id == project_id,
                ProjectBudget.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()


class BudgetCategoryDAO(BaseDAO[BudgetCategory]):
    def __init__(self, session: AsyncSession):
        super().__init__(BudgetCategory, session)

    async def list_for_project(self, project_id: int, org_id: int) -> List[BudgetCategory]:
        result = await self.session.execute(
            select(BudgetCategory)
            .where(BudgetCategory.project_id == project_id, BudgetCategory.org_id == org_id)
            .order_by(BudgetCategory.name)
        )
        return list(result.scalars().all())

    async def get_in_project(
        self,
        category_id: int,
        project_id: int,
        org_id: int,
    ) -> Optional[BudgetCategory]:
        result = await self.session.execute(
            select(BudgetCategory).where(
                BudgetCategory.id == category_id,
                BudgetCategory.project_id == project_id,
                BudgetCategory.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def name_taken(
        self,
        project_id: int,
        name: str,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """True if another category in the project has this name, ignoring case."""
        query = select(func.count(BudgetCategory.id)).where(
            BudgetCategory.project_id == project_id,
            func.lower(BudgetCategory.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.where(BudgetCategory.id != exclude_id)
        return bool(await self.session.scalar(query))

    async def total_allocated(self, project_id: int) -> Decimal:
        result = await self.session.scalar(
            select(func.coalesce(func.sum(BudgetCategory.allocated_amount), 0)).where(
                BudgetCategory.project_id == project_id
            )
        )
        return Decimal(str(result))


class BudgetExpenseDAO(BaseDAO[BudgetExpense]):
    def __init__(self, session: AsyncSession):
        super().__init__(BudgetExpense, session)

    def _conditions(
        self,
        project_id: int,
        org_id: int,
        category_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list:
        conditions = [BudgetExpense.project_id == project_id, BudgetExpense.org_id == org_id]
        if category_id is not None:
            conditions.append(BudgetExpense.category_id == category_id)
        if start_date is not None:
            conditions.append(BudgetExpense.expense_date >= start_date)
        if end_date is not None:
            conditions.append(BudgetExpense.expense_date <= end_date)
        return conditions

    async def list_for_project(
        self,
        project_id: int,
        org_id: int,
        category_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[BudgetExpense], int]:
        """
        Expenses of a project, newest expense date first.

        Returns:
            (page of expenses, total matching count)
        """
        conditions = self._conditions(project_id, org_id, category_id, start_date, end_date)
        total = await self.session.scalar(
            select(func.count()).select_from(BudgetExpense).where(*conditions)
        )
        result = await self.session.execute(
            select(BudgetExpense)
            .where(*conditions)
            .order_by(BudgetExpense.expense_date.desc(), BudgetExpense.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def summarize(
        self,
        project_id: int,
        org_id: int,
        category_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Tuple[int, Decimal]:
        """(count, total amount) of matching expenses."""
        conditions = self._conditions(project_id, org_id, category_id, start_date, end_date)
        row = (
            await self.session.execute(
                select(
                    func.count(BudgetExpense.id),
                    func.coalesce(func.sum(BudgetExpense.amount), 0),
                ).where(*conditions)
            )
        ).one()
        return int(row[0]), Decimal(str(row[1]))

    async def get_in_project(
        self,
        expense_id: int,
        project_id: int,
        org_id: int,
    ) -> Optional[BudgetExpense]:
        # populate_existing reloads the category after category_id changed in this session
        result = await self.session.execute(
            select(BudgetExpense)
            .where(
                BudgetExpense.id == expense_id,
                BudgetExpense.project_id == project_id,
                BudgetExpense.org_id == org_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_in_category(self, category_id: int) -> int:
        return int(
            await self.session.scalar(
                select(func.count(BudgetExpense.id)).where(BudgetExpense.category_id == category_id)
            )
            or 0
        )


class BudgetHistoryDAO(BaseDAO[BudgetHistory]):
    def __init__(self, session: AsyncSession):
        super().__init__(BudgetHistory, session)

    async def recent(self, project_id: int, org_id: int, limit: int = 20) -> List[BudgetHistory]:
        result = await self.session.execute(
            select(BudgetHistory)
            .where(BudgetHistory.project_id == project_id, BudgetHistory.org_id == org_id)
            .order_by(BudgetHistory.changed_at.desc(), BudgetHistory.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
