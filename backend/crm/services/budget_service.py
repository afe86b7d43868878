"""
Budget Service.

WHAT: A project's budget, its category allocations, the expenses booked
against it and the history of every change.

WHY: Category spent_amount is a running total. Every expense create, update
and delete adjusts it in the same transaction as the expense itself, so the
category totals always equal the sum of their expenses.

HOW: Each mutating method writes a BudgetHistory row describing the change
(change_type is one of budget_created, budget_update, category_created,
category_updated, category_deleted, expense_added, expense_updated,
expense_deleted).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.config import settings
from crm.core.exceptions import (
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ValidationError,
)
from crm.dao.budget import (
    ProjectBudgetDAO,
    BudgetCategoryDAO,
    BudgetExpenseDAO,
    BudgetHistoryDAO,
)
from crm.models.budget import BudgetCategory, BudgetExpense, ProjectBudget
from crm.schemas.budget import (
    BudgetUpdate,
    BudgetCategoryCreate,
    BudgetCategoryUpdate,
    BudgetExpenseCreate,
    BudgetExpenseUpdate,
)
from crm.services.invoice_calculator import round_money, utilization_percentage
from crm.services.task_service import get_project_or_404


logger = logging.getLogger(__name__)


RECENT_EXPENSES = 10
HISTORY_ROWS = 20


class BudgetService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.budget_dao = ProjectBudgetDAO(session)
        self.category_dao = BudgetCategoryDAO(session)
        self.expense_dao = BudgetExpenseDAO(session)
        self.history_dao = BudgetHistoryDAO(session)

    async def _history(
        self,
        org_id: int,
        project_id: int,
        change_type: str,
        description: str,
        field_changed: Optional[str] = None,
        old_value: Optional[Decimal] = None,
        new_value: Optional[Decimal] = None,
    ) -> None:
        await self.history_dao.create(
            org_id=org_id,
            project_id=project_id,
            change_type=change_type,
            field_changed=field_changed,
            old_value=old_value,
            new_value=new_value,
            description=description,
        )

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    async def get_overview(self, project_id: int, org_id: int) -> Dict[str, Any]:
        """
        Budget summary, categories, recent expenses and history.

        A project without a budget row reports a zero budget.
        """
        await get_project_or_404(self.session, project_id, org_id)
        budget = await self.budget_dao.get_for_project(project_id, org_id)
        total_budget = budget.total_budget if budget else Decimal("0.00")
        _, total_spent = await self.expense_dao.summarize(project_id, org_id)
        total_allocated = await self.category_dao.total_allocated(project_id)
        recent, _ = await self.expense_dao.list_for_project(
            project_id, org_id, limit=RECENT_EXPENSES
        )

        return {
            "summary": {
                "project_id": project_id,
                "total_budget": float(total_budget),
                "currency": budget.currency if budget else settings.DEFAULT_CURRENCY,
                "total_allocated": float(round_money(total_allocated)),
                "total_spent": float(round_money(total_spent)),
                "remaining_budget": float(round_money(total_budget - total_spent)),
                "budget_utilization": float(utilization_percentage(total_spent, total_budget)),
            },
            "categories": await self.category_dao.list_for_project(project_id, org_id),
            "recent_expenses": recent,
            "budget_history": await self.history_dao.recent(project_id, org_id, HISTORY_ROWS),
        }

    async def set_budget(self, project_id: int, org_id: int, data: BudgetUpdate) -> ProjectBudget:
        """Create the project's budget, or change its total."""
        await get_project_or_404(self.session, project_id, org_id)
        budget = await self.budget_dao.get_for_project(project_id, org_id)

        if budget is None:
            budget = await self.budget_dao.create(
                org_id=org_id,
                project_id=project_id,
                total_budget=data.total_budget,
                currency=data.currency.upper(),
            )
            await self._history(
                org_id,
                project_id,
                "budget_created",
                f"Budget set to {round_money(data.total_budget):.2f}",
                field_changed="total_budget",
                new_value=data.total_budget,
            )
        else:
            old_total = budget.total_budget
            budget = await self.budget_dao.update_instance(
                budget, total_budget=data.total_budget, currency=data.currency.upper()
            )
            await self._history(
                org_id,
                project_id,
                "budget_update",
                f"Budget changed from {old_total:.2f} to {round_money(data.total_budget):.2f}",
                field_changed="total_budget",
                old_value=old_total,
                new_value=data.total_budget,
            )
        logger.info("Project %s budget set to %s", project_id, data.total_budget)
        return budget

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def list_categories(self, project_id: int, org_id: int) -> List[BudgetCategory]:
        await get_project_or_404(self.session, project_id, org_id)
        return await self.category_dao.list_for_project(project_id, org_id)

    async def get_category(self, project_id: int, category_id: int, org_id: int) -> BudgetCategory:
        await get_project_or_404(self.session, project_id, org_id)
        category = await self.category_dao.get_in_project(category_id, project_id, org_id)
        if not category:
            raise ResourceNotFoundError(
                message=f"Budget category with id {category_id} not found",
                resource_type="BudgetCategory",
                resource_id=category_id,
            )
        return category

    async def _ensure_unique_name(
        self,
        project_id: int,
        name: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        if await self.category_dao.name_taken(project_id, name, exclude_id):
            raise ResourceAlreadyExistsError(
                message=f"A budget category named '{name}' already exists in this project",
                resource_type="BudgetCategory",
                name=name,
            )

    async def create_category(
        self,
        project_id: int,
        org_id: int,
        data: BudgetCategoryCreate,
    ) -> BudgetCategory:
        """
        Add a category to the project budget.

        Raises:
            ResourceAlreadyExistsError: If the name is taken (ignoring case)
        """
        await get_project_or_404(self.session, project_id, org_id)
        await self._ensure_unique_name(project_id, data.name)

        category = await self.category_dao.create(
            org_id=org_id,
            project_id=project_id,
            spent_amount=Decimal("0.00"),
            **data.model_dump(),
        )
        await self._history(
            org_id,
            project_id,
            "category_created",
            f"Category '{category.name}' created",
            field_changed="allocated_amount",
            new_value=category.allocated_amount,
        )
        return category

    async def update_category(
        self,
        project_id: int,
        category_id: int,
        org_id: int,
        data: BudgetCategoryUpdate,
    ) -> BudgetCategory:
        category = await self.get_category(project_id, category_id, org_id)
        changes = data.model_dump(exclude_unset=True)
        for required in ("name", "allocated_amount", "alert_threshold", "color"):
            if required in changes and changes[required] is None:
                changes.pop(required)

        if "name" in changes:
            await self._ensure_unique_name(project_id, changes["name"], exclude_id=category.id)

        old_allocated = category.allocated_amount
        category = await self.category_dao.update_instance(category, **changes)
        await self._history(
            org_id,
            project_id,
            "category_updated",
            f"Category '{category.name}' updated",
            field_changed="allocated_amount" if "allocated_amount" in changes else None,
            old_value=old_allocated if "allocated_amount" in changes else None,
            new_value=category.allocated_amount if "allocated_amount" in changes else None,
        )
        return category

    async def delete_category(self, project_id: int, category_id: int, org_id: int) -> None:
        """
        Delete a category that has no expenses.

        Raises:
            ValidationError: If expenses are still booked against it
        """
        category = await self.get_category(project_id, category_id, org_id)
        if await self.expense_dao.count_in_category(category.id):
            raise ValidationError(
                message=(
                    "Cannot delete category with existing expenses. "
                    "Please reassign or delete expenses first."
                ),
                category_id=category.id,
            )
        name, allocated = category.name, category.allocated_amount
        await self.category_dao.delete_instance(category)
        await self._history(
            org_id,
            project_id,
            "category_deleted",
            f"Category '{name}' deleted",
            field_changed="allocated_amount",
            old_value=allocated,
        )

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    async def _category_for_expense(
        self,
        project_id: int,
        org_id: int,
        category_id: Optional[int],
    ) -> Optional[BudgetCategory]:
        if category_id is None:
            return None
        category = await self.category_dao.get_in_project(category_id, project_id, org_id)
        if not category:
            raise ResourceNotFoundError(
                message=f"Budget category with id {category_id} not found",
                resource_type="BudgetCategory",
                resource_id=category_id,
            )
        return category

    @staticmethod
    def _adjust_spent(category: Optional[BudgetCategory], delta: Decimal) -> None:
        if category is not None:
            category.spent_amount = round_money((category.spent_amount or Decimal(0)) + delta)

    async def list_expenses(
        self,
        project_id: int,
        org_id: int,
        category_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[BudgetExpense], int, Decimal]:
        """
        Returns:
            (page of expenses, total count, total amount of all matches)
        """
        await get_project_or_404(self.session, project_id, org_id)
        items, total = await self.expense_dao.list_for_project(
            project_id, org_id, category_id, start_date, end_date, skip, limit
        )
        _, amount = await self.expense_dao.summarize(
            project_id, org_id, category_id, start_date, end_date
        )
        return items, total, amount

    async def get_expense(self, project_id: int, expense_id: int, org_id: int) -> BudgetExpense:
        await get_project_or_404(self.session, project_id, org_id)
        expense = await self.expense_dao.get_in_project(expense_id, project_id, org_id)
        if not expense:
            raise ResourceNotFoundError(
                message=f"Expense with id {expense_id} not found",
                resource_type="BudgetExpense",
                resource_id=expense_id,
            )
        return expense

    async def create_expense(
        self,
        project_id: int,
        org_id: int,
        data: BudgetExpenseCreate,
    ) -> BudgetExpense:
        await get_project_or_404(self.session, project_id, org_id)
        category = await self._category_for_expense(project_id, org_id, data.category_id)

        expense = await self.expense_dao.create(
            org_id=org_id, project_id=project_id, **data.model_dump()
        )
        self._adjust_spent(category, expense.amount)
        await self._history(
            org_id,
            project_id,
            "expense_added",
            f"Expense '{expense.description}' added",
            field_changed="amount",
            new_value=expense.amount,
        )
        await self.session.flush()
        logger.info("Project %s expense %s booked (%s)", project_id, expense.id, expense.amount)
        return await self.get_expense(project_id, expense.id, org_id)

    async def update_expense(
        self,
        project_id: int,
        expense_id: int,
        org_id: int,
        data: BudgetExpenseUpdate,
    ) -> BudgetExpense:
        """
        Apply a partial update.

        WHAT: Moving an expense between categories or changing its amount
        takes the old amount off the old category and adds the new amount to
        the new one.
        """
        expense = await self.get_expense(project_id, expense_id, org_id)
        changes = data.model_dump(exclude_unset=True)
        for required in ("description", "amount", "expense_date"):
            if required in changes and changes[required] is None:
                changes.pop(required)

        old_amount = expense.amount
        old_category = await self._category_for_expense(project_id, org_id, expense.category_id)
        new_category_id = changes.get("category_id", expense.category_id)
        new_category = await self._category_for_expense(project_id, org_id, new_category_id)

        for field, value in changes.items():
            setattr(expense, field, value)

        self._adjust_spent(old_category, -old_amount)
        self._adjust_spent(new_category, expense.amount)
        await self._history(
            org_id,
            project_id,
            "expense_updated",
            f"Expense '{expense.description}' updated",
            field_changed="amount" if "amount" in changes else None,
            old_value=old_amount if "amount" in changes else None,
            new_value=expense.amount if "amount" in changes else None,
        )
        await self.session.flush()
        return await self.get_expense(project_id, expense.id, org_id)

    async def delete_expense(self, project_id: int, expense_id: int, org_id: int) -> None:
        expense = await self.get_expense(project_id, expense_id, org_id)
        category = await self._category_for_expense(project_id, org_id, expense.category_id)
        self._adjust_spent(category, -expense.amount)
        description, amount = expense.description, expense.amount
        await self.expense_dao.delete_instance(expense)
        await self._history(
            org_id,
            project_id,
            "expense_deleted",
            f"Expense '{description}' deleted",
            field_changed="amount",
            old_value=amount,
        )
