"""
Project budget API endpoints.

WHAT: The budget of a project: its total, spending categories, expenses and
change history.

WHY: Agencies track spend against what was sold. Keeping categories' spent
amounts in sync with the expenses lets the overview flag categories that
pass their alert threshold without re-summing every expense.

HOW: Nested under /projects/{project_id}; BudgetService resolves the
project within the caller's organization first, so ids from another tenant
read as 404.
"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user
from crm.db.session import get_db
from crm.models.user import User
from crm.schemas.budget import (
    BudgetUpdate,
    BudgetCategoryCreate,
    BudgetCategoryUpdate,
    BudgetExpenseCreate,
    BudgetExpenseUpdate,
    BudgetCategoryResponse,
    BudgetExpenseResponse,
    BudgetExpenseListResponse,
    BudgetOverviewResponse,
)
from crm.services.budget_service import BudgetService


router = APIRouter(prefix="/projects/{project_id}", tags=["budgets"])


@router.get(
    "/budget",
    response_model=BudgetOverviewResponse,
    summary="Get project budget",
    description="Budget summary, categories, recent expenses and change history",
)
async def get_budget(
    project_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetOverviewResponse:
    overview = await BudgetService(db).get_overview(project_id, current_user.org_id)
    return BudgetOverviewResponse.model_validate(overview, from_attributes=True)


@router.put(
    "/budget",
    response_model=BudgetOverviewResponse,
    summary="Set project budget",
    description="Create the project budget or change its total",
)
async def set_budget(
    project_id: int,
    data: BudgetUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetOverviewResponse:
    service = BudgetService(db)
    await service.set_budget(project_id, current_user.org_id, data)
    overview = await service.get_overview(project_id, current_user.org_id)
    return BudgetOverviewResponse.model_validate(overview, from_attributes=True)


# ============================================================================
# Categories
# ============================================================================


@router.get(
    "/budget/categories",
    response_model=List[BudgetCategoryResponse],
    summary="List budget categories",
)
async def list_categories(
    project_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[BudgetCategoryResponse]:
    categories = await BudgetService(db).list_categories(project_id, current_user.org_id)
    return [BudgetCategoryResponse.model_validate(c) for c in categories]


@router.post(
    "/budget/categories",
    response_model=BudgetCategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create budget category",
)
async def create_category(
    project_id: int,
    data: BudgetCategoryCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetCategoryResponse:
    """
    Raises:
        ResourceAlreadyExistsError (409): If the project already has a
            category with that name (ignoring case)
    """
    category = await BudgetService(db).create_category(project_id, current_user.org_id, data)
    return BudgetCategoryResponse.model_validate(category)


@router.get(
    "/budget/categories/{category_id}",
    response_model=BudgetCategoryResponse,
    summary="Get budget category",
)
async def get_category(
    project_id: int,
    category_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetCategoryResponse:
    category = await BudgetService(db).get_category(project_id, category_id, current_user.org_id)
    return BudgetCategoryResponse.model_validate(category)


@router.put(
    "/budget/categories/{category_id}",
    response_model=BudgetCategoryResponse,
    summary="Update budget category",
)
async def update_category(
    project_id: int,
    category_id: int,
    data: BudgetCategoryUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetCategoryResponse:
    category = await BudgetService(db).update_category(
        project_id, category_id, current_user.org_id, data
    )
    return BudgetCategoryResponse.model_validate(category)


@router.delete(
    "/budget/categories/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete budget category",
    description="Delete a category that has no expenses",
)
async def delete_category(
    project_id: int,
    category_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await BudgetService(db).delete_category(project_id, category_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Expenses
# ============================================================================


@router.get(
    "/budget/expenses",
    response_model=BudgetExpenseListResponse,
    summary="List expenses",
    description="Expenses newest first, with the total amount of all matches",
)
async def list_expenses(
    project_id: int,
    category_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None, description="Inclusive lower bound"),
    end_date: Optional[date] = Query(None, description="Inclusive upper bound"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetExpenseListResponse:
    items, total, amount = await BudgetService(db).list_expenses(
        project_id,
        current_user.org_id,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return BudgetExpenseListResponse(
        items=[BudgetExpenseResponse.model_validate(e) for e in items],
        total=total,
        total_amount=float(amount),
        skip=skip,
        limit=limit,
    )


@router.post(
    "/budget/expenses",
    response_model=BudgetExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record expense",
)
async def create_expense(
    project_id: int,
    data: BudgetExpenseCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetExpenseResponse:
    expense = await BudgetService(db).create_expense(project_id, current_user.org_id, data)
    return BudgetExpenseResponse.model_validate(expense)


@router.get(
    "/budget/expenses/{expense_id}",
    response_model=BudgetExpenseResponse,
    summary="Get expense",
)
async def get_expense(
    project_id: int,
    expense_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetExpenseResponse:
    expense = await BudgetService(db).get_expense(project_id, expense_id, current_user.org_id)
    return BudgetExpenseResponse.model_validate(expense)


@router.put(
    "/budget/expenses/{expense_id}",
    response_model=BudgetExpenseResponse,
    summary="Update expense",
)
async def update_expense(
    project_id: int,
    expense_id: int,
    data: BudgetExpenseUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BudgetExpenseResponse:
    expense = await BudgetService(db).update_expense(
        project_id, expense_id, current_user.org_id, data
    )
    return BudgetExpenseResponse.model_validate(expense)


@router.delete(
    "/budget/expenses/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete expense",
)
async def delete_expense(
    project_id: int,
    expense_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await BudgetService(db).delete_expense(project_id, expense_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
