"""
Transaction API endpoints.

WHAT: Income/expense bookkeeping with a financial summary and category
breakdown.

HOW: Filters and the sort column are query parameters validated against
fixed lists (Literal types), then passed to the DAO as SQLAlchemy
expressions; list pagination is page based.
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user
from crm.db.session import get_db
from crm.dao.transaction import TransactionFilters
from crm.models.transaction import TransactionType, TransactionStatus
from crm.models.user import User
from crm.schemas.transaction import (
    SortField,
    SortOrder,
    TransactionCreate,
    TransactionUpdate,
    TransactionResponse,
    TransactionListResponse,
    TransactionSummaryResponse,
    TransactionCategoriesResponse,
)
from crm.services.transaction_service import TransactionService


router = APIRouter(prefix="/transactions", tags=["transactions"])


def _filters(
    type: Optional[TransactionType] = Query(None, description="income or expense"),
    category: Optional[str] = Query(None),
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None, description="Inclusive lower bound"),
    date_to: Optional[date] = Query(None, description="Inclusive upper bound"),
    project_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
) -> TransactionFilters:
    return TransactionFilters(
        type=type,
        category=category,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        project_id=project_id,
        client_id=client_id,
    )


@router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
    description="Filtered, sorted, page-numbered list of transactions",
)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    sort_by: SortField = Query("date"),
    sort_order: SortOrder = Query("desc"),
    filters: TransactionFilters = Depends(_filters),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    result = await TransactionService(db).list_transactions(
        current_user.org_id, filters, sort_by, sort_order, page, limit
    )
    result["items"] = [TransactionResponse.model_validate(t) for t in result["items"]]
    return TransactionListResponse(**result)


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create transaction",
)
async def create_transaction(
    data: TransactionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    """
    Book an income or expense.

    Raises:
        ValidationError (400): If amount is not positive or type is unknown
        ResourceNotFoundError (404): If a linked project/client/invoice is missing
    """
    transaction = await TransactionService(db).create_transaction(current_user.org_id, data)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/summary",
    response_model=TransactionSummaryResponse,
    summary="Financial summary",
    description="Totals, profit margin, monthly totals and averages, top categories",
)
async def get_summary(
    year: Optional[int] = Query(None, ge=1900, le=9999, description="Year for monthly totals"),
    filters: TransactionFilters = Depends(_filters),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionSummaryResponse:
    summary = await TransactionService(db).summary(current_user.org_id, filters, year)
    return TransactionSummaryResponse(**summary)


@router.get(
    "/categories",
    response_model=TransactionCategoriesResponse,
    summary="Transaction categories",
    description="Categories in use with totals, merged with the default category lists",
)
async def get_categories(
    type: Optional[TransactionType] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionCategoriesResponse:
    categories = await TransactionService(db).categories(current_user.org_id, type)
    return TransactionCategoriesResponse(**categories)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction",
)
async def get_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await TransactionService(db).get_transaction(transaction_id, current_user.org_id)
    return TransactionResponse.model_validate(transaction)


@router.put(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Update transaction",
)
async def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await TransactionService(db).update_transaction(
        transaction_id, current_user.org_id, data
    )
    return TransactionResponse.model_validate(transaction)


@router.delete(
    "/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete transaction",
)
async def delete_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await TransactionService(db).delete_transaction(transaction_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
