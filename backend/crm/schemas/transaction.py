"""
Transaction schemas for API request/response validation.

WHAT: Pydantic schemas for income/expense transactions, the financial
summary and the category breakdown.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from crm.models.transaction import TransactionType, TransactionStatus


# ============================================================================
# Request Schemas
# ============================================================================


class TransactionCreate(BaseModel):
    """Schema for booking an income or expense transaction."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Positive amount; direction comes from type",
    )
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=5000)
    transaction_date: date
    status: TransactionStatus = TransactionStatus.COMPLETED

    project_id: Optional[int] = None
    client_id: Optional[int] = None
    invoice_id: Optional[int] = None

    payment_method: Optional[str] = Field(default=None, max_length=50)
    reference_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=5000)


class TransactionUpdate(BaseModel):
    """Partial update; only provided fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    transaction_date: Optional[date] = None
    status: Optional[TransactionStatus] = None

    project_id: Optional[int] = None
    client_id: Optional[int] = None
    invoice_id: Optional[int] = None

    payment_method: Optional[str] = Field(default=None, max_length=50)
    reference_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=5000)


SortField = Literal["date", "amount", "category", "type", "description", "created_at"]
SortOrder = Literal["asc", "desc"]


# ============================================================================
# Response Schemas
# ============================================================================


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    type: TransactionType
    amount: float
    category: str
    description: str
    transaction_date: date
    status: TransactionStatus
    project_id: Optional[int]
    client_id: Optional[int]
    invoice_id: Optional[int]
    payment_method: Optional[str]
    reference_number: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class TransactionListResponse(BaseModel):
    """Page-numbered list (the finance screens paginate by page, not offset)."""

    items: List[TransactionResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class FinancialSummary(BaseModel):
    total_income: float
    total_expenses: float
    net_amount: float
    profit_margin: float = Field(description="Net as a percentage of income")
    income_count: int
    expense_count: int
    total_transactions: int


class MonthlyTotal(BaseModel):
    month: str = Field(description="YYYY-MM")
    income: float
    expenses: float
    net: float


class MonthlyAverages(BaseModel):
    income: float
    expenses: float
    net: float


class CategoryAmount(BaseModel):
    category: str
    amount: float
    count: int


class TransactionSummaryResponse(BaseModel):
    summary: FinancialSummary
    monthly_averages: MonthlyAverages
    monthly_totals: List[MonthlyTotal]
    top_categories: Dict[str, List[CategoryAmount]] = Field(
        description="Top 5 categories per type: {'income': [...], 'expense': [...]}"
    )


class CategoryTotals(BaseModel):
    total_amount: float
    total_transactions: int
    category_count: int


class CategoryStat(BaseModel):
    category: str
    type: TransactionType
    transaction_count: int
    total_amount: float


class TransactionCategoriesResponse(BaseModel):
    """
    Categories in use plus the default lists.

    Keys of the dicts are transaction types ("income", "expense").
    """

    categories: Dict[str, List[CategoryStat]]
    available_categories: Dict[str, List[str]]
    totals: Dict[str, CategoryTotals]
