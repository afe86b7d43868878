"""
Project budget schemas.

WHAT: Request/response models for a project's budget, its categories,
expenses and change history.
"""

import re
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is not None and not _HEX_COLOR.match(value):
        raise ValueError("color must be a hex color like #3B82F6")
    return value


# ============================================================================
# Request Schemas
# ============================================================================


class BudgetUpdate(BaseModel):
    """Create or update the project's total budget."""

    model_config = ConfigDict(str_strip_whitespace=True)

    total_budget: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class BudgetCategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    allocated_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    alert_threshold: int = Field(default=80, ge=0, le=100)
    color: str = "#3B82F6"
    description: Optional[str] = Field(default=None, max_length=5000)

    check_color = field_validator("color")(_check_color)


class BudgetCategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    allocated_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    color: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=5000)

    check_color = field_validator("color")(_check_color)


class BudgetExpenseCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=5000)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    expense_date: date
    category_id: Optional[int] = None
    receipt_url: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=5000)


class BudgetExpenseUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    expense_date: Optional[date] = None
    category_id: Optional[int] = None
    receipt_url: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=5000)


# ============================================================================
# Response Schemas
# ============================================================================


class BudgetSummary(BaseModel):
    project_id: int
    total_budget: float
    currency: str
    total_allocated: float
    total_spent: float
    remaining_budget: float
    budget_utilization: float


class BudgetCategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    name: str
    allocated_amount: float
    spent_amount: float
    alert_threshold: int
    color: str
    description: Optional[str]
    utilization_percentage: float
    is_over_threshold: bool
    created_at: datetime
    updated_at: datetime


class BudgetExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    category_id: Optional[int]
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    description: str
    amount: float
    expense_date: date
    receipt_url: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class BudgetHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    change_type: str
    field_changed: Optional[str]
    old_value: Optional[float]
    new_value: Optional[float]
    description: Optional[str]
    changed_at: datetime


class BudgetOverviewResponse(BaseModel):
    summary: BudgetSummary
    categories: List[BudgetCategoryResponse]
    recent_expenses: List[BudgetExpenseResponse]
    budget_history: List[BudgetHistoryResponse]


class BudgetExpenseListResponse(BaseModel):
    items: List[BudgetExpenseResponse]
    total: int
    total_amount: float
    skip: int
    limit: int
