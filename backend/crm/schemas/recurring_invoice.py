"""
Recurring invoice template schemas.

WHAT: Request/response models for recurring invoice templates and for the
generation run triggered through the API.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crm.models.recurring_invoice import RecurrenceInterval
from crm.schemas.invoice import LineItemCreate


class RecurringInvoiceCreate(BaseModel):
    """
    Schema for creating a recurring invoice template.

    The first invoice is generated for start_date itself.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    client_id: int
    project_id: Optional[int] = None
    active: bool = True

    recurrence_interval: RecurrenceInterval = RecurrenceInterval.MONTHLY
    custom_days: Optional[int] = Field(default=None, ge=1, le=3650)
    start_date: date
    end_date: Optional[date] = None

    line_items: List[LineItemCreate] = Field(..., min_length=1)
    tax_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    discount: Decimal = Field(default=Decimal(0), ge=0, max_digits=12, decimal_places=2)
    due_days: int = Field(default=30, ge=0, le=365)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=5000)
    terms: Optional[str] = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def check_schedule(self) -> "RecurringInvoiceCreate":
        if self.recurrence_interval == RecurrenceInterval.CUSTOM and not self.custom_days:
            raise ValueError("custom_days is required for a custom recurrence interval")
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringInvoiceUpdate(BaseModel):
    """Partial update; changing the schedule recomputes next_generation_date."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    client_id: Optional[int] = None
    project_id: Optional[int] = None
    active: Optional[bool] = None

    recurrence_interval: Optional[RecurrenceInterval] = None
    custom_days: Optional[int] = Field(default=None, ge=1, le=3650)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    line_items: Optional[List[LineItemCreate]] = Field(default=None, min_length=1)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    due_days: Optional[int] = Field(default=None, ge=0, le=365)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=5000)
    terms: Optional[str] = Field(default=None, max_length=5000)


class RecurringInvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    name: str
    description: Optional[str]
    client_id: int
    project_id: Optional[int]
    active: bool

    recurrence_interval: RecurrenceInterval
    custom_days: Optional[int]
    start_date: date
    next_generation_date: date
    last_generated_date: Optional[date]
    end_date: Optional[date]

    line_items: List[Dict[str, Any]]
    tax_rate: float
    discount: float
    due_days: int
    currency: str
    notes: Optional[str]
    terms: Optional[str]

    created_at: datetime
    updated_at: datetime


class RecurringInvoiceListResponse(BaseModel):
    items: List[RecurringInvoiceResponse]
    total: int
    skip: int
    limit: int


class GenerationRunResponse(BaseModel):
    """
    Summary of one generation run.

    WHY: The same run is executed hourly by the scheduler; the API exposes
    it so an operator can trigger it and see what it produced.
    """

    templates_processed: int
    invoices_generated: int
    templates_deactivated: int
    invoice_ids: List[int]
