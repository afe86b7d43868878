"""
Invoice schemas for API request/response validation.

WHAT: Pydantic schemas for invoices, line items, payments and reminders.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages (non-numeric amounts,
   unknown statuses and discount types are rejected before any service runs)
3. OpenAPI documentation generation

HOW: Uses Pydantic v2 with Field constraints and model_config. Money inputs
are Decimal so no float rounding happens on the way in; responses serialize
money as float for JSON clients.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from crm.models.invoice import InvoiceStatus, DiscountType, EmailEventType


# ============================================================================
# Request Schemas
# ============================================================================


class LineItemCreate(BaseModel):
    """
    One line item in an invoice create/update request.

    WHY: amount is normally derived (quantity * rate). Clients may send an
    explicit amount together with amount_overridden=true for lump-sum lines.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=2000)
    quantity: Decimal = Field(default=Decimal(1), ge=0, max_digits=12, decimal_places=2)
    rate: Decimal = Field(default=Decimal(0), ge=0, max_digits=12, decimal_places=2)
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    amount_overridden: bool = False

    tax_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    discount_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal(0), ge=0, max_digits=12, decimal_places=2)
    discount_type: Optional[DiscountType] = None

    project_id: Optional[int] = None
    task_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=100)
    hours: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def check_period(self) -> "LineItemCreate":
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class InvoiceCreate(BaseModel):
    """
    Schema for creating an invoice.

    WHY: Invoices are created as drafts (or directly as sent). Every derived
    amount (subtotal, tax, discount, total) is computed server-side; clients
    only send line items and adjustment parameters.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: int = Field(..., description="Billed client")
    project_id: Optional[int] = Field(default=None, description="Project the work belongs to")
    status: Optional[InvoiceStatus] = Field(
        default=None,
        description="Initial status: draft (default) or sent",
    )

    issue_date: Optional[date] = Field(default=None, description="Defaults to today")
    due_date: Optional[date] = Field(default=None, description="Defaults to issue date + due_days")
    due_days: Optional[int] = Field(default=None, ge=0, le=365)

    tax_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    discount: Decimal = Field(
        default=Decimal(0),
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Flat discount amount",
    )
    discount_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)
    discount_type: DiscountType = DiscountType.FIXED
    shipping_amount: Decimal = Field(default=Decimal(0), ge=0, max_digits=12, decimal_places=2)
    shipping_tax_rate: Decimal = Field(default=Decimal(0), ge=0, le=100)

    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=5000)
    terms: Optional[str] = Field(default=None, max_length=5000)

    line_items: List[LineItemCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self) -> "InvoiceCreate":
        if self.issue_date and self.due_date and self.due_date < self.issue_date:
            raise ValueError("due_date must not be before issue_date")
        return self


class InvoiceUpdate(BaseModel):
    """
    Schema for updating an invoice.

    WHY: Partial update; only fields present in the request are applied.
    Sending line_items replaces all line items. Any change to line items,
    tax, discount or shipping recomputes every derived amount.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: Optional[int] = None
    project_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None

    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    discount_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount_type: Optional[DiscountType] = None
    shipping_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    shipping_tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)

    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=5000)
    terms: Optional[str] = Field(default=None, max_length=5000)

    line_items: Optional[List[LineItemCreate]] = None


class PaymentCreate(BaseModel):
    """
    Schema for recording a payment against an invoice.

    Accepts the payment date as either ``date`` or ``payment_date``.
    The amount must fit a money column (12 digits, 2 decimals); the service
    checks it is > 0 and does not exceed the remaining balance so the error
    can name the maximum allowed.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    amount: Decimal = Field(
        ..., max_digits=12, decimal_places=2, description="Payment amount received"
    )
    payment_date: date = Field(
        ...,
        validation_alias=AliasChoices("payment_date", "date"),
        description="Date the payment was received",
    )
    method: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Payment method (bank, card, cash, check, ...)",
    )
    reference: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=5000)


class InvoiceSendRequest(BaseModel):
    """Recipient override for sending an invoice (defaults to the client e-mail)."""

    recipient: Optional[str] = Field(default=None, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=500)


class ReminderCreate(BaseModel):
    """Schema for recording a payment reminder."""

    reminder_type: str = Field(default="manual", max_length=50)
    recipient: Optional[str] = Field(default=None, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=500)


# ============================================================================
# Response Schemas
# ============================================================================


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    description: str
    quantity: float
    rate: float
    amount: float
    amount_overridden: bool
    tax_rate: float
    tax_amount: float
    discount_rate: float
    discount_amount: float
    discount_type: Optional[DiscountType]
    project_id: Optional[int]
    task_id: Optional[int]
    category: Optional[str]
    hours: Optional[float]
    period_start: Optional[date]
    period_end: Optional[date]
    notes: Optional[str]


class PaymentResponse(BaseModel):
    """A recorded payment."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount: float
    payment_date: date
    method: str
    reference: Optional[str]
    notes: Optional[str]
    created_by_user_id: Optional[int]
    created_at: datetime


class PaymentCreatedResponse(PaymentResponse):
    """
    Payment plus the invoice balance after it was applied.

    WHY: Clients update the invoice view without a second request.
    """

    invoice_status: InvoiceStatus
    invoice_amount_paid: float
    invoice_amount_due: float


class EmailHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: EmailEventType
    recipient: Optional[str]
    subject: Optional[str]
    reminder_type: Optional[str]
    days_overdue: Optional[int]
    occurred_at: datetime


class InvoiceResponse(BaseModel):
    """
    Schema for invoice response data.

    WHY: Complete invoice data for display including:
    - All derived financial fields
    - Line items, payments and delivery history
    - Computed properties (amount_due, is_editable, is_overdue)
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    invoice_number: str
    status: InvoiceStatus
    client_id: int
    project_id: Optional[int]

    # Adjustment parameters
    tax_rate: float
    discount: float
    discount_rate: float
    discount_type: DiscountType
    shipping_amount: float
    shipping_tax_rate: float

    # Amounts
    subtotal: float
    tax_amount: float
    discount_amount: float
    shipping_tax_amount: float
    total: float
    amount_paid: float
    amount_due: float
    currency: str

    # Dates
    issue_date: date
    due_date: Optional[date]
    sent_at: Optional[datetime]
    viewed_at: Optional[datetime]
    paid_at: Optional[datetime]

    notes: Optional[str]
    terms: Optional[str]
    reminders_sent: int
    last_reminder_at: Optional[datetime]
    recurring_template_id: Optional[int]
    recurrence_date: Optional[date]

    created_at: datetime
    updated_at: datetime

    is_editable: bool
    is_overdue: bool

    line_items: List[LineItemResponse] = []
    payments: List[PaymentResponse] = []
    email_history: List[EmailHistoryResponse] = []


class InvoiceListResponse(BaseModel):
    """
    Paginated list response for invoices.

    WHY: Standard pagination structure for list endpoints.
    """

    items: List[InvoiceResponse]
    total: int
    skip: int
    limit: int


class InvoiceStats(BaseModel):
    """
    Invoice statistics for dashboard.

    WHY: Aggregated metrics for:
    - Financial overview
    - Payment tracking
    - Status distribution
    """

    total: int = Field(description="Total number of invoices")
    by_status: Dict[str, int] = Field(description="Count by status")
    total_outstanding: float = Field(description="Total unpaid balance")
    total_paid: float = Field(description="Total payments received")


class ReminderStatusResponse(BaseModel):
    """Where an invoice stands in the reminder schedule."""

    invoice_id: int
    status: InvoiceStatus
    due_date: Optional[date]
    days_overdue: int
    reminders_sent: int
    last_reminder_at: Optional[datetime]
    next_reminder_date: Optional[date]
    can_send_reminder: bool
    history: List[EmailHistoryResponse]


class OverdueSweepResponse(BaseModel):
    """Result of marking past-due invoices as overdue."""

    updated: int
    invoice_ids: List[int]
