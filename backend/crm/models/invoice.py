"""
Invoice models for billing and payment tracking.

WHAT: SQLAlchemy models for invoices, their line items, payments, e-mail
history and the per-organization invoice number counter.

WHY: Invoices are critical financial documents that:
1. Track amounts owed by clients
2. Record every payment applied against them
3. Keep an audit trail of when they were sent, viewed and chased
4. Must never be overpaid or paid after being voided

HOW: Uses SQLAlchemy 2.0 with:
- Invoice as the aggregate root; line items, payments and e-mail history
  are owned by it and cascade-deleted with it
- Status enum for the billing workflow
- Stored financial fields derived by crm.services.invoice_calculator
- Numeric columns with 2-digit precision for every money amount
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Date,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, Mapped

from crm.models.base import Base, Money, Rate

if TYPE_CHECKING:
    from crm.models.client import Client


class InvoiceStatus(str, Enum):
    """
    Invoice workflow status.

    WHY: Tracks invoice through the billing process:
    - DRAFT: Created, still editable, not yet sent
    - SENT: Delivered to the client
    - VIEWED: Client opened the invoice
    - PARTIAL: Some, but not all, of the total has been paid
    - PAID: Payments cover the total (terminal)
    - OVERDUE: Past due date without full payment
    - CANCELLED: Voided; accepts no payments (terminal)
    """

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class EmailEventType(str, Enum):
    """Kinds of delivery events recorded in the invoice e-mail history."""

    SENT = "sent"
    VIEWED = "viewed"
    REMINDER = "reminder"


def _enum_values(enum) -> List[str]:
    # WHY: Store the lowercase value, not the UPPERCASE member name
    return [e.value for e in enum]


# WHY: One type object shared by invoices and line items so the database
# enum is declared once
discount_type_enum = SQLEnum(DiscountType, name="discounttype", values_callable=_enum_values)


class Invoice(Base):
    """
    Invoice aggregate root.

    Attributes:
        id: Primary key
        org_id: Organization for queries and access control
        invoice_number: Human-readable identifier, unique per organization
        client_id: Billed client
        project_id: Optional project the work belongs to

        Adjustment parameters (inputs to the calculator):
        tax_rate: Invoice-level tax percentage applied to the subtotal
        discount: Flat discount amount (discount_type=fixed)
        discount_rate: Discount percentage (discount_type=percentage)
        shipping_amount / shipping_tax_rate: Optional shipping charge and its tax

        Derived amounts (outputs of the calculator):
        subtotal, tax_amount, discount_amount, shipping_tax_amount, total

        Payment tracking:
        amount_paid: Sum of all payments, kept in step with the payments table

        recurring_template_id / recurrence_date: Set on invoices generated from
        a recurring template; the pair is unique so one occurrence can never
        be generated twice.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
        UniqueConstraint(
            "recurring_template_id",
            "recurrence_date",
            name="uq_invoices_template_occurrence",
        ),
    )

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Organization (for queries and access control)",
    )

    invoice_number: Mapped[str] = Column(
        String(50),
        nullable=False,
        index=True,
        comment="Invoice number (e.g., INV-202403-007)",
    )

    status: Mapped[InvoiceStatus] = Column(
        SQLEnum(InvoiceStatus, name="invoicestatus", values_callable=_enum_values),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        index=True,
        comment="Current invoice status",
    )

    client_id: Mapped[int] = Column(
        Integer,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Adjustment parameters
    tax_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)
    discount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    discount_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)
    discount_type: Mapped[DiscountType] = Column(
        discount_type_enum,
        nullable=False,
        default=DiscountType.FIXED,
    )
    shipping_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    shipping_tax_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)

    # Derived amounts
    subtotal: Mapped[Decimal] = Column(
        Money, nullable=False, default=0, comment="Sum of line item amounts"
    )
    tax_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    discount_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    shipping_tax_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    total: Mapped[Decimal] = Column(
        Money, nullable=False, default=0, comment="Final total amount due"
    )
    amount_paid: Mapped[Decimal] = Column(
        Money, nullable=False, default=0, comment="Sum of all payments"
    )
    currency: Mapped[str] = Column(String(3), nullable=False, default="USD")

    # Dates
    issue_date: Mapped[date] = Column(Date, nullable=False, default=date.today)
    due_date: Mapped[Optional[date]] = Column(Date, nullable=True)
    sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    terms: Mapped[Optional[str]] = Column(Text, nullable=True)

    reminders_sent: Mapped[int] = Column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    # Recurring generation
    recurring_template_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("recurring_invoice_templates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    recurrence_date: Mapped[Optional[date]] = Column(Date, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    # WHY: lazy="selectin" so collections are loaded eagerly in async code,
    # where implicit lazy loads are not allowed
    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
        lazy="selectin",
    )
    payments: Mapped[List["InvoicePayment"]] = relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: [InvoicePayment.payment_date.desc(), InvoicePayment.id.desc()],
        lazy="selectin",
    )
    email_history: Mapped[List["InvoiceEmailHistory"]] = relationship(
        "InvoiceEmailHistory",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceEmailHistory.occurred_at.desc()",
        lazy="selectin",
    )
    client: Mapped["Client"] = relationship("Client", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status})>"

    @property
    def amount_due(self) -> Decimal:
        """Remaining balance, never negative."""
        remaining = (self.total or Decimal(0)) - (self.amount_paid or Decimal(0))
        return remaining if remaining > 0 else Decimal("0.00")

    @property
    def is_editable(self) -> bool:
        """
        Check if invoice can be edited.

        WHY: Paid and cancelled invoices are closed financial records.
        Sent invoices may still be corrected; the edit recomputes totals.
        """
        return self.status not in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)

    @property
    def is_overdue(self) -> bool:
        """True when the due date has passed and the invoice is still open."""
        if not self.due_date:
            return False
        if self.status in (InvoiceStatus.DRAFT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            return False
        return date.today() > self.due_date


class InvoiceLineItem(Base):
    """
    One billable row on an invoice.

    WHY: amount is stored rather than computed on read so that a manually
    overridden amount (amount_overridden=True) survives later recalculations.
    """

    __tablename__ = "invoice_line_items"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = Column(Integer, nullable=False, default=0)

    description: Mapped[str] = Column(Text, nullable=False)
    quantity: Mapped[Decimal] = Column(Money, nullable=False, default=1)
    rate: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    amount_overridden: Mapped[bool] = Column(Boolean, nullable=False, default=False)

    tax_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)
    tax_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    discount_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)
    discount_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    discount_type: Mapped[Optional[DiscountType]] = Column(
        discount_type_enum,
        nullable=True,
    )

    project_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    task_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    category: Mapped[Optional[str]] = Column(String(100), nullable=True)

    # Time tracking
    hours: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    period_start: Mapped[Optional[date]] = Column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = Column(Date, nullable=True)

    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base):
    """
    A single payment applied against an invoice.

    Payments are append-only: there is no update path, and they disappear
    only when their invoice is deleted.
    """

    __tablename__ = "invoice_payments"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = Column(Money, nullable=False)
    payment_date: Mapped[date] = Column(Date, nullable=False)
    method: Mapped[str] = Column(String(50), nullable=False, comment="bank, card, cash, check, ...")
    reference: Mapped[Optional[str]] = Column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    created_by_user_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")


class InvoiceEmailHistory(Base):
    """Audit trail of invoice deliveries, views and payment reminders."""

    __tablename__ = "invoice_email_history"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[EmailEventType] = Column(
        SQLEnum(EmailEventType, name="emaileventtype", values_callable=_enum_values),
        nullable=False,
    )
    recipient: Mapped[Optional[str]] = Column(String(255), nullable=True)
    subject: Mapped[Optional[str]] = Column(String(500), nullable=True)
    reminder_type: Mapped[Optional[str]] = Column(String(50), nullable=True)
    days_overdue: Mapped[Optional[int]] = Column(Integer, nullable=True)
    occurred_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="email_history")


class InvoiceNumberSequence(Base):
    """
    Per-organization, per-month invoice number counter.

    WHY: Invoice numbers must be unique even with several API workers
    creating invoices at once. The counter row is locked (SELECT ... FOR
    UPDATE) while the next value is taken, so numbers are issued inside the
    same transaction that inserts the invoice.
    """

    __tablename__ = "invoice_number_sequences"
    __table_args__ = (
        UniqueConstraint("org_id", "period", name="uq_invoice_sequences_org_period"),
    )

    id: Mapped[int] = Column(Integer, primary_key=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    period: Mapped[str] = Column(String(6), nullable=False, comment="YYYYMM")
    last_value: Mapped[int] = Column(Integer, nullable=False, default=0)
