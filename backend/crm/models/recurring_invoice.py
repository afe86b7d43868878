"""
Recurring invoice template model.

WHAT: A template for generating invoices for a client on a fixed schedule.

WHY: Retainers and subscriptions are billed the same way every period.
A template stores the billing content once (line items, tax, discount) plus
the schedule (interval, next generation date, optional end date); the
scheduler turns each due occurrence into a regular draft invoice.

HOW: Line items are stored as a JSON array because they are only a blueprint;
each generated invoice gets its own InvoiceLineItem rows.
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped

from crm.models.base import Base, Money, Rate


class RecurrenceInterval(str, Enum):
    """
    How often a recurring invoice template produces an invoice.

    CUSTOM uses the template's custom_days.
    """

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class RecurringInvoiceTemplate(Base):
    """
    Recurring invoice template.

    Attributes:
        start_date: First occurrence; also anchors the day of month for
            monthly, quarterly and yearly schedules
        next_generation_date: Next occurrence to generate; only ever moves forward
        last_generated_date: Occurrence date of the most recent generated invoice
        end_date: Last date an occurrence may fall on (inclusive)
        active: Inactive templates are skipped by the scheduler
        due_days: Days between an occurrence and the generated invoice's due date
    """

    __tablename__ = "recurring_invoice_templates"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[int] = Column(
        Integer,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    active: Mapped[bool] = Column(Boolean, nullable=False, default=True, index=True)

    recurrence_interval: Mapped[RecurrenceInterval] = Column(
        SQLEnum(
            RecurrenceInterval,
            name="recurrenceinterval",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=RecurrenceInterval.MONTHLY,
    )
    custom_days: Mapped[Optional[int]] = Column(Integer, nullable=True)

    start_date: Mapped[date] = Column(Date, nullable=False)
    next_generation_date: Mapped[date] = Column(Date, nullable=False, index=True)
    last_generated_date: Mapped[Optional[date]] = Column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = Column(Date, nullable=True)

    line_items: Mapped[List[Dict[str, Any]]] = Column(JSON, nullable=False, default=list)
    tax_rate: Mapped[Decimal] = Column(Rate, nullable=False, default=0)
    discount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    due_days: Mapped[int] = Column(Integer, nullable=False, default=30)
    currency: Mapped[str] = Column(String(3), nullable=False, default="USD")
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    terms: Mapped[Optional[str]] = Column(Text, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<RecurringInvoiceTemplate(id={self.id}, name={self.name}, "
            f"next={self.next_generation_date})>"
        )
