"""
Transaction model for income and expense bookkeeping.

WHAT: One money movement in or out of the agency.

WHY: Transactions are independent of the invoice ledger but feed the same
financial reporting: a received invoice payment can be booked as income
(invoice_id set), while rent or software subscriptions are expenses with
no invoice at all.
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped

from crm.models.base import Base, Money


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    """Only COMPLETED transactions count towards summaries."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Transaction(Base):
    """Income or expense entry, optionally linked to a project, client or invoice."""

    __tablename__ = "transactions"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type: Mapped[TransactionType] = Column(
        SQLEnum(
            TransactionType,
            name="transactiontype",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = Column(Money, nullable=False)
    category: Mapped[str] = Column(String(100), nullable=False, index=True)
    description: Mapped[str] = Column(Text, nullable=False)
    transaction_date: Mapped[date] = Column(Date, nullable=False, index=True)

    status: Mapped[TransactionStatus] = Column(
        SQLEnum(
            TransactionStatus,
            name="transactionstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )

    project_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    client_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )

    payment_method: Mapped[Optional[str]] = Column(String(50), nullable=True)
    reference_number: Mapped[Optional[str]] = Column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, type={self.type}, amount={self.amount})>"
