"""
Project budget models.

WHAT: Budget header, categories, expenses and change history for a project.

WHY: Agencies track spend against what the client agreed to. Each project has
at most one budget; categories split it into allocations (design, ads,
hosting, ...); expenses are booked against the project and optionally a
category; every change is written to budget_history so the budget's evolution
can be reviewed later.

HOW: BudgetCategory.spent_amount is a running total maintained by
BudgetService whenever an expense in that category is added, changed or
removed, so reading a category never needs an aggregate query.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped

from crm.models.base import Base, Money


class ProjectBudget(Base):
    """Total budget of a project (one row per project)."""

    __tablename__ = "project_budgets"
    __table_args__ = (UniqueConstraint("project_id", name="uq_project_budgets_project"),)

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    total_budget: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    currency: Mapped[str] = Column(String(3), nullable=False, default="USD")

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class BudgetCategory(Base):
    """
    An allocation within a project budget.

    Names are unique per project, ignoring case (enforced in BudgetService).
    """

    __tablename__ = "budget_categories"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = Column(String(100), nullable=False)
    allocated_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    spent_amount: Mapped[Decimal] = Column(Money, nullable=False, default=0)
    alert_threshold: Mapped[int] = Column(
        Integer, nullable=False, default=80, comment="Percent of allocation that triggers an alert"
    )
    color: Mapped[str] = Column(String(7), nullable=False, default="#3B82F6")
    description: Mapped[Optional[str]] = Column(Text, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def utilization_percentage(self) -> Decimal:
        """spent / allocated * 100, or 0 when nothing is allocated."""
        from crm.services.invoice_calculator import utilization_percentage

        return utilization_percentage(self.spent_amount, self.allocated_amount)

    @property
    def is_over_threshold(self) -> bool:
        return self.utilization_percentage >= Decimal(self.alert_threshold or 0)


class BudgetExpense(Base):
    """A cost booked against a project budget."""

    __tablename__ = "budget_expenses"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("budget_categories.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    description: Mapped[str] = Column(Text, nullable=False)
    amount: Mapped[Decimal] = Column(Money, nullable=False)
    expense_date: Mapped[date] = Column(Date, nullable=False)
    receipt_url: Mapped[Optional[str]] = Column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    category: Mapped[Optional["BudgetCategory"]] = relationship("BudgetCategory", lazy="selectin")

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    @property
    def category_color(self) -> Optional[str]:
        return self.category.color if self.category else None


class BudgetHistory(Base):
    """Append-only log of budget changes."""

    __tablename__ = "budget_history"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    change_type: Mapped[str] = Column(
        String(50),
        nullable=False,
        comment="budget_created, budget_update, category_*, expense_*",
    )
    field_changed: Mapped[Optional[str]] = Column(String(50), nullable=True)
    old_value: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    new_value: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    changed_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
