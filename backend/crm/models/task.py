"""
Task and recurring task models.

WHAT: Project tasks and the templates that generate them on a schedule.

WHY: Agencies repeat a lot of work on a cadence (weekly reports, monthly
SEO audits). A RecurringTask holds the blueprint and schedule; each due
occurrence becomes an ordinary Task, which is what people actually work on.

HOW: Task carries (recurring_task_id, due_date) with a unique constraint so
that two overlapping generation runs can never create the same occurrence
twice.
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import List, Optional
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
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped

from crm.models.base import Base, Money


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def _enum_values(enum) -> List[str]:
    return [e.value for e in enum]


# WHY: Shared by tasks and recurring_tasks so the database enum is declared once
task_priority_enum = SQLEnum(TaskPriority, name="taskpriority", values_callable=_enum_values)


class RecurringTask(Base):
    """
    Recurring task template.

    Attributes:
        frequency / interval: e.g. weekly with interval 2 means every other week
        days_of_week: Weekly only; weekday numbers, Monday = 0
        day_of_month: Monthly only; clamped to the month's last day when short
        next_due: Next occurrence to generate; only ever moves forward
        last_generated: When the scheduler last produced a task from this template
    """

    __tablename__ = "recurring_tasks"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)

    frequency: Mapped[TaskFrequency] = Column(
        SQLEnum(TaskFrequency, name="taskfrequency", values_callable=_enum_values),
        nullable=False,
    )
    interval: Mapped[int] = Column(Integer, nullable=False, default=1)
    days_of_week: Mapped[Optional[List[int]]] = Column(JSON, nullable=True)
    day_of_month: Mapped[Optional[int]] = Column(Integer, nullable=True)

    start_date: Mapped[date] = Column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = Column(Date, nullable=True)
    next_due: Mapped[date] = Column(Date, nullable=False, index=True)
    last_generated: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True, index=True)

    assigned_to: Mapped[Optional[str]] = Column(String(255), nullable=True)
    priority: Mapped[TaskPriority] = Column(
        task_priority_enum, nullable=False, default=TaskPriority.MEDIUM
    )
    estimated_hours: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    tags: Mapped[List[str]] = Column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Task(Base):
    """A unit of project work, created manually or from a recurring template."""

    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("recurring_task_id", "due_date", name="uq_tasks_recurring_occurrence"),
    )

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recurring_task_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("recurring_tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    title: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    status: Mapped[TaskStatus] = Column(
        SQLEnum(TaskStatus, name="taskstatus", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.PENDING,
        index=True,
    )
    priority: Mapped[TaskPriority] = Column(
        task_priority_enum, nullable=False, default=TaskPriority.MEDIUM
    )
    due_date: Mapped[date] = Column(Date, nullable=False)
    assigned_to: Mapped[Optional[str]] = Column(String(255), nullable=True)
    estimated_hours: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    actual_hours: Mapped[Optional[Decimal]] = Column(Money, nullable=True)
    tags: Mapped[List[str]] = Column(JSON, nullable=False, default=list)
    completed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def is_overdue(self) -> bool:
        if self.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
            return False
        return self.due_date < date.today()
