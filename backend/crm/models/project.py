"""
Project model for tracking client work.

WHAT: SQLAlchemy model representing a piece of agency work for a client.

WHY: Projects are the anchor for:
1. Budgets, budget categories and expenses
2. Tasks and recurring task templates
3. Optional attribution of invoices and transactions

HOW: Uses SQLAlchemy 2.0 with:
- Organization-scoped queries (multi-tenancy)
- Status enum for lifecycle management
- Optional client relationship
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional, TYPE_CHECKING
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
from sqlalchemy.orm import relationship, Mapped

from crm.models.base import Base

if TYPE_CHECKING:
    from crm.models.organization import Organization
    from crm.models.client import Client


class ProjectStatus(str, Enum):
    """
    Project lifecycle status.

    - PLANNING: Scoping, no work started
    - ACTIVE: Work in progress
    - ON_HOLD: Temporarily paused
    - COMPLETED: All work finished
    - CANCELLED: Terminated before completion
    """

    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Project(Base):
    """
    Agency project model.

    Attributes:
        id: Primary key
        org_id: Organization that owns this project
        client_id: Client the work is for (optional for internal projects)
        name: Project name/title
        description: Detailed project description
        status: Current project status
        start_date: When work started
        due_date: Target completion date
    """

    __tablename__ = "projects"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = Column(String(255), nullable=False, comment="Project name/title")
    description: Mapped[Optional[str]] = Column(Text, nullable=True)

    status: Mapped[ProjectStatus] = Column(
        SQLEnum(
            ProjectStatus,
            name="projectstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=ProjectStatus.ACTIVE,
        comment="Current project status",
    )

    start_date: Mapped[Optional[date]] = Column(Date, nullable=True)
    due_date: Mapped[Optional[date]] = Column(Date, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="projects")
    client: Mapped[Optional["Client"]] = relationship("Client")

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name}, status={self.status})>"
