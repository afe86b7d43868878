"""
Project activity log model.

WHAT: One row per thing that happened on a project: created, renamed,
status changed, or a note someone posted.

WHY: The project page shows a timeline so the team can see who moved the
project along and when, without digging through the audit trail of every
table.

HOW: Rows are append-only. The actor's name is copied onto the row so the
timeline still reads correctly after the user is removed (user_id is then
set to NULL).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped

from crm.models.base import Base


class ProjectActivityType(str, Enum):
    """
    Activity types recorded by the API itself.

    Callers may post other types (for example "meeting" or "call"); these
    are the ones the project endpoints write on their own.
    """

    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    NOTE = "note"


class ProjectActivity(Base):
    """
    Project timeline entry.

    Attributes:
        activity_type: Free-form type; see ProjectActivityType for the built-in ones
        description: Human-readable sentence shown in the timeline
        user_id: Actor, NULL for system entries or removed users
        user_name: Actor name at the time of the activity
        details: Type-specific data (old/new status, changed fields)
    """

    __tablename__ = "project_activities"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )

    activity_type: Mapped[str] = Column(String(50), nullable=False)
    description: Mapped[str] = Column(Text, nullable=False)

    user_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    user_name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    details: Mapped[Optional[Dict[str, Any]]] = Column(JSON, nullable=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_project_activities_project_created", "project_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProjectActivity(id={self.id}, project_id={self.project_id}, "
            f"type={self.activity_type})>"
        )
