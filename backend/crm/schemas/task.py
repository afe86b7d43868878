"""
Task and recurring task schemas.

WHAT: Request/response models for project tasks, recurring task templates and
the recurring generation endpoints.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from crm.models.task import TaskStatus, TaskPriority, TaskFrequency


def _check_weekdays(value: Optional[List[int]]) -> Optional[List[int]]:
    if value is None:
        return value
    if any(day < 0 or day > 6 for day in value):
        raise ValueError("days_of_week values must be between 0 (Monday) and 6 (Sunday)")
    return sorted(set(value))


# ============================================================================
# Tasks
# ============================================================================


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    estimated_hours: Optional[Decimal] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    estimated_hours: Optional[Decimal] = Field(default=None, ge=0)
    actual_hours: Optional[Decimal] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    recurring_task_id: Optional[int]
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    due_date: date
    assigned_to: Optional[str]
    estimated_hours: Optional[float]
    actual_hours: Optional[float]
    tags: List[str]
    completed_at: Optional[datetime]
    is_overdue: bool
    created_at: datetime
    updated_at: datetime


class TaskListResponse(BaseModel):
    items: List[TaskResponse]
    total: int
    skip: int
    limit: int
    summary: Dict[str, int] = Field(description="Counts per status plus total and overdue")


# ============================================================================
# Recurring tasks
# ============================================================================


class RecurringTaskCreate(BaseModel):
    """
    Schema for creating a recurring task template.

    days_of_week only applies to weekly templates (Monday = 0);
    day_of_month only to monthly ones.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    frequency: TaskFrequency
    interval: int = Field(default=1, ge=1, le=365)
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[Decimal] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)

    check_weekdays = field_validator("days_of_week")(_check_weekdays)

    @model_validator(mode="after")
    def check_dates(self) -> "RecurringTaskCreate":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringTaskUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    frequency: Optional[TaskFrequency] = None
    interval: Optional[int] = Field(default=None, ge=1, le=365)
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    assigned_to: Optional[str] = Field(default=None, max_length=255)
    priority: Optional[TaskPriority] = None
    estimated_hours: Optional[Decimal] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None

    check_weekdays = field_validator("days_of_week")(_check_weekdays)


class RecurringTaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    description: Optional[str]
    frequency: TaskFrequency
    interval: int
    days_of_week: Optional[List[int]]
    day_of_month: Optional[int]
    start_date: date
    end_date: Optional[date]
    next_due: date
    last_generated: Optional[datetime]
    is_active: bool
    assigned_to: Optional[str]
    priority: TaskPriority
    estimated_hours: Optional[float]
    tags: List[str]
    created_at: datetime
    updated_at: datetime


class RecurringTaskGenerateResponse(BaseModel):
    generated: int
    tasks: List[TaskResponse]


class RecurringTaskStatusResponse(BaseModel):
    ready_to_generate: int
    recent_generated: List[TaskResponse]
