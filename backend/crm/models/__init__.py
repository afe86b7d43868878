"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from crm.models.base import Base, TimestampMixin, PrimaryKeyMixin
from crm.models.organization import Organization
from crm.models.user import User, UserRole
from crm.models.client import Client
from crm.models.project import Project, ProjectStatus
from crm.models.project_activity import ProjectActivity, ProjectActivityType
from crm.models.invoice import (
    Invoice,
    InvoiceStatus,
    InvoiceLineItem,
    InvoicePayment,
    InvoiceEmailHistory,
    InvoiceNumberSequence,
    DiscountType,
    EmailEventType,
)
from crm.models.recurring_invoice import RecurringInvoiceTemplate, RecurrenceInterval
from crm.models.transaction import Transaction, TransactionType, TransactionStatus
from crm.models.budget import ProjectBudget, BudgetCategory, BudgetExpense, BudgetHistory
from crm.models.task import Task, TaskStatus, TaskPriority, TaskFrequency, RecurringTask

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Organization",
    "User",
    "UserRole",
    "Client",
    "Project",
    "ProjectStatus",
    "ProjectActivity",
    "ProjectActivityType",
    "Invoice",
    "InvoiceStatus",
    "InvoiceLineItem",
    "InvoicePayment",
    "InvoiceEmailHistory",
    "InvoiceNumberSequence",
    "DiscountType",
    "EmailEventType",
    "RecurringInvoiceTemplate",
    "RecurrenceInterval",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "ProjectBudget",
    "BudgetCategory",
    "BudgetExpense",
    "BudgetHistory",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "TaskFrequency",
    "RecurringTask",
]
