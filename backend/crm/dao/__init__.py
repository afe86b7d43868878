"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from crm.dao.base import BaseDAO
from crm.dao.user import UserDAO
from crm.dao.client import ClientDAO
from crm.dao.project import ProjectDAO
from crm.dao.project_activity import ProjectActivityDAO
from crm.dao.invoice import InvoiceDAO, InvoicePaymentDAO, InvoiceEmailHistoryDAO
from crm.dao.recurring_invoice import RecurringInvoiceTemplateDAO
from crm.dao.transaction import TransactionDAO, TransactionFilters
from crm.dao.budget import (
    ProjectBudgetDAO,
    BudgetCategoryDAO,
    BudgetExpenseDAO,
    BudgetHistoryDAO,
)
from crm.dao.task import TaskDAO, RecurringTaskDAO

__all__ = [
    "BaseDAO",
    "UserDAO",
    "ClientDAO",
    "ProjectDAO",
    "ProjectActivityDAO",
    "InvoiceDAO",
    "InvoicePaymentDAO",
    "InvoiceEmailHistoryDAO",
    "RecurringInvoiceTemplateDAO",
    "TransactionDAO",
    "TransactionFilters",
    "ProjectBudgetDAO",
    "BudgetCategoryDAO",
    "BudgetExpenseDAO",
    "BudgetHistoryDAO",
    "TaskDAO",
    "RecurringTaskDAO",
]
