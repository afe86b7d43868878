"""
Base model class for all SQLAlchemy models.

WHY: Centralizing common model functionality (timestamps, ID) in a base class
ensures consistency across all models and reduces code duplication.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase


# Column types shared by every financial table
# WHY: One definition keeps money and percentage precision identical
# across invoices, payments, transactions and budgets.
Money = Numeric(12, 2)
Rate = Numeric(7, 3)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    WHY: DeclarativeBase provides the foundation for SQLAlchemy 2.0 models
    with improved type hints and async support.
    """

    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    WHY: Most models need timestamp tracking for audit trails and debugging.
    """

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PrimaryKeyMixin:
    """Mixin to add an auto-incrementing integer primary key to models."""

    id = Column(Integer, primary_key=True, index=True)
