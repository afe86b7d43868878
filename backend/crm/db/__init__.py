"""Database package"""

from crm.db.session import AsyncSessionLocal, engine, get_db
from crm.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
