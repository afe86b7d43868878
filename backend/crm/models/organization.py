"""
Organization model.

WHY: Organizations represent multi-tenant entities in the system.
Each agency has its own isolated data (clients, projects, invoices, ...),
ensuring strong data separation between tenants.
"""

from sqlalchemy import Column, String, Text, JSON, Boolean
from sqlalchemy.orm import relationship

from crm.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Organization(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Organization model representing a tenant in the multi-tenant system.

    WHY: The org_id is used throughout the system to scope all queries and
    prevent cross-organization data access.
    """

    __tablename__ = "organizations"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Organization settings
    # WHY: JSON allows flexible per-organization configuration
    # (default currency, invoice footer text) without schema changes
    settings = Column(JSON, nullable=False, default=dict)

    # WHY: Inactive organizations are skipped by background jobs
    is_active = Column(Boolean, nullable=False, default=True)

    users = relationship("User", back_populates="organization", lazy="dynamic")
    clients = relationship("Client", back_populates="organization", lazy="dynamic")
    projects = relationship("Project", back_populates="organization", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"
