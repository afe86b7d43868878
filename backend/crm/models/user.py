"""
User model.

WHY: Users are agency staff. Credentials live with the identity service;
this table only holds what authorization needs: role, organization and
whether the account is still active.
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from crm.models.base import Base, TimestampMixin, PrimaryKeyMixin


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    WHY: Enum ensures only valid roles can be assigned, making role-based
    access control (RBAC) more reliable.
    """

    ADMIN = "ADMIN"  # Agency owner/manager, may void and delete financial records
    MEMBER = "MEMBER"  # Team member with day-to-day access


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    User model representing agency staff.

    WHY: The org_id foreign key ensures every user belongs to exactly one
    organization (required for multi-tenant data isolation).
    """

    __tablename__ = "users"

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    role = Column(Enum(UserRole, name="userrole"), nullable=False, default=UserRole.MEMBER)

    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # WHY: is_active allows revoking access without losing attribution on payments
    is_active = Column(Boolean, default=True, nullable=False)

    organization = relationship("Organization", back_populates="users")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
