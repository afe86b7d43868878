"""
Client model.

WHAT: A customer of the agency; invoices, projects and transactions hang off it.

WHY: Invoices must always name who is billed. Keeping clients in their own
table (rather than free text on the invoice) lets reporting group revenue
per client and lets recurring templates keep billing the same customer.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship, Mapped

from crm.models.base import Base

if TYPE_CHECKING:
    from crm.models.organization import Organization


class Client(Base):
    """
    Agency client.

    Attributes:
        id: Primary key
        org_id: Owning organization
        name: Contact or company display name
        email: Billing e-mail address (recipient of invoice e-mails)
        company: Legal company name, if different from name
        is_active: Inactive clients are hidden from pickers but keep history
    """

    __tablename__ = "clients"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    org_id: Mapped[int] = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = Column(String(255), nullable=False)
    email: Mapped[Optional[str]] = Column(String(255), nullable=True)
    company: Mapped[Optional[str]] = Column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = Column(String(50), nullable=True)
    address: Mapped[Optional[str]] = Column(Text, nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="clients")

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name={self.name})>"
