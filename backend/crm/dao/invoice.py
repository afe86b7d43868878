"""
Invoice Data Access Object (DAO).

WHAT: Database operations for invoices, their payments, e-mail history and
the invoice number counter.

WHY: The DAO pattern:
1. Separates data access from business logic
2. Enforces org-scoping for multi-tenancy
3. Encapsulates the row locks that keep payment application and number
   issuance correct under concurrent requests

HOW: Extends BaseDAO with invoice-specific queries:
- Loading an invoice with its collections, optionally locked FOR UPDATE
- Filtered listing and aggregate statistics
- Overdue sweep candidates
- Transactional invoice number sequence
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.dao.base import BaseDAO
from crm.models.invoice import (
    Invoice,
    InvoiceStatus,
    InvoicePayment,
    InvoiceEmailHistory,
    InvoiceNumberSequence,
)


# Issued, nothing paid yet: the only statuses the overdue sweep moves.
# A partial invoice stays partial until it is settled.
OVERDUE_CANDIDATE_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.VIEWED)
# Statuses that still expect money
UNPAID_STATUSES = (
    InvoiceStatus.SENT,
    InvoiceStatus.VIEWED,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
)


def _money(value) -> Decimal:
    # WHY: SQLite sums NUMERIC as float; quantize so 0.1 + 0.2 reads back as 0.30
    return Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class InvoiceDAO(BaseDAO[Invoice]):
    """
    Data Access Object for Invoice model.

    WHAT: Provides CRUD and query operations for invoices.

    HOW: Extends BaseDAO with invoice-specific methods. Collections on
    Invoice are loaded with selectin, so every method returning invoices
    returns them fully populated.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Invoice, session)

    async def get_for_org(
        self,
        invoice_id: int,
        org_id: int,
        for_update: bool = False,
    ) -> Optional[Invoice]:
        """
        Load one invoice with line items, payments and history.

        WHAT: Org-scoped lookup that always reflects the database state.

        WHY: populate_existing refreshes an instance already in the identity
        map (e.g. after payments were inserted in this session); for_update
        takes a row lock so concurrent payments on the same invoice are
        serialized.

        Args:
            invoice_id: Invoice ID
            org_id: Organization ID for security
            for_update: Lock the invoice row until the transaction ends

        Returns:
            Invoice if found and belongs to org, None otherwise
        """
        query = (
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.org_id == org_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_invoices(
        self,
        org_id: int,
        status: Optional[InvoiceStatus] = None,
        client_id: Optional[int] = None,
        project_id: Optional[int] = None,
        unpaid_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Invoice], int]:
        """
        List invoices with optional filters.

        Returns:
            (invoices ordered by issue date desc, total matching count)
        """
        conditions = [Invoice.org_id == org_id]
        if status is not None:
            conditions.append(Invoice.status == status)
        if client_id is not None:
            conditions.append(Invoice.client_id == client_id)
        if project_id is not None:
            conditions.append(Invoice.project_id == project_id)
        if unpaid_only:
            conditions.append(Invoice.status.in_(UNPAID_STATUSES))

        total = await self.session.scalar(
            select(func.count()).select_from(Invoice).where(*conditions)
        )
        result = await self.session.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def get_by_invoice_number(self, invoice_number: str, org_id: int) -> Optional[Invoice]:
        result = await self.session.execute(
            select(Invoice).where(
                Invoice.invoice_number == invoice_number,
                Invoice.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_template_occurrence(
        self,
        template_id: int,
        occurrence: date,
    ) -> Optional[Invoice]:
        """Invoice already generated for a recurring template occurrence, if any."""
        result = await self.session.execute(
            select(Invoice).where(
                Invoice.recurring_template_id == template_id,
                Invoice.recurrence_date == occurrence,
            )
        )
        return result.scalar_one_or_none()

    async def get_overdue_candidates(
        self,
        today: date,
        org_id: Optional[int] = None,
    ) -> List[Invoice]:
        """
        Sent or viewed invoices whose due date has passed.

        WHAT: Candidates for the overdue sweep.

        WHY: Runs across every organization from the scheduler, or for one
        organization from the API; rows are locked so a payment being applied
        at the same moment wins or waits instead of being overwritten.
        """
        query = select(Invoice).where(
            Invoice.status.in_(OVERDUE_CANDIDATE_STATUSES),
            Invoice.due_date.is_not(None),
            Invoice.due_date < today,
        )
        if org_id is not None:
            query = query.where(Invoice.org_id == org_id)
        result = await self.session.execute(query.with_for_update())
        return list(result.scalars().all())

    async def count_by_status(self, org_id: int) -> Dict[str, int]:
        """
        Get invoice counts grouped by status.

        Returns:
            Dict mapping status value to count (every status present)
        """
        result = await self.session.execute(
            select(Invoice.status, func.count(Invoice.id))
            .where(Invoice.org_id == org_id)
            .group_by(Invoice.status)
        )
        counts = {s.value: 0 for s in InvoiceStatus}
        for status, count in result.all():
            counts[status.value] = count
        return counts

    async def calculate_total_outstanding(self, org_id: int) -> Decimal:
        """
        Total still owed across unpaid, non-cancelled invoices.

        WHY: Used for the dashboard and cash-flow reporting.
        """
        result = await self.session.execute(
            select(func.coalesce(func.sum(Invoice.total - Invoice.amount_paid), 0)).where(
                Invoice.org_id == org_id,
                Invoice.status.in_(UNPAID_STATUSES),
            )
        )
        return _money(result.scalar_one())

    async def calculate_total_paid(self, org_id: int) -> Decimal:
        """Total received across all invoices of the organization."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(Invoice.amount_paid), 0)).where(
                Invoice.org_id == org_id,
            )
        )
        return _money(result.scalar_one())

    async def next_sequence_value(self, org_id: int, period: str, prefix: str) -> int:
        """
        Issue the next invoice number sequence value for an org and month.

        WHAT: Increments the (org_id, period) counter and returns the new value.

        WHY: The counter row is locked FOR UPDATE so two transactions cannot
        take the same number; the first invoice of a month creates the row
        inside a savepoint, and a concurrent creator that loses the insert
        race falls back to locking the winner's row.

        Args:
            org_id: Organization ID
            period: "YYYYMM"
            prefix: Invoice number prefix, used to seed a missing counter
                from invoices that already exist for the period

        Returns:
            The sequence value to format into the invoice number
        """
        locked = (
            select(InvoiceNumberSequence)
            .where(
                InvoiceNumberSequence.org_id == org_id,
                InvoiceNumberSequence.period == period,
            )
            .with_for_update()
        )
        sequence = (await self.session.execute(locked)).scalar_one_or_none()

        if sequence is None:
            existing = await self.session.scalar(
                select(func.count(Invoice.id)).where(
                    Invoice.org_id == org_id,
                    Invoice.invoice_number.like(f"{prefix}-{period}-%"),
                )
            )
            try:
                async with self.session.begin_nested():
                    sequence = InvoiceNumberSequence(
                        org_id=org_id, period=period, last_value=int(existing or 0)
                    )
                    self.session.add(sequence)
            except IntegrityError:
                sequence = (await self.session.execute(locked)).scalar_one()

        sequence.last_value += 1
        await self.session.flush()
        return sequence.last_value


class InvoicePaymentDAO(BaseDAO[InvoicePayment]):
    """Append-only access to invoice payments."""

    def __init__(self, session: AsyncSession):
        super().__init__(InvoicePayment, session)

    async def list_for_invoice(self, invoice_id: int, org_id: int) -> List[InvoicePayment]:
        """Payments for an invoice, most recent payment date first."""
        result = await self.session.execute(
            select(InvoicePayment)
            .where(
                InvoicePayment.invoice_id == invoice_id,
                InvoicePayment.org_id == org_id,
            )
            .order_by(InvoicePayment.payment_date.desc(), InvoicePayment.id.desc())
        )
        return list(result.scalars().all())

    async def sum_for_invoice(self, invoice_id: int) -> Decimal:
        """
        Sum of all payments recorded against an invoice.

        WHY: The overpayment guard checks against the payments table itself,
        not the cached invoice.amount_paid, so a drifted cache can never
        allow an overpayment.
        """
        result = await self.session.execute(
            select(func.coalesce(func.sum(InvoicePayment.amount), 0)).where(
                InvoicePayment.invoice_id == invoice_id
            )
        )
        return _money(result.scalar_one())


class InvoiceEmailHistoryDAO(BaseDAO[InvoiceEmailHistory]):
    """Append-only access to invoice delivery history."""

    def __init__(self, session: AsyncSession):
        super().__init__(InvoiceEmailHistory, session)

    async def list_for_invoice(
        self,
        invoice_id: int,
        event_types: Optional[Sequence[str]] = None,
    ) -> List[InvoiceEmailHistory]:
        query = select(InvoiceEmailHistory).where(InvoiceEmailHistory.invoice_id == invoice_id)
        if event_types:
            query = query.where(InvoiceEmailHistory.event_type.in_(event_types))
        result = await self.session.execute(
            query.order_by(InvoiceEmailHistory.occurred_at.desc(), InvoiceEmailHistory.id.desc())
        )
        return list(result.scalars().all())
