"""
Invoice Service.

WHAT: Business logic for the invoice ledger: creating and editing invoices,
applying payments, and moving invoices through their workflow.

WHY: The service layer:
1. Runs every monetary derivation through invoice_calculator, so stored
   totals always agree with the line items
2. Applies payments under a row lock inside the request transaction, so two
   concurrent payments can never both pass the overpayment check
3. Enforces workflow rules (paid and cancelled invoices are closed records)
4. Issues invoice numbers from a database counter, not from process memory

HOW: Orchestrates InvoiceDAO, InvoicePaymentDAO and InvoiceEmailHistoryDAO.
All writes happen in the caller's session; the request dependency commits or
rolls back the whole operation.
"""

import logging
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.config import settings
from crm.core.exceptions import (
    InvalidStateTransitionError,
    OverpaymentError,
    ResourceNotFoundError,
    ValidationError,
)
from crm.dao.client import ClientDAO
from crm.dao.invoice import InvoiceDAO, InvoicePaymentDAO, InvoiceEmailHistoryDAO
from crm.dao.project import ProjectDAO
from crm.models.invoice import (
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    InvoiceStatus,
    EmailEventType,
)
from crm.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    LineItemCreate,
    PaymentCreate,
    ReminderCreate,
)
from crm.services.invoice_calculator import (
    LineItemInput,
    InvoiceTotals,
    calculate_invoice_totals,
    calculate_due_date,
    calculate_payment_status,
    can_send_reminder,
    days_overdue,
    format_invoice_number,
    max_payment_allowed,
    next_reminder_date,
    round_money,
)


logger = logging.getLogger(__name__)


# Fields whose change requires re-deriving every amount
FINANCIAL_FIELDS = {
    "line_items",
    "tax_rate",
    "discount",
    "discount_rate",
    "discount_type",
    "shipping_amount",
    "shipping_tax_rate",
}

CREATABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.SENT)


def _line_input_from_row(row: InvoiceLineItem) -> LineItemInput:
    return LineItemInput(
        quantity=row.quantity,
        rate=row.rate,
        amount=row.amount if row.amount_overridden else None,
        amount_overridden=row.amount_overridden,
        tax_rate=row.tax_rate or Decimal(0),
        discount_rate=row.discount_rate or Decimal(0),
        discount_amount=row.discount_amount or Decimal(0),
        discount_type=row.discount_type,
    )


def _build_line_items(
    items: Sequence[LineItemCreate],
) -> Tuple[List[LineItemInput], List[Dict[str, Any]]]:
    """
    Split request line items into calculator inputs and descriptive fields.

    Returns:
        (calculator inputs, per-item kwargs for InvoiceLineItem without amounts)
    """
    inputs = []
    rows = []
    for position, item in enumerate(items):
        data = item.model_dump()
        inputs.append(LineItemInput.from_mapping(data))
        rows.append(
            {
                "position": position,
                "description": item.description,
                "quantity": item.quantity,
                "rate": item.rate,
                "amount_overridden": item.amount_overridden and item.amount is not None,
                "tax_rate": item.tax_rate,
                "discount_rate": item.discount_rate,
                "discount_type": item.discount_type,
                "project_id": item.project_id,
                "task_id": item.task_id,
                "category": item.category,
                "hours": item.hours,
                "period_start": item.period_start,
                "period_end": item.period_end,
                "notes": item.notes,
            }
        )
    return inputs, rows


def _apply_totals(invoice: Invoice, totals: InvoiceTotals) -> None:
    invoice.subtotal = totals.subtotal
    invoice.tax_amount = totals.tax_amount
    invoice.discount_amount = totals.discount_amount
    invoice.shipping_amount = totals.shipping_amount
    invoice.shipping_tax_amount = totals.shipping_tax_amount
    invoice.total = totals.total


def _apply_payment_status(invoice: Invoice, payments: Sequence[Decimal]) -> None:
    """
    Re-derive amount_paid and status from the invoice's payment amounts.

    WHY: Used after every change to the total or the payments. It also
    settles an issued zero-total invoice, which no payment could close
    because payments must be greater than zero.
    """
    result = calculate_payment_status(invoice.total, payments, invoice.status)
    invoice.amount_paid = result.amount_paid
    if result.status == InvoiceStatus.PAID and invoice.paid_at is None:
        invoice.paid_at = datetime.utcnow()
    invoice.status = result.status


class InvoiceService:
    """
    Service for invoice ledger operations.

    WHAT: Provides business logic for invoices and payments.

    HOW: Coordinates DAOs and enforces business rules. Methods raise
    AppException subclasses; they never commit.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize InvoiceService.

        Args:
            session: Async database session
        """
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.payment_dao = InvoicePaymentDAO(session)
        self.history_dao = InvoiceEmailHistoryDAO(session)
        self.client_dao = ClientDAO(session)
        self.project_dao = ProjectDAO(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_invoice(
        self,
        invoice_id: int,
        org_id: int,
        for_update: bool = False,
    ) -> Invoice:
        """
        Load an invoice of the organization.

        Raises:
            ResourceNotFoundError: If missing or owned by another organization
        """
        invoice = await self.invoice_dao.get_for_org(invoice_id, org_id, for_update=for_update)
        if not invoice:
            raise ResourceNotFoundError(
                message=f"Invoice with id {invoice_id} not found",
                resource_type="Invoice",
                resource_id=invoice_id,
            )
        return invoice

    async def _check_references(
        self,
        org_id: int,
        client_id: Optional[int] = None,
        project_id: Optional[int] = None,
    ) -> None:
        if client_id is not None and not await self.client_dao.get_by_id_and_org(client_id, org_id):
            raise ResourceNotFoundError(
                message=f"Client with id {client_id} not found",
                resource_type="Client",
                resource_id=client_id,
            )
        if project_id is not None and not await self.project_dao.get_by_id_and_org(
            project_id, org_id
        ):
            raise ResourceNotFoundError(
                message=f"Project with id {project_id} not found",
                resource_type="Project",
                resource_id=project_id,
            )

    async def _issue_number(self, org_id: int, issue_date: date) -> str:
        """
        Take the next invoice number for the issue month.

        WHY: The counter row is locked for the rest of the transaction, so the
        number is unique even with several workers creating invoices.
        """
        prefix = settings.INVOICE_NUMBER_PREFIX
        period = f"{issue_date.year}{issue_date.month:02d}"
        sequence = await self.invoice_dao.next_sequence_value(org_id, period, prefix)
        return format_invoice_number(issue_date, sequence, prefix)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        org_id: int,
        data: InvoiceCreate,
        recurring_template_id: Optional[int] = None,
        recurrence_date: Optional[date] = None,
    ) -> Invoice:
        """
        Create an invoice with server-computed totals.

        WHAT: Validates references, derives all amounts from the line items,
        issues the invoice number and stores the invoice with its line items.

        Args:
            org_id: Organization ID
            data: Validated create request
            recurring_template_id: Set when generated from a recurring template
            recurrence_date: Template occurrence this invoice bills

        Returns:
            The created invoice, with collections loaded

        Raises:
            ResourceNotFoundError: If client or project is not in the organization
            ValidationError: If the initial status is not draft or sent
        """
        await self._check_references(org_id, data.client_id, data.project_id)

        status = data.status or InvoiceStatus.DRAFT
        if status not in CREATABLE_STATUSES:
            raise ValidationError(
                message="New invoices must be created as draft or sent",
                field="status",
                value=status.value,
            )

        inputs, rows = _build_line_items(data.line_items)
        totals = calculate_invoice_totals(
            inputs,
            tax_rate=data.tax_rate,
            discount=data.discount,
            discount_rate=data.discount_rate,
            discount_type=data.discount_type,
            shipping_amount=data.shipping_amount,
            shipping_tax_rate=data.shipping_tax_rate,
        )

        issue_date = data.issue_date or date.today()
        due_days = data.due_days if data.due_days is not None else settings.INVOICE_DEFAULT_DUE_DAYS
        due_date = data.due_date or calculate_due_date(issue_date, due_days)
        invoice_number = await self._issue_number(org_id, issue_date)

        invoice = Invoice(
            org_id=org_id,
            invoice_number=invoice_number,
            status=status,
            client_id=data.client_id,
            project_id=data.project_id,
            tax_rate=data.tax_rate,
            discount=data.discount,
            discount_rate=data.discount_rate,
            discount_type=data.discount_type,
            shipping_tax_rate=data.shipping_tax_rate,
            amount_paid=Decimal("0.00"),
            currency=(data.currency or settings.DEFAULT_CURRENCY).upper(),
            issue_date=issue_date,
            due_date=due_date,
            sent_at=datetime.utcnow() if status == InvoiceStatus.SENT else None,
            notes=data.notes,
            terms=data.terms,
            reminders_sent=0,
            recurring_template_id=recurring_template_id,
            recurrence_date=recurrence_date,
        )
        _apply_totals(invoice, totals)
        _apply_payment_status(invoice, [])
        invoice.line_items = [
            InvoiceLineItem(
                amount=item_totals.amount,
                tax_amount=item_totals.tax_amount,
                discount_amount=item_totals.discount_amount,
                **row,
            )
            for row, item_totals in zip(rows, totals.line_items)
        ]

        self.session.add(invoice)
        await self.session.flush()

        logger.info(
            "Created invoice %s (org=%s, total=%s, status=%s)",
            invoice_number,
            org_id,
            invoice.total,
            invoice.status.value,
        )
        return await self.get_invoice(invoice.id, org_id)

    async def update_invoice(self, invoice_id: int, org_id: int, data: InvoiceUpdate) -> Invoice:
        """
        Apply a partial update and re-derive totals when needed.

        WHAT: Merges only the provided fields. If line items, tax, discount or
        shipping changed, every derived amount is recomputed; otherwise the
        stored amounts are left untouched.

        Raises:
            ResourceNotFoundError: If the invoice (or a new client/project) is missing
            InvalidStateTransitionError: If the invoice is paid or cancelled
            ValidationError: If the new total would fall below the amount paid
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if not invoice.is_editable:
            raise InvalidStateTransitionError(
                message=f"Cannot edit a {invoice.status.value} invoice",
                current_state=invoice.status.value,
                requested_state="edit",
            )

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return invoice

        await self._check_references(org_id, changes.get("client_id"), changes.get("project_id"))

        line_items = changes.pop("line_items", None)
        for field, value in changes.items():
            if field in ("client_id", "tax_rate", "discount", "discount_rate", "discount_type",
                         "shipping_tax_rate") and value is None:
                # Explicit nulls on required columns are ignored
                continue
            if field == "currency" and value:
                value = value.upper()
            setattr(invoice, field, value)

        if invoice.due_date and invoice.issue_date and invoice.due_date < invoice.issue_date:
            raise ValidationError(message="due_date must not be before issue_date", field="due_date")

        if FINANCIAL_FIELDS.intersection(changes) or line_items is not None:
            if line_items is not None:
                inputs, rows = _build_line_items(data.line_items)
            else:
                inputs = [_line_input_from_row(row) for row in invoice.line_items]
                rows = None

            totals = calculate_invoice_totals(
                inputs,
                tax_rate=invoice.tax_rate,
                discount=invoice.discount,
                discount_rate=invoice.discount_rate,
                discount_type=invoice.discount_type,
                shipping_amount=changes.get("shipping_amount", invoice.shipping_amount),
                shipping_tax_rate=invoice.shipping_tax_rate,
            )

            paid = invoice.amount_paid or Decimal(0)
            if totals.total < paid:
                raise ValidationError(
                    message=(
                        "Invoice total cannot be less than the amount already paid "
                        f"({round_money(paid):.2f})"
                    ),
                    field="total",
                    amount_paid=float(paid),
                )

            _apply_totals(invoice, totals)
            if rows is not None:
                invoice.line_items = [
                    InvoiceLineItem(
                        amount=item_totals.amount,
                        tax_amount=item_totals.tax_amount,
                        discount_amount=item_totals.discount_amount,
                        **row,
                    )
                    for row, item_totals in zip(rows, totals.line_items)
                ]
            else:
                for row, item_totals in zip(invoice.line_items, totals.line_items):
                    row.amount = item_totals.amount
                    row.tax_amount = item_totals.tax_amount
                    row.discount_amount = item_totals.discount_amount

            _apply_payment_status(invoice, [p.amount for p in invoice.payments])

        invoice.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.info("Updated invoice %s (fields=%s)", invoice.invoice_number, sorted(changes))
        return await self.get_invoice(invoice.id, org_id)

    async def delete_invoice(self, invoice_id: int, org_id: int) -> None:
        """
        Delete a draft invoice.

        WHY: Issued invoices are financial records; they are cancelled, not
        deleted. Line items, payments and history cascade with the invoice.
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateTransitionError(
                message="Only draft invoices can be deleted",
                current_state=invoice.status.value,
                requested_state="delete",
            )
        await self.invoice_dao.delete_instance(invoice)
        logger.info("Deleted draft invoice %s (org=%s)", invoice.invoice_number, org_id)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def add_payment(
        self,
        invoice_id: int,
        org_id: int,
        data: PaymentCreate,
        user_id: Optional[int] = None,
    ) -> Tuple[InvoicePayment, Invoice]:
        """
        Apply a payment to an invoice.

        WHAT: Records the payment and updates amount_paid, status, paid_at and
        updated_at in the same transaction.

        WHY: The invoice row is locked (SELECT ... FOR UPDATE) before the prior
        payments are summed, so a concurrent payment on the same invoice waits
        for this one and then sees its amount. Sum-then-insert can therefore
        never overpay.

        Args:
            invoice_id: Invoice ID
            org_id: Organization ID
            data: Payment amount, date, method and optional reference/notes
            user_id: User recording the payment

        Returns:
            (created payment, updated invoice)

        Raises:
            ResourceNotFoundError: If invoice not found
            InvalidStateTransitionError: If the invoice is cancelled
            ValidationError: If the amount is not positive
            OverpaymentError: If the payment exceeds the remaining balance
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)

        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvalidStateTransitionError(
                message="Cannot add payment to cancelled invoice",
                current_state=invoice.status.value,
                requested_state="payment",
            )

        amount = round_money(data.amount)
        if amount <= 0:
            raise ValidationError(
                message="Payment amount must be greater than zero",
                field="amount",
            )

        current_paid = await self.payment_dao.sum_for_invoice(invoice.id)
        max_allowed = max_payment_allowed(invoice.total, current_paid)
        if amount > max_allowed:
            raise OverpaymentError(
                message=(
                    "Payment amount would exceed invoice total. "
                    f"Maximum allowed: {max_allowed:.2f}"
                ),
                max_allowed=float(max_allowed),
                amount_paid=float(current_paid),
                total=float(invoice.total),
            )

        payment = await self.payment_dao.create(
            invoice_id=invoice.id,
            org_id=org_id,
            amount=amount,
            payment_date=data.payment_date,
            method=data.method,
            reference=data.reference,
            notes=data.notes,
            created_by_user_id=user_id,
        )

        payments = await self.payment_dao.list_for_invoice(invoice.id, org_id)
        _apply_payment_status(invoice, [p.amount for p in payments])
        invoice.updated_at = datetime.utcnow()
        await self.session.flush()

        logger.info(
            "Recorded payment %s on invoice %s (amount=%s, paid=%s/%s, status=%s)",
            payment.id,
            invoice.invoice_number,
            amount,
            invoice.amount_paid,
            invoice.total,
            invoice.status.value,
        )
        return payment, invoice

    async def list_payments(self, invoice_id: int, org_id: int) -> List[InvoicePayment]:
        """Payments of an invoice, most recent payment date first."""
        invoice = await self.get_invoice(invoice_id, org_id)
        return await self.payment_dao.list_for_invoice(invoice.id, org_id)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def _record_event(
        self,
        invoice: Invoice,
        event_type: EmailEventType,
        recipient: Optional[str] = None,
        subject: Optional[str] = None,
        reminder_type: Optional[str] = None,
        overdue_days: Optional[int] = None,
    ) -> None:
        await self.history_dao.create(
            invoice_id=invoice.id,
            event_type=event_type,
            recipient=recipient or (invoice.client.email if invoice.client else None),
            subject=subject or f"Invoice {invoice.invoice_number}",
            reminder_type=reminder_type,
            days_overdue=overdue_days,
            occurred_at=datetime.utcnow(),
        )

    async def send_invoice(
        self,
        invoice_id: int,
        org_id: int,
        recipient: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Invoice:
        """
        Mark an invoice as sent and record the delivery.

        WHAT: draft -> sent, or straight to paid when the total is zero.
        Re-sending an already issued invoice records another delivery
        without changing its status.

        Raises:
            InvalidStateTransitionError: If the invoice is paid or cancelled
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise InvalidStateTransitionError(
                message=f"Cannot send a {invoice.status.value} invoice",
                current_state=invoice.status.value,
                requested_state=InvoiceStatus.SENT.value,
            )

        if invoice.status == InvoiceStatus.DRAFT:
            invoice.status = InvoiceStatus.SENT
            _apply_payment_status(invoice, [p.amount for p in invoice.payments])
        invoice.sent_at = datetime.utcnow()
        invoice.updated_at = datetime.utcnow()
        await self._record_event(invoice, EmailEventType.SENT, recipient, subject)
        await self.session.flush()

        logger.info("Sent invoice %s", invoice.invoice_number)
        return await self.get_invoice(invoice.id, org_id)

    async def mark_viewed(self, invoice_id: int, org_id: int) -> Invoice:
        """
        Record that the client opened the invoice.

        WHAT: sent -> viewed. Later statuses (partial, overdue, paid) are
        kept; only the first view sets viewed_at.

        Raises:
            InvalidStateTransitionError: If the invoice was never sent or is cancelled
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise InvalidStateTransitionError(
                message=f"Cannot mark a {invoice.status.value} invoice as viewed",
                current_state=invoice.status.value,
                requested_state=InvoiceStatus.VIEWED.value,
            )

        if invoice.status == InvoiceStatus.SENT:
            invoice.status = InvoiceStatus.VIEWED
        if invoice.viewed_at is None:
            invoice.viewed_at = datetime.utcnow()
        invoice.updated_at = datetime.utcnow()
        await self._record_event(invoice, EmailEventType.VIEWED)
        await self.session.flush()
        return await self.get_invoice(invoice.id, org_id)

    async def cancel_invoice(self, invoice_id: int, org_id: int) -> Invoice:
        """
        Void an invoice. Cancelled invoices accept no further payments.

        Raises:
            InvalidStateTransitionError: If the invoice is paid or already cancelled
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise InvalidStateTransitionError(
                message=f"Cannot cancel a {invoice.status.value} invoice",
                current_state=invoice.status.value,
                requested_state=InvoiceStatus.CANCELLED.value,
            )

        invoice.status = InvoiceStatus.CANCELLED
        invoice.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.info("Cancelled invoice %s", invoice.invoice_number)
        return await self.get_invoice(invoice.id, org_id)

    async def record_reminder(
        self,
        invoice_id: int,
        org_id: int,
        data: ReminderCreate,
        today: Optional[date] = None,
    ) -> Invoice:
        """
        Record a payment reminder sent for an open invoice.

        Raises:
            InvalidStateTransitionError: If the invoice is draft, paid or cancelled
        """
        invoice = await self.get_invoice(invoice_id, org_id, for_update=True)
        if not can_send_reminder(invoice.status):
            raise InvalidStateTransitionError(
                message=(
                    "Reminders can only be sent for sent, viewed, partial or overdue invoices"
                ),
                current_state=invoice.status.value,
                requested_state="reminder",
            )

        overdue_days = days_overdue(invoice.due_date, today)
        invoice.reminders_sent = (invoice.reminders_sent or 0) + 1
        invoice.last_reminder_at = datetime.utcnow()
        invoice.updated_at = datetime.utcnow()
        await self._record_event(
            invoice,
            EmailEventType.REMINDER,
            recipient=data.recipient,
            subject=data.subject or f"Payment reminder: invoice {invoice.invoice_number}",
            reminder_type=data.reminder_type,
            overdue_days=overdue_days,
        )
        await self.session.flush()

        logger.info(
            "Recorded %s reminder #%s for invoice %s (%s days overdue)",
            data.reminder_type,
            invoice.reminders_sent,
            invoice.invoice_number,
            overdue_days,
        )
        return await self.get_invoice(invoice.id, org_id)

    async def reminder_status(
        self,
        invoice_id: int,
        org_id: int,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Where the invoice stands in the reminder schedule.

        Returns:
            Dict matching ReminderStatusResponse
        """
        invoice = await self.get_invoice(invoice_id, org_id)
        remindable = can_send_reminder(invoice.status)
        history = await self.history_dao.list_for_invoice(
            invoice.id, event_types=[EmailEventType.REMINDER]
        )
        return {
            "invoice_id": invoice.id,
            "status": invoice.status,
            "due_date": invoice.due_date,
            "days_overdue": days_overdue(invoice.due_date, today),
            "reminders_sent": invoice.reminders_sent or 0,
            "last_reminder_at": invoice.last_reminder_at,
            "next_reminder_date": (
                next_reminder_date(invoice.due_date, invoice.reminders_sent or 0)
                if remindable and invoice.due_date
                else None
            ),
            "can_send_reminder": remindable,
            "history": history,
        }

    async def mark_overdue_invoices(
        self,
        today: Optional[date] = None,
        org_id: Optional[int] = None,
    ) -> List[Invoice]:
        """
        Move open invoices past their due date to OVERDUE.

        WHAT: sent and viewed invoices with due_date < today. Partially paid
        invoices keep their partial status.

        WHY: Called hourly by the scheduler for every organization and on
        demand through the API for one organization.

        Returns:
            Invoices that changed status
        """
        today = today or date.today()
        invoices = await self.invoice_dao.get_overdue_candidates(today, org_id)
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
            invoice.updated_at = datetime.utcnow()
        if invoices:
            await self.session.flush()
            logger.info("Marked %d invoice(s) overdue", len(invoices))
        return invoices

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_stats(self, org_id: int) -> Dict[str, Any]:
        """Counts by status, outstanding balance and total paid."""
        by_status = await self.invoice_dao.count_by_status(org_id)
        outstanding = await self.invoice_dao.calculate_total_outstanding(org_id)
        paid = await self.invoice_dao.calculate_total_paid(org_id)
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "total_outstanding": float(outstanding),
            "total_paid": float(paid),
        }
