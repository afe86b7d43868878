"""
Invoice Service Tests.

WHAT: Tests for InvoiceService against an in-memory database.

WHY: The service is where the ledger rules meet storage:
- Totals and invoice numbers are derived server-side
- Payments are capped at the remaining balance
- Cancelled invoices refuse payments and leave no payment row behind
- Workflow transitions (send, view, cancel, overdue) follow the status rules

HOW: Real AsyncSession on aiosqlite; invoices are created through the
factories, which use the service itself.
"""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func

from crm.core.exceptions import (
    InvalidStateTransitionError,
    OverpaymentError,
    ResourceNotFoundError,
    ValidationError,
)
from crm.models.invoice import EmailEventType, InvoicePayment, InvoiceStatus
from crm.schemas.invoice import (
    InvoiceUpdate,
    LineItemCreate,
    PaymentCreate,
    ReminderCreate,
)
from crm.services.invoice_service import InvoiceService
from tests.factories import ClientFactory, InvoiceFactory


def _payment(amount, method: str = "bank") -> PaymentCreate:
    return PaymentCreate(amount=Decimal(str(amount)), payment_date=date(2024, 3, 15), method=method)


@pytest_asyncio.fixture
async def acme(db_session, test_org):
    return await ClientFactory.create(db_session, test_org)


@pytest.mark.asyncio
class TestCreateInvoice:
    async def test_totals_computed_server_side(self, db_session, test_org, acme):
        """
        Test the canonical 2 x 50 at 10% tax invoice.

        WHY: Clients never send totals; the stored numbers must come from the
        calculator.
        """
        invoice = await InvoiceFactory.create(db_session, test_org, acme, tax_rate=10)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.subtotal == Decimal("100.00")
        assert invoice.tax_amount == Decimal("10.00")
        assert invoice.total == Decimal("110.00")
        assert invoice.amount_paid == Decimal("0.00")
        assert len(invoice.line_items) == 1
        assert invoice.line_items[0].amount == Decimal("100.00")

    async def test_invoice_numbers_are_sequential_per_month(self, db_session, test_org, acme):
        first = await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 3, 1))
        second = await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 3, 20))
        april = await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 4, 2))

        assert first.invoice_number == "INV-202403-001"
        assert second.invoice_number == "INV-202403-002"
        assert april.invoice_number == "INV-202404-001"

    async def test_default_due_date(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 1, 15))
        assert invoice.due_date == date(2024, 2, 14)

    async def test_client_from_other_org_rejected(self, db_session, test_org, other_org):
        """
        Test that an invoice cannot bill another tenant's client.

        WHY: Cross-tenant references must read as missing.
        """
        foreign = await ClientFactory.create(db_session, other_org, name="Foreign Ltd")

        with pytest.raises(ResourceNotFoundError):
            await InvoiceFactory.create(db_session, test_org, foreign)

    async def test_cannot_create_as_paid(self, db_session, test_org, acme):
        with pytest.raises(ValidationError):
            await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.PAID)


@pytest.mark.asyncio
class TestUpdateInvoice:
    async def test_line_item_change_recomputes_totals(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, tax_rate=10)
        service = InvoiceService(db_session)

        updated = await service.update_invoice(
            invoice.id,
            test_org.id,
            InvoiceUpdate(
                line_items=[
                    LineItemCreate(description="Design", quantity=Decimal(3), rate=Decimal(100)),
                    LineItemCreate(description="Hosting", quantity=Decimal(1), rate=Decimal(50)),
                ]
            ),
        )

        assert updated.subtotal == Decimal("350.00")
        assert updated.tax_amount == Decimal("35.00")
        assert updated.total == Decimal("385.00")
        assert [item.description for item in updated.line_items] == ["Design", "Hosting"]

    async def test_notes_only_update_keeps_totals(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, tax_rate=10)

        updated = await InvoiceService(db_session).update_invoice(
            invoice.id, test_org.id, InvoiceUpdate(notes="Thanks!")
        )

        assert updated.notes == "Thanks!"
        assert updated.total == Decimal("110.00")

    async def test_total_cannot_drop_below_amount_paid(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(80))

        with pytest.raises(ValidationError):
            await service.update_invoice(
                invoice.id,
                test_org.id,
                InvoiceUpdate(
                    line_items=[LineItemCreate(description="Less", quantity=Decimal(1), rate=Decimal(50))]
                ),
            )

    async def test_lowering_total_to_amount_paid_settles_invoice(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme, status=InvoiceStatus.SENT
        )
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(60))

        updated = await service.update_invoice(
            invoice.id,
            test_org.id,
            InvoiceUpdate(
                line_items=[LineItemCreate(description="Less", quantity=Decimal(1), rate=Decimal(60))]
            ),
        )

        assert updated.total == Decimal("60.00")
        assert updated.amount_paid == Decimal("60.00")
        assert updated.status == InvoiceStatus.PAID
        assert updated.paid_at is not None

    async def test_paid_invoice_not_editable(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(100))

        with pytest.raises(InvalidStateTransitionError):
            await service.update_invoice(invoice.id, test_org.id, InvoiceUpdate(notes="late edit"))


@pytest.mark.asyncio
class TestAddPayment:
    async def test_full_payment_marks_paid(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, tax_rate=10)

        payment, updated = await InvoiceService(db_session).add_payment(
            invoice.id, test_org.id, _payment(110)
        )

        assert payment.amount == Decimal("110.00")
        assert payment.method == "bank"
        assert updated.status == InvoiceStatus.PAID
        assert updated.amount_paid == Decimal("110.00")
        assert updated.paid_at is not None

    async def test_partial_payment(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme, status=InvoiceStatus.SENT
        )

        _, updated = await InvoiceService(db_session).add_payment(
            invoice.id, test_org.id, _payment(40)
        )

        assert updated.status == InvoiceStatus.PARTIAL
        assert updated.amount_paid == Decimal("40.00")
        assert updated.paid_at is None

    async def test_overpayment_rejected_with_remaining_balance(self, db_session, test_org, acme):
        """
        Test that a payment above the remaining balance is refused.

        WHY: With 80 of 100 paid, 25 would overpay; the error must name the
        maximum (20.00) and the exact remainder must still be accepted.
        """
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(80))

        with pytest.raises(OverpaymentError) as exc_info:
            await service.add_payment(invoice.id, test_org.id, _payment(25))

        assert "Maximum allowed: 20.00" in exc_info.value.message
        assert exc_info.value.context["max_allowed"] == 20.0
        assert exc_info.value.status_code == 400

        _, updated = await service.add_payment(invoice.id, test_org.id, _payment(20))
        assert updated.status == InvoiceStatus.PAID
        assert updated.amount_paid == Decimal("100.00")

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount_rejected(self, db_session, test_org, acme, amount):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)

        with pytest.raises(ValidationError) as exc_info:
            await InvoiceService(db_session).add_payment(invoice.id, test_org.id, _payment(amount))
        assert exc_info.value.message == "Payment amount must be greater than zero"

    async def test_cancelled_invoice_refuses_payment(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.cancel_invoice(invoice.id, test_org.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await service.add_payment(invoice.id, test_org.id, _payment(10))

        assert exc_info.value.message == "Cannot add payment to cancelled invoice"
        count = await db_session.scalar(
            select(func.count(InvoicePayment.id)).where(InvoicePayment.invoice_id == invoice.id)
        )
        assert count == 0

    async def test_payment_on_other_org_invoice_not_found(
        self, db_session, test_org, other_org, acme
    ):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)

        with pytest.raises(ResourceNotFoundError):
            await InvoiceService(db_session).add_payment(invoice.id, other_org.id, _payment(10))

    async def test_payments_listed_newest_first(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.add_payment(
            invoice.id,
            test_org.id,
            PaymentCreate(amount=Decimal(10), payment_date=date(2024, 1, 5), method="cash"),
        )
        await service.add_payment(
            invoice.id,
            test_org.id,
            PaymentCreate(amount=Decimal(20), payment_date=date(2024, 2, 5), method="card"),
        )

        payments = await service.list_payments(invoice.id, test_org.id)
        assert [p.method for p in payments] == ["card", "cash"]


@pytest.mark.asyncio
class TestWorkflow:
    async def test_send_then_view(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)

        sent = await service.send_invoice(invoice.id, test_org.id)
        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at is not None

        viewed = await service.mark_viewed(invoice.id, test_org.id)
        assert viewed.status == InvoiceStatus.VIEWED
        assert viewed.viewed_at is not None
        assert {e.event_type for e in viewed.email_history} == {
            EmailEventType.SENT,
            EmailEventType.VIEWED,
        }

    async def test_draft_cannot_be_viewed(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        with pytest.raises(InvalidStateTransitionError):
            await InvoiceService(db_session).mark_viewed(invoice.id, test_org.id)

    async def test_paid_invoice_cannot_be_cancelled(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(100))

        with pytest.raises(InvalidStateTransitionError):
            await service.cancel_invoice(invoice.id, test_org.id)

    async def test_only_drafts_deleted(self, db_session, test_org, acme):
        draft = await InvoiceFactory.create(db_session, test_org, acme)
        sent = await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)
        service = InvoiceService(db_session)

        await service.delete_invoice(draft.id, test_org.id)
        with pytest.raises(ResourceNotFoundError):
            await service.get_invoice(draft.id, test_org.id)

        with pytest.raises(InvalidStateTransitionError):
            await service.delete_invoice(sent.id, test_org.id)

    async def test_mark_overdue(self, db_session, test_org, acme):
        """
        Test the overdue sweep.

        WHY: Only open, issued invoices past their due date move; drafts and
        invoices not yet due stay where they are.
        """
        late = await InvoiceFactory.create(
            db_session, test_org, acme,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        draft = await InvoiceFactory.create(
            db_session, test_org, acme,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        current = await InvoiceFactory.create(
            db_session, test_org, acme,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 2, 1),
            due_date=date(2024, 3, 1),
        )
        service = InvoiceService(db_session)

        changed = await service.mark_overdue_invoices(today=date(2024, 2, 10))

        assert [i.id for i in changed] == [late.id]
        assert (await service.get_invoice(late.id, test_org.id)).status == InvoiceStatus.OVERDUE
        assert (await service.get_invoice(draft.id, test_org.id)).status == InvoiceStatus.DRAFT
        assert (await service.get_invoice(current.id, test_org.id)).status == InvoiceStatus.SENT

    async def test_mark_overdue_keeps_partial_invoices_partial(self, db_session, test_org, acme):
        """
        Test that the sweep leaves partially paid invoices alone.

        WHY: partial means 0 < amount_paid < total; moving such an invoice
        to overdue would hide that money has already come in.
        """
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme,
            tax_rate=10,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        service = InvoiceService(db_session)
        await service.add_payment(invoice.id, test_org.id, _payment(50))

        changed = await service.mark_overdue_invoices(today=date(2024, 3, 6))

        assert changed == []
        reloaded = await service.get_invoice(invoice.id, test_org.id)
        assert reloaded.status == InvoiceStatus.PARTIAL
        assert reloaded.amount_paid == Decimal("50.00")


@pytest.mark.asyncio
class TestZeroTotalInvoices:
    """
    Invoices whose total is zero.

    WHY: Payments must be greater than zero, so nothing could ever move such
    an invoice to paid. Once issued it is settled straight away; as a draft
    it stays a draft.
    """

    async def test_draft_stays_draft(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, items=())

        assert invoice.total == Decimal("0.00")
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.paid_at is None

    async def test_created_as_sent_is_paid(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme, items=(), status=InvoiceStatus.SENT
        )

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at is not None
        assert invoice.sent_at is not None

    async def test_sending_settles_draft(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme, items=())

        sent = await InvoiceService(db_session).send_invoice(invoice.id, test_org.id)

        assert sent.status == InvoiceStatus.PAID
        assert sent.paid_at is not None

    async def test_discounting_issued_invoice_to_zero_settles_it(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme, status=InvoiceStatus.SENT
        )

        updated = await InvoiceService(db_session).update_invoice(
            invoice.id, test_org.id, InvoiceUpdate(discount=Decimal(100))
        )

        assert updated.total == Decimal("0.00")
        assert updated.status == InvoiceStatus.PAID

    async def test_settled_invoice_refuses_payment(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme, items=(), status=InvoiceStatus.SENT
        )

        with pytest.raises(OverpaymentError):
            await InvoiceService(db_session).add_payment(invoice.id, test_org.id, _payment(1))


@pytest.mark.asyncio
class TestReminders:
    async def test_record_reminder(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(
            db_session, test_org, acme,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        service = InvoiceService(db_session)

        updated = await service.record_reminder(
            invoice.id, test_org.id, ReminderCreate(reminder_type="gentle"), today=date(2024, 2, 5)
        )
        assert updated.reminders_sent == 1
        assert updated.last_reminder_at is not None

        status = await service.reminder_status(invoice.id, test_org.id, today=date(2024, 2, 5))
        assert status["days_overdue"] == 5
        assert status["reminders_sent"] == 1
        assert status["next_reminder_date"] == date(2024, 2, 7)
        assert status["can_send_reminder"] is True
        assert status["history"][0].days_overdue == 5
        assert status["history"][0].recipient == "billing@acme.test"

    async def test_no_reminder_for_draft(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        with pytest.raises(InvalidStateTransitionError):
            await InvoiceService(db_session).record_reminder(
                invoice.id, test_org.id, ReminderCreate()
            )


@pytest.mark.asyncio
class TestStats:
    async def test_outstanding_and_paid(self, db_session, test_org, acme):
        paid = await InvoiceFactory.create(db_session, test_org, acme)
        await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)
        service = InvoiceService(db_session)
        await service.add_payment(paid.id, test_org.id, _payment(100))

        stats = await service.get_stats(test_org.id)

        assert stats["total"] == 2
        assert stats["by_status"]["paid"] == 1
        assert stats["by_status"]["sent"] == 1
        assert stats["total_outstanding"] == 100.0
        assert stats["total_paid"] == 100.0
