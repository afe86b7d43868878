"""
Recurring Invoice Service Tests.

WHAT: Template lifecycle and invoice generation.

WHY: Generation runs unattended every hour, so it must:
- Produce exactly one invoice per occurrence, however often it runs
- Stop at the end date and deactivate the template
- Catch up on missed occurrences without unbounded work per run
"""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal

from crm.dao.invoice import InvoiceDAO
from crm.models.invoice import InvoiceStatus
from crm.models.recurring_invoice import RecurrenceInterval
from crm.schemas.invoice import LineItemCreate
from crm.schemas.recurring_invoice import RecurringInvoiceCreate, RecurringInvoiceUpdate
from crm.services.recurring_invoice_service import RecurringInvoiceService
from tests.factories import ClientFactory


@pytest_asyncio.fixture
async def acme(db_session, test_org):
    return await ClientFactory.create(db_session, test_org)


async def _template(db_session, org, client, **overrides):
    values = {
        "name": "Monthly retainer",
        "client_id": client.id,
        "recurrence_interval": RecurrenceInterval.MONTHLY,
        "start_date": date(2024, 1, 31),
        "tax_rate": Decimal(10),
        "line_items": [
            LineItemCreate(description="Retainer", quantity=Decimal(2), rate=Decimal(50))
        ],
    }
    values.update(overrides)
    template = await RecurringInvoiceService(db_session).create_template(
        org.id, RecurringInvoiceCreate(**values)
    )
    await db_session.commit()
    return template


async def _generated(db_session, org):
    invoices, _ = await InvoiceDAO(db_session).list_invoices(org.id)
    return sorted(invoices, key=lambda invoice: invoice.recurrence_date)


@pytest.mark.asyncio
class TestTemplateLifecycle:
    async def test_first_occurrence_is_start_date(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme)

        assert template.next_generation_date == date(2024, 1, 31)
        assert template.last_generated_date is None
        assert template.active is True
        assert template.line_items[0]["description"] == "Retainer"

    async def test_schedule_change_recomputes_next_date(self, db_session, test_org, acme):
        """
        Test that changing the interval re-derives the next occurrence.

        WHY: The next occurrence follows the last generated one, so nothing
        is generated twice and nothing is skipped.
        """
        template = await _template(db_session, test_org, acme)
        service = RecurringInvoiceService(db_session)
        await service.run_due_templates(today=date(2024, 1, 31))

        updated = await service.update_template(
            template.id,
            test_org.id,
            RecurringInvoiceUpdate(recurrence_interval=RecurrenceInterval.CUSTOM, custom_days=14),
        )

        assert updated.last_generated_date == date(2024, 1, 31)
        assert updated.next_generation_date == date(2024, 2, 14)

    async def test_toggle_active(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme)
        service = RecurringInvoiceService(db_session)

        paused = await service.toggle_active(template.id, test_org.id)
        assert paused.active is False

        result = await service.run_due_templates(today=date(2024, 6, 1))
        assert result["invoices_generated"] == 0


@pytest.mark.asyncio
class TestGeneration:
    async def test_month_end_occurrences(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme)
        service = RecurringInvoiceService(db_session)

        result = await service.run_due_templates(today=date(2024, 3, 31))

        assert result["templates_processed"] == 1
        assert result["invoices_generated"] == 3
        invoices = await _generated(db_session, test_org)
        assert [i.recurrence_date for i in invoices] == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
        ]
        for invoice in invoices:
            assert invoice.status == InvoiceStatus.DRAFT
            assert invoice.recurring_template_id == template.id
            assert invoice.issue_date == invoice.recurrence_date
            assert invoice.total == Decimal("110.00")

        refreshed = await service.get_template(template.id, test_org.id)
        assert refreshed.last_generated_date == date(2024, 3, 31)
        assert refreshed.next_generation_date == date(2024, 4, 30)

    async def test_running_twice_generates_once(self, db_session, test_org, acme):
        """
        Test idempotency of a generation run.

        WHY: Overlapping scheduler ticks and manual triggers must never bill
        the same occurrence twice.
        """
        await _template(db_session, test_org, acme)
        service = RecurringInvoiceService(db_session)

        first = await service.run_due_templates(today=date(2024, 2, 15))
        second = await service.run_due_templates(today=date(2024, 2, 15))

        assert first["invoices_generated"] == 1
        assert second["invoices_generated"] == 0
        assert len(await _generated(db_session, test_org)) == 1

    async def test_existing_occurrence_skipped(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme)
        service = RecurringInvoiceService(db_session)

        assert await service.generate_from_template(template, date(2024, 1, 31)) is not None
        assert await service.generate_from_template(template, date(2024, 1, 31)) is None

    async def test_end_date_deactivates(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme, end_date=date(2024, 2, 29))
        service = RecurringInvoiceService(db_session)

        result = await service.run_due_templates(today=date(2024, 6, 1))

        assert result["invoices_generated"] == 2
        assert result["templates_deactivated"] == 1
        refreshed = await service.get_template(template.id, test_org.id)
        assert refreshed.active is False

    async def test_catch_up_is_bounded(self, db_session, test_org, acme):
        template = await _template(db_session, test_org, acme, start_date=date(2024, 1, 1))
        service = RecurringInvoiceService(db_session)

        first = await service.run_due_templates(today=date(2024, 6, 15), max_catch_up=2)

        assert first["invoices_generated"] == 2
        refreshed = await service.get_template(template.id, test_org.id)
        assert refreshed.active is True
        assert refreshed.next_generation_date == date(2024, 3, 1)

        second = await service.run_due_templates(today=date(2024, 6, 15), max_catch_up=12)
        assert second["invoices_generated"] == 4

    async def test_run_scoped_to_organization(self, db_session, test_org, other_org, acme):
        foreign_client = await ClientFactory.create(db_session, other_org, name="Other Client")
        await _template(db_session, test_org, acme)
        await _template(db_session, other_org, foreign_client)

        result = await RecurringInvoiceService(db_session).run_due_templates(
            today=date(2024, 1, 31), org_id=test_org.id
        )

        assert result["invoices_generated"] == 1
        assert len(await _generated(db_session, other_org)) == 0
