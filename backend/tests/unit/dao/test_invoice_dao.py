"""
Invoice DAO Tests.

WHAT: Number sequencing, payment sums, overdue candidates and aggregates.

WHY: These queries back the money paths of the application; a wrong sum or
a reused invoice number is visible to clients.
"""

import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from sqlalchemy import delete

from crm.dao.invoice import InvoiceDAO, InvoicePaymentDAO
from crm.models.invoice import InvoiceNumberSequence, InvoiceStatus
from tests.factories import ClientFactory, InvoiceFactory


@pytest_asyncio.fixture
async def acme(db_session, test_org):
    return await ClientFactory.create(db_session, test_org)


@pytest.mark.asyncio
class TestNumberSequence:
    async def test_values_increment_per_period(self, db_session, test_org):
        dao = InvoiceDAO(db_session)

        first = await dao.next_sequence_value(test_org.id, "202403", "INV")
        second = await dao.next_sequence_value(test_org.id, "202403", "INV")
        other_month = await dao.next_sequence_value(test_org.id, "202404", "INV")

        assert (first, second, other_month) == (1, 2, 1)

    async def test_sequences_are_per_organization(self, db_session, test_org, other_org):
        dao = InvoiceDAO(db_session)

        await dao.next_sequence_value(test_org.id, "202403", "INV")
        value = await dao.next_sequence_value(other_org.id, "202403", "INV")

        assert value == 1

    async def test_missing_counter_seeds_from_existing_invoices(
        self, db_session, test_org, acme
    ):
        """
        Test seeding of a lost counter.

        WHY: If the counter row is missing while invoices for the month
        exist, numbering must continue after them instead of colliding.
        """
        await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 3, 1))
        await InvoiceFactory.create(db_session, test_org, acme, issue_date=date(2024, 3, 2))
        await db_session.execute(delete(InvoiceNumberSequence))
        await db_session.commit()

        value = await InvoiceDAO(db_session).next_sequence_value(test_org.id, "202403", "INV")

        assert value == 3


@pytest.mark.asyncio
class TestPayments:
    async def test_sum_for_invoice(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        dao = InvoicePaymentDAO(db_session)
        for amount in ("0.10", "0.20", "10"):
            await dao.create(
                invoice_id=invoice.id,
                org_id=test_org.id,
                amount=Decimal(amount),
                payment_date=date(2024, 3, 1),
                method="bank",
            )

        assert await dao.sum_for_invoice(invoice.id) == Decimal("10.30")

    async def test_sum_without_payments_is_zero(self, db_session, test_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)

        assert await InvoicePaymentDAO(db_session).sum_for_invoice(invoice.id) == Decimal("0.00")


@pytest.mark.asyncio
class TestQueries:
    async def test_overdue_candidates(self, db_session, test_org, other_org, acme):
        late = await InvoiceFactory.create(
            db_session, test_org, acme,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        await InvoiceFactory.create(
            db_session, test_org, acme,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        await InvoiceFactory.create(
            db_session, test_org, acme,
            status=InvoiceStatus.SENT,
            issue_date=date(2024, 2, 1),
            due_date=date(2024, 2, 29),
        )
        other_client = await ClientFactory.create(db_session, other_org)
        foreign = await InvoiceFactory.create(
            db_session, other_org, other_client,
            status=InvoiceStatus.VIEWED,
            issue_date=date(2024, 1, 1),
            due_date=date(2024, 1, 31),
        )
        dao = InvoiceDAO(db_session)

        everywhere = await dao.get_overdue_candidates(date(2024, 2, 15))
        scoped = await dao.get_overdue_candidates(date(2024, 2, 15), org_id=test_org.id)

        assert {i.id for i in everywhere} == {late.id, foreign.id}
        assert [i.id for i in scoped] == [late.id]

    async def test_count_by_status_lists_every_status(self, db_session, test_org, acme):
        await InvoiceFactory.create(db_session, test_org, acme)
        await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)

        counts = await InvoiceDAO(db_session).count_by_status(test_org.id)

        assert counts["draft"] == 1
        assert counts["sent"] == 1
        assert counts["paid"] == 0
        assert set(counts) == {s.value for s in InvoiceStatus}

    async def test_list_filters(self, db_session, test_org, acme):
        await InvoiceFactory.create(db_session, test_org, acme)
        sent = await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)

        invoices, total = await InvoiceDAO(db_session).list_invoices(
            test_org.id, unpaid_only=True
        )

        assert total == 1
        assert invoices[0].id == sent.id

    async def test_get_for_org_hides_other_org(self, db_session, test_org, other_org, acme):
        invoice = await InvoiceFactory.create(db_session, test_org, acme)
        dao = InvoiceDAO(db_session)

        assert await dao.get_for_org(invoice.id, other_org.id) is None
        assert (await dao.get_for_org(invoice.id, test_org.id)).id == invoice.id
