"""
Unit tests for the invoice ledger calculator.

WHAT: Pure-function tests for totals, payment status and reminder dates.

WHY: Every stored amount on an invoice is derived here; these tests pin the
arithmetic (rounding, discount kinds, shipping tax) and the rules for how a
payment may move an invoice's status.
"""

import pytest
from datetime import date
from decimal import Decimal

from crm.core.exceptions import ValidationError
from crm.models.invoice import InvoiceStatus, DiscountType
from crm.services.invoice_calculator import (
    LineItemInput,
    amount_due,
    calculate_due_date,
    calculate_invoice_totals,
    calculate_line_item,
    calculate_payment_status,
    can_send_reminder,
    days_overdue,
    derive_status_after_payment,
    format_invoice_number,
    max_payment_allowed,
    next_reminder_date,
    round_money,
    to_decimal,
    utilization_percentage,
)


def _item(quantity, rate, **kwargs) -> LineItemInput:
    return LineItemInput.from_mapping({"quantity": quantity, "rate": rate, **kwargs})


class TestNumericHelpers:
    def test_missing_values_are_zero(self):
        assert to_decimal(None) == Decimal(0)
        assert to_decimal("") == Decimal(0)

    def test_float_converts_by_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", "12,5", True, [1]])
    def test_non_numeric_rejected(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value, "rate")

    def test_infinite_rejected(self):
        with pytest.raises(ValidationError):
            to_decimal("Infinity")

    def test_round_half_up(self):
        assert round_money(Decimal("0.125")) == Decimal("0.13")
        assert round_money(Decimal("2.675")) == Decimal("2.68")
        assert round_money(Decimal("-0.005")) == Decimal("-0.01")

    def test_largest_money_value_accepted(self):
        assert round_money(Decimal("9999999999.99")) == Decimal("9999999999.99")

    @pytest.mark.parametrize("value", ["1e30", "10000000000", "-1e11"])
    def test_value_too_large_for_money_column_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            round_money(Decimal(value), "amount")

        assert exc_info.value.message == "amount is too large"
        assert exc_info.value.status_code == 400

    def test_value_beyond_decimal_precision_rejected(self):
        """
        Test that quantize overflow surfaces as a validation error.

        WHY: quantize raises InvalidOperation once the result needs more
        digits than the context precision; that must not become a 500.
        """
        with pytest.raises(ValidationError):
            round_money(Decimal("1e40"))

    def test_huge_line_item_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            calculate_line_item(_item("1e20", "1e10"))

        assert exc_info.value.message == "line item amount is too large"


class TestLineItem:
    def test_amount_is_quantity_times_rate(self):
        totals = calculate_line_item(_item(3, "19.99"))
        assert totals.amount == Decimal("59.97")
        assert totals.tax_amount == Decimal("0.00")

    def test_override_amount_wins(self):
        totals = calculate_line_item(_item(2, 50, amount="75", amount_overridden=True))
        assert totals.amount == Decimal("75.00")

    def test_amount_ignored_without_override_flag(self):
        totals = calculate_line_item(_item(2, 50, amount="75"))
        assert totals.amount == Decimal("100.00")

    def test_percentage_discount_then_tax(self):
        totals = calculate_line_item(
            _item(1, 100, discount_type="percentage", discount_rate=10, tax_rate=5)
        )
        assert totals.discount_amount == Decimal("10.00")
        assert totals.tax_amount == Decimal("4.50")

    def test_fixed_discount_capped_at_amount(self):
        totals = calculate_line_item(
            _item(1, 30, discount_type="fixed", discount_amount=50)
        )
        assert totals.discount_amount == Decimal("30.00")

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError):
            _item(-1, 10)

    def test_unknown_discount_type_rejected(self):
        with pytest.raises(ValidationError):
            _item(1, 10, discount_type="bogus")


class TestInvoiceTotals:
    def test_two_items_with_ten_percent_tax(self):
        totals = calculate_invoice_totals([_item(2, 50)], tax_rate=10)

        assert totals.subtotal == Decimal("100.00")
        assert totals.tax_amount == Decimal("10.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total == Decimal("110.00")

    def test_empty_invoice_is_zero(self):
        totals = calculate_invoice_totals([])
        assert totals.subtotal == Decimal("0.00")
        assert totals.total == Decimal("0.00")

    def test_percentage_discount_on_subtotal(self):
        totals = calculate_invoice_totals(
            [_item(4, 50)],
            tax_rate=10,
            discount_rate=10,
            discount_type=DiscountType.PERCENTAGE,
        )
        assert totals.subtotal == Decimal("200.00")
        assert totals.discount_amount == Decimal("20.00")
        assert totals.tax_amount == Decimal("20.00")
        assert totals.total == Decimal("200.00")

    def test_fixed_discount_is_the_default(self):
        totals = calculate_invoice_totals([_item(1, 100)], discount=15, discount_rate=50)
        assert totals.discount_amount == Decimal("15.00")
        assert totals.total == Decimal("85.00")

    def test_shipping_and_shipping_tax(self):
        totals = calculate_invoice_totals(
            [_item(1, 100)], shipping_amount=15, shipping_tax_rate=20
        )
        assert totals.shipping_amount == Decimal("15.00")
        assert totals.shipping_tax_amount == Decimal("3.00")
        assert totals.total == Decimal("118.00")

    def test_total_never_negative(self):
        totals = calculate_invoice_totals([_item(1, 10)], discount=50)
        assert totals.total == Decimal("0.00")

    def test_item_tax_adds_to_invoice_tax(self):
        totals = calculate_invoice_totals(
            [_item(1, 100, tax_rate=5), _item(1, 100)], tax_rate=10
        )
        assert totals.tax_amount == Decimal("25.00")
        assert totals.total == Decimal("225.00")

    @pytest.mark.parametrize(
        "field", ["tax_rate", "discount", "discount_rate", "shipping_amount", "shipping_tax_rate"]
    )
    def test_non_numeric_adjustment_rejected(self, field):
        with pytest.raises(ValidationError) as exc_info:
            calculate_invoice_totals([_item(1, 10)], **{field: "ten"})
        assert exc_info.value.context["field"] == field

    def test_negative_adjustment_rejected(self):
        with pytest.raises(ValidationError):
            calculate_invoice_totals([_item(1, 10)], tax_rate=-1)

    def test_total_invariant(self):
        totals = calculate_invoice_totals(
            [_item(3, "33.33", tax_rate=7), _item(1, "0.99")],
            tax_rate="8.25",
            discount=5,
            shipping_amount="12.50",
            shipping_tax_rate=10,
        )
        assert totals.total == (
            totals.subtotal
            + totals.tax_amount
            + totals.shipping_amount
            + totals.shipping_tax_amount
            - totals.discount_amount
        )


class TestPayments:
    def test_amount_due_never_negative(self):
        assert amount_due(Decimal(100), Decimal(120)) == Decimal("0.00")
        assert amount_due(Decimal(100), Decimal(40)) == Decimal("60.00")

    def test_max_payment_allowed(self):
        assert max_payment_allowed(Decimal(100), Decimal(80)) == Decimal("20.00")

    @pytest.mark.parametrize(
        "current,paid,expected",
        [
            (InvoiceStatus.SENT, 40, InvoiceStatus.PARTIAL),
            (InvoiceStatus.VIEWED, 40, InvoiceStatus.PARTIAL),
            (InvoiceStatus.OVERDUE, 40, InvoiceStatus.PARTIAL),
            (InvoiceStatus.DRAFT, 100, InvoiceStatus.PAID),
            (InvoiceStatus.PARTIAL, 100, InvoiceStatus.PAID),
            (InvoiceStatus.SENT, 0, InvoiceStatus.SENT),
            (InvoiceStatus.CANCELLED, 100, InvoiceStatus.CANCELLED),
            (InvoiceStatus.PAID, 0, InvoiceStatus.PAID),
        ],
    )
    def test_status_after_payment(self, current, paid, expected):
        assert derive_status_after_payment(current, Decimal(paid), Decimal(100)) == expected

    def test_payment_status_never_moves_backwards(self):
        order = [InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.PARTIAL, InvoiceStatus.PAID]
        status = InvoiceStatus.SENT
        seen = [status]
        for paid in (10, 50, 99, 100):
            status = derive_status_after_payment(status, Decimal(paid), Decimal(100))
            seen.append(status)
        ranks = [order.index(s) for s in seen]
        assert ranks == sorted(ranks)
        assert seen[-1] == InvoiceStatus.PAID

    def test_unpaid_sent_invoice_past_due_is_overdue(self):
        result = calculate_payment_status(
            Decimal(100),
            [],
            InvoiceStatus.SENT,
            due_date=date(2024, 1, 31),
            today=date(2024, 2, 1),
        )
        assert result.status == InvoiceStatus.OVERDUE
        assert result.amount_due == Decimal("100.00")

    def test_partial_payment_past_due_stays_partial(self):
        result = calculate_payment_status(
            Decimal(100),
            [Decimal("30"), "20"],
            InvoiceStatus.SENT,
            due_date=date(2024, 1, 31),
            today=date(2024, 3, 1),
        )
        assert result.status == InvoiceStatus.PARTIAL
        assert result.amount_paid == Decimal("50.00")
        assert result.amount_due == Decimal("50.00")

    def test_draft_never_overdue(self):
        result = calculate_payment_status(
            Decimal(100),
            [],
            InvoiceStatus.DRAFT,
            due_date=date(2024, 1, 1),
            today=date(2024, 6, 1),
        )
        assert result.status == InvoiceStatus.DRAFT

    def test_zero_total_draft_stays_draft(self):
        result = calculate_payment_status(Decimal(0), [], InvoiceStatus.DRAFT)
        assert result.status == InvoiceStatus.DRAFT

    @pytest.mark.parametrize("status", [InvoiceStatus.SENT, InvoiceStatus.OVERDUE])
    def test_issued_zero_total_is_paid(self, status):
        result = calculate_payment_status(Decimal(0), [], status)
        assert result.status == InvoiceStatus.PAID
        assert result.amount_due == Decimal("0.00")


class TestDatesAndReminders:
    def test_due_date(self):
        assert calculate_due_date(date(2024, 1, 15)) == date(2024, 2, 14)
        assert calculate_due_date(date(2024, 1, 15), 14) == date(2024, 1, 29)

    def test_invoice_number_format(self):
        assert format_invoice_number(date(2024, 3, 9), 7) == "INV-202403-007"
        assert format_invoice_number(date(2024, 12, 1), 1234, prefix="AC") == "AC-202412-1234"

    def test_days_overdue(self):
        assert days_overdue(None) == 0
        assert days_overdue(date(2024, 1, 1), today=date(2024, 1, 11)) == 10
        assert days_overdue(date(2024, 1, 11), today=date(2024, 1, 1)) == 0

    @pytest.mark.parametrize(
        "sent,offset",
        [(0, 1), (1, 7), (2, 14), (3, 30), (4, 60), (5, 90)],
    )
    def test_reminder_schedule(self, sent, offset):
        due = date(2024, 1, 1)
        assert (next_reminder_date(due, sent) - due).days == offset

    def test_reminders_only_for_open_invoices(self):
        assert can_send_reminder(InvoiceStatus.OVERDUE)
        assert can_send_reminder(InvoiceStatus.PARTIAL)
        assert not can_send_reminder(InvoiceStatus.DRAFT)
        assert not can_send_reminder(InvoiceStatus.PAID)
        assert not can_send_reminder(InvoiceStatus.CANCELLED)


class TestUtilization:
    def test_percentage(self):
        assert utilization_percentage(Decimal(50), Decimal(200)) == Decimal("25.00")

    def test_nothing_allocated(self):
        assert utilization_percentage(Decimal(10), Decimal(0)) == Decimal("0.00")
