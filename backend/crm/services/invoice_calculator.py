"""
Invoice ledger calculator.

WHAT: Pure functions that derive every monetary field of an invoice from its
line items, adjustment parameters and payments, and derive the invoice's
status after a payment.

WHY: Totals are recomputed on create, on edit, when a recurring template
generates an invoice and when a payment is applied. Keeping the arithmetic in
one place, free of database access, means every one of those paths produces
identical numbers and the rules can be unit tested exhaustively.

HOW:
- All arithmetic is Decimal; floats never enter the calculation.
- Rounding policy: each component (line amount, per-item tax and discount,
  invoice tax, invoice discount, shipping tax) is rounded to 2 places with
  ROUND_HALF_UP as soon as it is derived. The total is the exact sum of the
  rounded components, so the stored fields always add up.
- The total is clamped at zero: a discount larger than everything else
  produces a zero invoice, never a negative one.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from crm.core.exceptions import ValidationError
from crm.models.invoice import DiscountType, InvoiceStatus


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal(100)

# Largest value a Numeric(12, 2) money column holds
MAX_MONEY = Decimal("9999999999.99")

DEFAULT_DUE_DAYS = 30

# Reminder offsets in days after the due date; every REMINDER_REPEAT_DAYS after the last one
REMINDER_SCHEDULE_DAYS = (1, 7, 14, 30)
REMINDER_REPEAT_DAYS = 30

# Ordering used for payment-driven transitions. A payment may move an invoice
# forward in this order but never backwards.
STATUS_RANK = {
    InvoiceStatus.DRAFT: 0,
    InvoiceStatus.SENT: 1,
    InvoiceStatus.VIEWED: 2,
    InvoiceStatus.OVERDUE: 3,
    InvoiceStatus.PARTIAL: 4,
    InvoiceStatus.PAID: 5,
}

REMINDABLE_STATUSES = (
    InvoiceStatus.SENT,
    InvoiceStatus.VIEWED,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
)


# ============================================================================
# Numeric helpers
# ============================================================================


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert user input to Decimal.

    Missing values (None, "") become 0. Anything that is not a number raises
    ValidationError; bools are rejected because they are ints in Python.

    >>> to_decimal("12.5")
    Decimal('12.5')
    >>> to_decimal(None)
    Decimal('0')
    """
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, bool):
        raise ValidationError(message=f"{field_name} must be a number", field=field_name)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # WHY: str() first so floats convert by their shortest repr (0.1 -> "0.1")
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(
                message=f"{field_name} must be a number",
                field=field_name,
                value=str(value),
            )
    if not result.is_finite():
        raise ValidationError(message=f"{field_name} must be a finite number", field=field_name)
    return result


def round_money(value: Decimal, field_name: str = "amount") -> Decimal:
    """
    Round to 2 decimal places, half up.

    Raises:
        ValidationError: If the result does not fit a money column
    """
    try:
        result = Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(
            message=f"{field_name} is too large",
            field=field_name,
            max_allowed=float(MAX_MONEY),
        )
    if abs(result) > MAX_MONEY:
        raise ValidationError(
            message=f"{field_name} is too large",
            field=field_name,
            max_allowed=float(MAX_MONEY),
        )
    return result


def _non_negative(value: Decimal, field_name: str) -> Decimal:
    if value < 0:
        raise ValidationError(message=f"{field_name} cannot be negative", field=field_name)
    return value


def _discount_type(value: Any) -> Optional[DiscountType]:
    if value is None or value == "":
        return None
    if isinstance(value, DiscountType):
        return value
    try:
        return DiscountType(value)
    except ValueError:
        raise ValidationError(
            message="discount_type must be 'percentage' or 'fixed'",
            field="discount_type",
            value=str(value),
        )


# ============================================================================
# Line items
# ============================================================================


@dataclass(frozen=True)
class LineItemInput:
    """
    Calculator view of one line item.

    ``amount`` is only honoured when ``amount_overridden`` is true; otherwise
    it is recomputed as quantity * rate. For a percentage discount
    ``discount_rate`` is the percentage; for a fixed discount
    ``discount_amount`` is the amount taken off this line.
    """

    quantity: Decimal
    rate: Decimal
    amount: Optional[Decimal] = None
    amount_overridden: bool = False
    tax_rate: Decimal = Decimal(0)
    discount_rate: Decimal = Decimal(0)
    discount_amount: Decimal = Decimal(0)
    discount_type: Optional[DiscountType] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LineItemInput":
        """
        Build from a plain mapping (request payloads, recurring template JSON).

        Raises:
            ValidationError: On non-numeric or negative values
        """
        overridden = bool(data.get("amount_overridden", False))
        amount = data.get("amount")
        return cls(
            quantity=_non_negative(to_decimal(data.get("quantity"), "quantity"), "quantity"),
            rate=_non_negative(to_decimal(data.get("rate"), "rate"), "rate"),
            amount=to_decimal(amount, "amount") if overridden and amount is not None else None,
            amount_overridden=overridden and amount is not None,
            tax_rate=_non_negative(to_decimal(data.get("tax_rate"), "tax_rate"), "tax_rate"),
            discount_rate=_non_negative(
                to_decimal(data.get("discount_rate"), "discount_rate"), "discount_rate"
            ),
            discount_amount=_non_negative(
                to_decimal(data.get("discount_amount"), "discount_amount"), "discount_amount"
            ),
            discount_type=_discount_type(data.get("discount_type")),
        )


@dataclass(frozen=True)
class LineItemTotals:
    amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal


def calculate_line_item(item: LineItemInput) -> LineItemTotals:
    """
    Derive amount, per-item discount and per-item tax for one line.

    Per-item tax is charged on the line amount after its own discount.

    >>> calculate_line_item(LineItemInput(quantity=Decimal(2), rate=Decimal(50)))
    LineItemTotals(amount=Decimal('100.00'), discount_amount=Decimal('0.00'), tax_amount=Decimal('0.00'))
    """
    if item.amount_overridden and item.amount is not None:
        amount = round_money(item.amount, "line item amount")
    else:
        amount = round_money(item.quantity * item.rate, "line item amount")

    if item.discount_type == DiscountType.PERCENTAGE:
        discount = round_money(amount * item.discount_rate / HUNDRED)
    elif item.discount_type == DiscountType.FIXED:
        discount = round_money(item.discount_amount)
    else:
        discount = ZERO
    # A line cannot be discounted below zero
    discount = min(discount, amount) if amount > 0 else ZERO

    tax = round_money((amount - discount) * item.tax_rate / HUNDRED)
    return LineItemTotals(amount=amount, discount_amount=discount, tax_amount=tax)


# ============================================================================
# Invoice totals
# ============================================================================


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    shipping_tax_amount: Decimal
    total: Decimal
    line_items: List[LineItemTotals] = field(default_factory=list)


def calculate_invoice_totals(
    line_items: Sequence[LineItemInput],
    tax_rate: Any = 0,
    discount: Any = 0,
    discount_rate: Any = 0,
    discount_type: Any = None,
    shipping_amount: Any = 0,
    shipping_tax_rate: Any = 0,
) -> InvoiceTotals:
    """
    Derive every monetary field of an invoice.

    - subtotal = sum of line amounts
    - tax = subtotal * tax_rate / 100, plus per-item taxes
    - discount = flat ``discount`` (fixed, the default) or
      subtotal * discount_rate / 100 (percentage), plus per-item discounts
    - shipping tax = shipping_amount * shipping_tax_rate / 100
    - total = subtotal + tax + shipping + shipping tax - discount, clamped at 0

    Args:
        line_items: Ordered line items
        tax_rate: Invoice-level tax percentage
        discount: Flat discount amount
        discount_rate: Discount percentage
        discount_type: "percentage" or "fixed"; None means fixed
        shipping_amount: Shipping charge
        shipping_tax_rate: Tax percentage applied to shipping

    Returns:
        InvoiceTotals with all components rounded to 2 places

    Raises:
        ValidationError: On non-numeric or negative input
    """
    tax_rate = _non_negative(to_decimal(tax_rate, "tax_rate"), "tax_rate")
    discount = _non_negative(to_decimal(discount, "discount"), "discount")
    discount_rate = _non_negative(to_decimal(discount_rate, "discount_rate"), "discount_rate")
    shipping_amount = _non_negative(
        to_decimal(shipping_amount, "shipping_amount"), "shipping_amount"
    )
    shipping_tax_rate = _non_negative(
        to_decimal(shipping_tax_rate, "shipping_tax_rate"), "shipping_tax_rate"
    )
    kind = _discount_type(discount_type) or DiscountType.FIXED

    item_totals = [calculate_line_item(item) for item in line_items]

    subtotal = round_money(sum((t.amount for t in item_totals), ZERO), "subtotal")
    item_tax = sum((t.tax_amount for t in item_totals), ZERO)
    item_discount = sum((t.discount_amount for t in item_totals), ZERO)

    invoice_tax = round_money(subtotal * tax_rate / HUNDRED)
    if kind == DiscountType.PERCENTAGE:
        invoice_discount = round_money(subtotal * discount_rate / HUNDRED)
    else:
        invoice_discount = round_money(discount)

    shipping = round_money(shipping_amount)
    shipping_tax = round_money(shipping * shipping_tax_rate / HUNDRED)

    tax_amount = round_money(invoice_tax + item_tax)
    discount_amount = round_money(invoice_discount + item_discount)

    total = subtotal + tax_amount + shipping + shipping_tax - discount_amount
    if total < 0:
        total = ZERO

    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        shipping_amount=shipping,
        shipping_tax_amount=shipping_tax,
        total=round_money(total, "total"),
        line_items=item_totals,
    )


# ============================================================================
# Payments & status
# ============================================================================


@dataclass(frozen=True)
class PaymentStatus:
    amount_paid: Decimal
    amount_due: Decimal
    status: InvoiceStatus


def amount_due(total: Decimal, amount_paid: Decimal) -> Decimal:
    """max(total - amount_paid, 0)"""
    remaining = round_money(to_decimal(total) - to_decimal(amount_paid))
    return remaining if remaining > 0 else ZERO


def max_payment_allowed(total: Decimal, amount_paid: Decimal) -> Decimal:
    """Largest payment that still keeps the invoice from being overpaid."""
    return amount_due(total, amount_paid)


def derive_status_after_payment(
    current: InvoiceStatus,
    total_paid: Decimal,
    total: Decimal,
) -> InvoiceStatus:
    """
    Status of an invoice once its payments sum to ``total_paid``.

    PAID when payments cover the total; otherwise PARTIAL when something has
    been paid and PARTIAL is further along than the current status; otherwise
    the current status is kept. PAID and CANCELLED are never left.

    >>> derive_status_after_payment(InvoiceStatus.SENT, Decimal(40), Decimal(100))
    <InvoiceStatus.PARTIAL: 'partial'>
    """
    if current in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
        return current

    if total_paid >= total:
        return InvoiceStatus.PAID

    if total_paid > 0 and STATUS_RANK[current] < STATUS_RANK[InvoiceStatus.PARTIAL]:
        return InvoiceStatus.PARTIAL

    return current


def calculate_payment_status(
    total: Decimal,
    payments: Iterable[Decimal],
    current_status: InvoiceStatus,
    due_date: Optional[date] = None,
    today: Optional[date] = None,
) -> PaymentStatus:
    """
    Recompute amount paid, amount due and status from the full payment list.

    An open, issued invoice past its due date with nothing paid is OVERDUE.
    Drafts never become overdue; they have not been sent yet. A draft with
    nothing paid stays a draft even at a zero total, while an issued
    zero-total invoice is settled and becomes PAID.
    """
    paid = round_money(sum((to_decimal(p) for p in payments), ZERO))
    if current_status == InvoiceStatus.DRAFT and paid <= 0:
        status = current_status
    else:
        status = derive_status_after_payment(current_status, paid, total)

    today = today or date.today()
    if (
        status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED)
        and due_date is not None
        and today > due_date
    ):
        status = InvoiceStatus.OVERDUE

    return PaymentStatus(amount_paid=paid, amount_due=amount_due(total, paid), status=status)


# ============================================================================
# Dates, numbering & reminders
# ============================================================================


def calculate_due_date(issue_date: date, due_days: int = DEFAULT_DUE_DAYS) -> date:
    return issue_date + timedelta(days=due_days)


def format_invoice_number(period_date: date, sequence: int, prefix: str = "INV") -> str:
    """
    >>> format_invoice_number(date(2024, 3, 9), 7)
    'INV-202403-007'
    """
    return f"{prefix}-{period_date.year}{period_date.month:02d}-{sequence:03d}"


def days_overdue(due_date: Optional[date], today: Optional[date] = None) -> int:
    if due_date is None:
        return 0
    today = today or date.today()
    return max((today - due_date).days, 0)


def next_reminder_date(due_date: date, reminders_sent: int) -> date:
    """
    Date the next payment reminder becomes due.

    Reminders go out 1, 7, 14 and 30 days after the due date, then every
    30 days after that.
    """
    if reminders_sent < len(REMINDER_SCHEDULE_DAYS):
        offset = REMINDER_SCHEDULE_DAYS[reminders_sent]
    else:
        extra = reminders_sent - len(REMINDER_SCHEDULE_DAYS) + 1
        offset = REMINDER_SCHEDULE_DAYS[-1] + extra * REMINDER_REPEAT_DAYS
    return due_date + timedelta(days=offset)


def can_send_reminder(status: InvoiceStatus) -> bool:
    return status in REMINDABLE_STATUSES


# ============================================================================
# Budgets
# ============================================================================


def utilization_percentage(spent: Any, allocated: Any) -> Decimal:
    """
    spent / allocated * 100, rounded to 2 places; 0 when nothing is allocated.

    >>> utilization_percentage(Decimal(50), Decimal(200))
    Decimal('25.00')
    """
    allocated = to_decimal(allocated, "allocated")
    if allocated <= 0:
        return ZERO
    ratio = to_decimal(spent, "spent") / allocated * HUNDRED
    return ratio.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
