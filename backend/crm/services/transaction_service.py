"""
Transaction Service.

WHAT: Income/expense bookkeeping: CRUD, the financial summary and the
category breakdown.

WHY: Money amounts are Decimal end to end; only the response layer turns
them into floats. Aggregates count completed transactions only, so pending
and cancelled bookings never distort the figures.
"""

import logging
import math
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.exceptions import ResourceNotFoundError, ValidationError
from crm.dao.client import ClientDAO
from crm.dao.invoice import InvoiceDAO
from crm.dao.project import ProjectDAO
from crm.dao.transaction import TransactionDAO, TransactionFilters, SORTABLE_COLUMNS
from crm.models.transaction import Transaction, TransactionType
from crm.schemas.transaction import TransactionCreate, TransactionUpdate


logger = logging.getLogger(__name__)


DEFAULT_INCOME_CATEGORIES = [
    "Salary",
    "Freelance",
    "Business Revenue",
    "Investment Returns",
    "Rental Income",
    "Dividends",
    "Interest",
    "Bonus",
    "Commission",
    "Consulting",
    "Sales",
    "Other Income",
]

DEFAULT_EXPENSE_CATEGORIES = [
    "Office Supplies",
    "Software & Tools",
    "Marketing & Advertising",
    "Travel & Transportation",
    "Meals & Entertainment",
    "Professional Services",
    "Rent & Utilities",
    "Insurance",
    "Equipment",
    "Training & Education",
    "Taxes",
    "Bank Fees",
    "Maintenance",
    "Other Expenses",
]

DEFAULT_CATEGORIES = {
    TransactionType.INCOME.value: DEFAULT_INCOME_CATEGORIES,
    TransactionType.EXPENSE.value: DEFAULT_EXPENSE_CATEGORIES,
}

TOP_CATEGORY_COUNT = 5


def _two_places(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class TransactionService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.transaction_dao = TransactionDAO(session)

    async def _check_references(self, org_id: int, values: Dict[str, Any]) -> None:
        """Linked project, client and invoice must belong to the organization."""
        lookups = (
            ("project_id", ProjectDAO, "Project"),
            ("client_id", ClientDAO, "Client"),
            ("invoice_id", InvoiceDAO, "Invoice"),
        )
        for field, dao_class, resource_type in lookups:
            ref_id = values.get(field)
            if ref_id is None:
                continue
            if not await dao_class(self.session).get_by_id_and_org(ref_id, org_id):
                raise ResourceNotFoundError(
                    message=f"{resource_type} with id {ref_id} not found",
                    resource_type=resource_type,
                    resource_id=ref_id,
                )

    async def list_transactions(
        self,
        org_id: int,
        filters: TransactionFilters,
        sort_by: str = "date",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """
        One page of transactions.

        Raises:
            ValidationError: On an unknown sort column or direction
        """
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(
                message=f"Cannot sort by '{sort_by}'",
                field="sort_by",
                allowed=sorted(SORTABLE_COLUMNS),
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError(message="sort_order must be 'asc' or 'desc'", field="sort_order")

        items, total = await self.transaction_dao.list_transactions(
            org_id,
            filters,
            sort_by=sort_by,
            sort_order=sort_order,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def get_transaction(self, transaction_id: int, org_id: int) -> Transaction:
        transaction = await self.transaction_dao.get_by_id_and_org(transaction_id, org_id)
        if not transaction:
            raise ResourceNotFoundError(
                message=f"Transaction with id {transaction_id} not found",
                resource_type="Transaction",
                resource_id=transaction_id,
            )
        return transaction

    async def create_transaction(self, org_id: int, data: TransactionCreate) -> Transaction:
        values = data.model_dump()
        await self._check_references(org_id, values)
        transaction = await self.transaction_dao.create(org_id=org_id, **values)
        logger.info(
            "Booked %s transaction %s (%s, %s)",
            transaction.type.value,
            transaction.id,
            transaction.amount,
            transaction.category,
        )
        return transaction

    async def update_transaction(
        self,
        transaction_id: int,
        org_id: int,
        data: TransactionUpdate,
    ) -> Transaction:
        transaction = await self.get_transaction(transaction_id, org_id)
        changes = data.model_dump(exclude_unset=True)
        for required in ("type", "amount", "category", "description", "transaction_date", "status"):
            if required in changes and changes[required] is None:
                changes.pop(required)
        await self._check_references(org_id, changes)
        return await self.transaction_dao.update_instance(transaction, **changes)

    async def delete_transaction(self, transaction_id: int, org_id: int) -> None:
        transaction = await self.get_transaction(transaction_id, org_id)
        await self.transaction_dao.delete_instance(transaction)
        logger.info("Deleted transaction %s", transaction_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def monthly_totals(self, org_id: int, year: int) -> List[Dict[str, Any]]:
        """
        Income, expenses and net per month of ``year``.

        Only months with at least one completed transaction are listed, in
        chronological order.
        """
        rows = await self.transaction_dao.amounts_between(
            org_id, date(year, 1, 1), date(year, 12, 31)
        )
        buckets: Dict[str, Dict[str, Decimal]] = defaultdict(
            lambda: {"income": Decimal(0), "expenses": Decimal(0)}
        )
        for tx_date, tx_type, amount in rows:
            key = f"{tx_date.year}-{tx_date.month:02d}"
            if tx_type == TransactionType.INCOME:
                buckets[key]["income"] += amount
            else:
                buckets[key]["expenses"] += amount

        return [
            {
                "month": month,
                "income": _two_places(values["income"]),
                "expenses": _two_places(values["expenses"]),
                "net": _two_places(values["income"] - values["expenses"]),
            }
            for month, values in sorted(buckets.items())
        ]

    async def summary(
        self,
        org_id: int,
        filters: TransactionFilters,
        year: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Financial summary.

        WHAT: Totals and counts per type (respecting the filters), profit
        margin, monthly totals for ``year`` (default: current year), monthly
        averages over the months that had activity, and the top five
        categories per type.
        """
        totals = await self.transaction_dao.totals_by_type(org_id, filters)
        income = totals[TransactionType.INCOME.value]
        expense = totals[TransactionType.EXPENSE.value]
        net = income["total"] - expense["total"]
        margin = (net / income["total"] * 100) if income["total"] > 0 else Decimal(0)

        monthly = await self.monthly_totals(org_id, year or date.today().year)
        months = len(monthly)
        avg_income = sum(Decimal(str(m["income"])) for m in monthly) / months if months else Decimal(0)
        avg_expenses = (
            sum(Decimal(str(m["expenses"])) for m in monthly) / months if months else Decimal(0)
        )

        top: Dict[str, List[Dict[str, Any]]] = {t.value: [] for t in TransactionType}
        for tx_type, category, total, count in await self.transaction_dao.category_totals(
            org_id, filters
        ):
            bucket = top[tx_type.value]
            if len(bucket) < TOP_CATEGORY_COUNT:
                bucket.append({"category": category, "amount": _two_places(total), "count": count})

        return {
            "summary": {
                "total_income": _two_places(income["total"]),
                "total_expenses": _two_places(expense["total"]),
                "net_amount": _two_places(net),
                "profit_margin": _two_places(Decimal(margin)),
                "income_count": income["count"],
                "expense_count": expense["count"],
                "total_transactions": income["count"] + expense["count"],
            },
            "monthly_averages": {
                "income": _two_places(avg_income),
                "expenses": _two_places(avg_expenses),
                "net": _two_places(avg_income - avg_expenses),
            },
            "monthly_totals": monthly,
            "top_categories": top,
        }

    async def categories(
        self,
        org_id: int,
        tx_type: Optional[TransactionType] = None,
    ) -> Dict[str, Any]:
        """
        Categories in use with their totals, plus the selectable category lists.

        WHAT: available_categories merges the default lists with every
        category already used, so custom categories stay selectable.
        """
        types = [tx_type] if tx_type else list(TransactionType)
        stats = await self.transaction_dao.category_totals(
            org_id, TransactionFilters(type=tx_type)
        )

        categories: Dict[str, List[Dict[str, Any]]] = {t.value: [] for t in types}
        totals: Dict[str, Tuple[Decimal, int]] = {t.value: (Decimal(0), 0) for t in types}
        for row_type, category, total, count in stats:
            key = row_type.value
            categories[key].append(
                {
                    "category": category,
                    "type": row_type,
                    "transaction_count": count,
                    "total_amount": _two_places(total),
                }
            )
            amount, transactions = totals[key]
            totals[key] = (amount + total, transactions + count)

        available = {
            t.value: sorted(
                set(DEFAULT_CATEGORIES[t.value]) | {c["category"] for c in categories[t.value]}
            )
            for t in types
        }
        return {
            "categories": categories,
            "available_categories": available,
            "totals": {
                key: {
                    "total_amount": _two_places(amount),
                    "total_transactions": transactions,
                    "category_count": len(categories[key]),
                }
                for key, (amount, transactions) in totals.items()
            },
        }
