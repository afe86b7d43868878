"""
Recurring Invoice Service.

WHAT: Manages recurring invoice templates and turns their due occurrences
into regular draft invoices.

WHY: Retainers are billed the same way every period. Generation must be:
1. Exactly-once per occurrence, even when two workers run the job together
2. Able to catch up after downtime without flooding a client with invoices
3. Bounded by the template's end date

HOW: Due templates are locked with SKIP LOCKED; each occurrence is created
inside a savepoint and protected by the (template, occurrence) unique
constraint. The schedule advances with crm.services.recurrence, anchored on
the start date's day of month so a template started on the 31st bills on the
last day of shorter months and returns to the 31st afterwards.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.config import settings
from crm.core.exceptions import ResourceNotFoundError, ValidationError
from crm.dao.client import ClientDAO
from crm.dao.invoice import InvoiceDAO
from crm.dao.project import ProjectDAO
from crm.dao.recurring_invoice import RecurringInvoiceTemplateDAO
from crm.models.invoice import Invoice, InvoiceStatus
from crm.models.recurring_invoice import RecurringInvoiceTemplate, RecurrenceInterval
from crm.schemas.invoice import InvoiceCreate, LineItemCreate
from crm.schemas.recurring_invoice import RecurringInvoiceCreate, RecurringInvoiceUpdate
from crm.services.invoice_service import InvoiceService
from crm.services.recurrence import advance_date, is_past_end


logger = logging.getLogger(__name__)


SCHEDULE_FIELDS = {"recurrence_interval", "custom_days", "start_date"}

# Monthly, quarterly and yearly schedules keep the start date's day of month
ANCHORED_INTERVALS = (
    RecurrenceInterval.MONTHLY,
    RecurrenceInterval.QUARTERLY,
    RecurrenceInterval.YEARLY,
)


def next_occurrence(template: RecurringInvoiceTemplate, current: date) -> date:
    """The occurrence following ``current`` on the template's schedule."""
    anchor = template.start_date.day if template.recurrence_interval in ANCHORED_INTERVALS else None
    return advance_date(
        current,
        template.recurrence_interval,
        custom_days=template.custom_days,
        day_of_month=anchor,
    )


class RecurringInvoiceService:
    """Template CRUD and invoice generation."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.template_dao = RecurringInvoiceTemplateDAO(session)
        self.invoice_dao = InvoiceDAO(session)
        self.client_dao = ClientDAO(session)
        self.project_dao = ProjectDAO(session)
        self.invoice_service = InvoiceService(session)

    async def get_template(self, template_id: int, org_id: int) -> RecurringInvoiceTemplate:
        template = await self.template_dao.get_by_id_and_org(template_id, org_id)
        if not template:
            raise ResourceNotFoundError(
                message=f"Recurring invoice with id {template_id} not found",
                resource_type="RecurringInvoice",
                resource_id=template_id,
            )
        return template

    async def _check_references(
        self,
        org_id: int,
        client_id: Optional[int],
        project_id: Optional[int],
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

    async def create_template(
        self,
        org_id: int,
        data: RecurringInvoiceCreate,
    ) -> RecurringInvoiceTemplate:
        """
        Create a template. Its first occurrence is the start date.

        Raises:
            ResourceNotFoundError: If client or project is not in the organization
        """
        await self._check_references(org_id, data.client_id, data.project_id)

        template = await self.template_dao.create(
            org_id=org_id,
            client_id=data.client_id,
            project_id=data.project_id,
            name=data.name,
            description=data.description,
            active=data.active,
            recurrence_interval=data.recurrence_interval,
            custom_days=data.custom_days,
            start_date=data.start_date,
            next_generation_date=data.start_date,
            end_date=data.end_date,
            line_items=[item.model_dump(mode="json") for item in data.line_items],
            tax_rate=data.tax_rate,
            discount=data.discount,
            due_days=data.due_days,
            currency=(data.currency or settings.DEFAULT_CURRENCY).upper(),
            notes=data.notes,
            terms=data.terms,
        )
        logger.info(
            "Created recurring invoice template %s (%s, starts %s)",
            template.id,
            template.recurrence_interval.value,
            template.start_date,
        )
        return template

    async def update_template(
        self,
        template_id: int,
        org_id: int,
        data: RecurringInvoiceUpdate,
    ) -> RecurringInvoiceTemplate:
        """
        Apply a partial update.

        WHAT: A schedule change recomputes next_generation_date from the last
        generated occurrence (or from start_date when nothing has been
        generated yet).
        """
        template = await self.get_template(template_id, org_id)
        changes = data.model_dump(exclude_unset=True)
        await self._check_references(org_id, changes.get("client_id"), changes.get("project_id"))

        if "line_items" in changes:
            if data.line_items is None:
                changes.pop("line_items")
            else:
                changes["line_items"] = [item.model_dump(mode="json") for item in data.line_items]
        if changes.get("currency"):
            changes["currency"] = changes["currency"].upper()
        for required in ("name", "client_id", "recurrence_interval", "start_date", "active",
                         "tax_rate", "discount", "due_days"):
            if required in changes and changes[required] is None:
                changes.pop(required)

        for field, value in changes.items():
            setattr(template, field, value)

        if template.recurrence_interval == RecurrenceInterval.CUSTOM and not template.custom_days:
            raise ValidationError(
                message="custom_days is required for a custom recurrence interval",
                field="custom_days",
            )
        if template.end_date and template.end_date < template.start_date:
            raise ValidationError(message="end_date must not be before start_date", field="end_date")

        if SCHEDULE_FIELDS.intersection(changes):
            if template.last_generated_date:
                template.next_generation_date = next_occurrence(
                    template, template.last_generated_date
                )
            else:
                template.next_generation_date = template.start_date

        await self.session.flush()
        await self.session.refresh(template)
        return template

    async def toggle_active(self, template_id: int, org_id: int) -> RecurringInvoiceTemplate:
        """Pause or resume a template."""
        template = await self.get_template(template_id, org_id)
        template.active = not template.active
        await self.session.flush()
        await self.session.refresh(template)
        logger.info(
            "Recurring invoice template %s %s",
            template.id,
            "activated" if template.active else "paused",
        )
        return template

    async def delete_template(self, template_id: int, org_id: int) -> None:
        """Delete a template; invoices it generated are kept."""
        template = await self.get_template(template_id, org_id)
        await self.template_dao.delete_instance(template)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _invoice_request(self, template: RecurringInvoiceTemplate, occurrence: date) -> InvoiceCreate:
        return InvoiceCreate(
            client_id=template.client_id,
            project_id=template.project_id,
            status=InvoiceStatus.DRAFT,
            issue_date=occurrence,
            due_days=template.due_days,
            tax_rate=template.tax_rate,
            discount=template.discount,
            currency=template.currency,
            notes=template.notes,
            terms=template.terms,
            line_items=[LineItemCreate.model_validate(item) for item in template.line_items or []],
        )

    async def generate_from_template(
        self,
        template: RecurringInvoiceTemplate,
        occurrence: date,
    ) -> Optional[Invoice]:
        """
        Create the invoice for one occurrence.

        WHY: The savepoint keeps a duplicate insert (another worker won the
        race) from aborting the surrounding transaction.

        Returns:
            The new invoice, or None if the occurrence was already generated
        """
        if await self.invoice_dao.get_by_template_occurrence(template.id, occurrence):
            logger.info(
                "Template %s occurrence %s already generated; skipping", template.id, occurrence
            )
            return None

        request = self._invoice_request(template, occurrence)
        try:
            async with self.session.begin_nested():
                invoice = await self.invoice_service.create_invoice(
                    template.org_id,
                    request,
                    recurring_template_id=template.id,
                    recurrence_date=occurrence,
                )
        except IntegrityError:
            logger.warning(
                "Template %s occurrence %s was generated concurrently; skipping",
                template.id,
                occurrence,
            )
            return None
        return invoice

    async def run_due_templates(
        self,
        today: Optional[date] = None,
        org_id: Optional[int] = None,
        max_catch_up: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Generate every due occurrence of every due template.

        WHAT: For each active template with next_generation_date <= today,
        generates invoices occurrence by occurrence until the schedule is in
        the future, the end date is passed, or max_catch_up invoices were
        produced for that template in this run. Templates past their end
        date are deactivated.

        Args:
            today: Reference date (defaults to today)
            org_id: Restrict to one organization; None runs for all
            max_catch_up: Per-template occurrence limit for one run

        Returns:
            Dict matching GenerationRunResponse
        """
        today = today or date.today()
        limit = max_catch_up if max_catch_up is not None else settings.RECURRING_MAX_CATCH_UP

        processed = 0
        deactivated = 0
        invoice_ids: List[int] = []

        for template in await self.template_dao.get_due(today, org_id):
            processed += 1
            steps = 0
            occurrence = template.next_generation_date

            while occurrence <= today and steps < limit:
                if is_past_end(occurrence, template.end_date):
                    break
                invoice = await self.generate_from_template(template, occurrence)
                if invoice is not None:
                    invoice_ids.append(invoice.id)
                template.last_generated_date = occurrence
                occurrence = next_occurrence(template, occurrence)
                template.next_generation_date = occurrence
                steps += 1

            if is_past_end(template.next_generation_date, template.end_date):
                template.active = False
                deactivated += 1
                logger.info("Recurring invoice template %s reached its end date", template.id)
            elif steps >= limit and template.next_generation_date <= today:
                logger.warning(
                    "Template %s hit the catch-up limit (%d); remaining occurrences "
                    "will be generated on the next run",
                    template.id,
                    limit,
                )

        await self.session.flush()
        if processed:
            logger.info(
                "Recurring invoice run: %d template(s), %d invoice(s), %d deactivated",
                processed,
                len(invoice_ids),
                deactivated,
            )
        return {
            "templates_processed": processed,
            "invoices_generated": len(invoice_ids),
            "templates_deactivated": deactivated,
            "invoice_ids": invoice_ids,
        }
