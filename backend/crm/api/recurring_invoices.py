"""
Recurring invoice API endpoints.

WHAT: CRUD for recurring invoice templates plus an on-demand generation run.

WHY: Retainer billing is configured once and then runs on its own; the
generate endpoint lets an admin trigger the hourly run immediately (for
example right after creating a template that starts today).
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user, require_role
from crm.db.session import get_db
from crm.dao.recurring_invoice import RecurringInvoiceTemplateDAO
from crm.models.user import User
from crm.schemas.recurring_invoice import (
    RecurringInvoiceCreate,
    RecurringInvoiceUpdate,
    RecurringInvoiceResponse,
    RecurringInvoiceListResponse,
    GenerationRunResponse,
)
from crm.services.recurring_invoice_service import RecurringInvoiceService


router = APIRouter(prefix="/recurring-invoices", tags=["recurring-invoices"])


@router.post(
    "",
    response_model=RecurringInvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create recurring invoice",
    description="Create a recurring invoice template (ADMIN only)",
)
async def create_recurring_invoice(
    data: RecurringInvoiceCreate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> RecurringInvoiceResponse:
    """
    Create a template. The first invoice is generated for start_date.

    Raises:
        ResourceNotFoundError (404): If client or project not found
    """
    template = await RecurringInvoiceService(db).create_template(current_user.org_id, data)
    return RecurringInvoiceResponse.model_validate(template)


@router.get(
    "",
    response_model=RecurringInvoiceListResponse,
    summary="List recurring invoices",
)
async def list_recurring_invoices(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    client_id: Optional[int] = Query(None),
    project_id: Optional[int] = Query(None),
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringInvoiceListResponse:
    templates, total = await RecurringInvoiceTemplateDAO(db).list_templates(
        current_user.org_id,
        client_id=client_id,
        project_id=project_id,
        active=active,
        skip=skip,
        limit=limit,
    )
    return RecurringInvoiceListResponse(
        items=[RecurringInvoiceResponse.model_validate(t) for t in templates],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post(
    "/generate",
    response_model=GenerationRunResponse,
    summary="Generate due invoices",
    description="Generate invoices for every due template of the organization (ADMIN only)",
)
async def generate_due_invoices(
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> GenerationRunResponse:
    result = await RecurringInvoiceService(db).run_due_templates(org_id=current_user.org_id)
    return GenerationRunResponse(**result)


@router.get(
    "/{template_id}",
    response_model=RecurringInvoiceResponse,
    summary="Get recurring invoice",
)
async def get_recurring_invoice(
    template_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RecurringInvoiceResponse:
    template = await RecurringInvoiceService(db).get_template(template_id, current_user.org_id)
    return RecurringInvoiceResponse.model_validate(template)


@router.put(
    "/{template_id}",
    response_model=RecurringInvoiceResponse,
    summary="Update recurring invoice",
    description="Partially update a template; schedule changes recompute the next date (ADMIN only)",
)
async def update_recurring_invoice(
    template_id: int,
    data: RecurringInvoiceUpdate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> RecurringInvoiceResponse:
    template = await RecurringInvoiceService(db).update_template(
        template_id, current_user.org_id, data
    )
    return RecurringInvoiceResponse.model_validate(template)


@router.post(
    "/{template_id}/toggle",
    response_model=RecurringInvoiceResponse,
    summary="Pause or resume",
    description="Flip the template's active flag (ADMIN only)",
)
async def toggle_recurring_invoice(
    template_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> RecurringInvoiceResponse:
    template = await RecurringInvoiceService(db).toggle_active(template_id, current_user.org_id)
    return RecurringInvoiceResponse.model_validate(template)


@router.delete(
    "/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete recurring invoice",
    description="Delete a template; invoices already generated are kept (ADMIN only)",
)
async def delete_recurring_invoice(
    template_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await RecurringInvoiceService(db).delete_template(template_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
