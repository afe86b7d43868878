"""
Invoice management API endpoints.

WHAT: RESTful API for invoice CRUD, payments and the billing workflow.

WHY: Invoices are the agency's financial records:
1. Billing clients for project work and retainers
2. Tracking payments and the remaining balance
3. Chasing late payments with reminders

HOW: FastAPI router with:
- Org-scoped queries (multi-tenancy; other tenants' ids read as 404)
- RBAC (ADMIN creates and changes money state, all members can view)
- All business rules in InvoiceService; handlers only translate HTTP
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user, require_role
from crm.db.session import get_db
from crm.dao.invoice import InvoiceDAO
from crm.models.user import User
from crm.models.invoice import InvoiceStatus
from crm.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceResponse,
    InvoiceListResponse,
    InvoiceStats,
    InvoiceSendRequest,
    PaymentCreate,
    PaymentResponse,
    PaymentCreatedResponse,
    ReminderCreate,
    ReminderStatusResponse,
    OverdueSweepResponse,
)
from crm.services.invoice_service import InvoiceService


router = APIRouter(prefix="/invoices", tags=["invoices"])


# ============================================================================
# Invoice CRUD Endpoints
# ============================================================================


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create invoice",
    description="Create an invoice; all amounts are computed from the line items (ADMIN only)",
)
async def create_invoice(
    data: InvoiceCreate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Create a new invoice.

    WHAT: Creates an invoice in DRAFT status (or SENT when requested) with
    subtotal, tax, discount, shipping and total derived server-side.

    Args:
        data: Invoice creation data
        current_user: Current authenticated admin user
        db: Database session

    Returns:
        Created invoice data

    Raises:
        ResourceNotFoundError (404): If client or project not found
        ValidationError (400): If data validation fails
    """
    invoice = await InvoiceService(db).create_invoice(current_user.org_id, data)
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "",
    response_model=InvoiceListResponse,
    status_code=status.HTTP_200_OK,
    summary="List invoices",
    description="Get paginated list of invoices for the organization",
)
async def list_invoices(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=500, description="Max records to return"),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None, description="Filter by client"),
    project_id: Optional[int] = Query(None, description="Filter by project"),
    unpaid_only: bool = Query(False, description="Only sent/viewed/partial/overdue"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InvoiceListResponse:
    """
    List invoices for the organization.

    Returns:
        Paginated invoices, newest issue date first
    """
    invoices, total = await InvoiceDAO(db).list_invoices(
        current_user.org_id,
        status=status_filter,
        client_id=client_id,
        project_id=project_id,
        unpaid_only=unpaid_only,
        skip=skip,
        limit=limit,
    )
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(inv) for inv in invoices],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=InvoiceStats,
    summary="Get invoice statistics",
    description="Counts by status, outstanding balance and total paid",
)
async def get_invoice_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InvoiceStats:
    stats = await InvoiceService(db).get_stats(current_user.org_id)
    return InvoiceStats(**stats)


@router.post(
    "/overdue",
    response_model=OverdueSweepResponse,
    summary="Mark overdue invoices",
    description="Move sent, viewed and partial invoices past their due date to overdue (ADMIN only)",
)
async def mark_overdue_invoices(
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> OverdueSweepResponse:
    """
    Run the overdue sweep for the caller's organization.

    WHY: The scheduler runs the same sweep hourly for every organization;
    this endpoint lets an admin apply it immediately.
    """
    invoices = await InvoiceService(db).mark_overdue_invoices(org_id=current_user.org_id)
    return OverdueSweepResponse(updated=len(invoices), invoice_ids=[inv.id for inv in invoices])


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice",
    description="Get invoice with line items, payments and delivery history",
)
async def get_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Raises:
        ResourceNotFoundError (404): If invoice not found in the organization
    """
    invoice = await InvoiceService(db).get_invoice(invoice_id, current_user.org_id)
    return InvoiceResponse.model_validate(invoice)


@router.put(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Update invoice",
    description="Partially update an invoice; totals are recomputed when amounts change (ADMIN only)",
)
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Update an invoice.

    WHAT: Only the fields present in the request change. Sending line_items
    replaces all line items.

    Raises:
        ResourceNotFoundError (404): If invoice not found
        InvalidStateTransitionError (400): If invoice is paid or cancelled
        ValidationError (400): If the new total is below the amount paid
    """
    invoice = await InvoiceService(db).update_invoice(invoice_id, current_user.org_id, data)
    return InvoiceResponse.model_validate(invoice)


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete invoice",
    description="Delete a draft invoice (ADMIN only)",
)
async def delete_invoice(
    invoice_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """
    Raises:
        InvalidStateTransitionError (400): If the invoice is not a draft
    """
    await InvoiceService(db).delete_invoice(invoice_id, current_user.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Payments
# ============================================================================


@router.get(
    "/{invoice_id}/payments",
    response_model=List[PaymentResponse],
    summary="List payments",
    description="Payments applied to the invoice, most recent first",
)
async def list_payments(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[PaymentResponse]:
    payments = await InvoiceService(db).list_payments(invoice_id, current_user.org_id)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.post(
    "/{invoice_id}/payments",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
    description="Apply a payment to the invoice (ADMIN only)",
)
async def add_payment(
    invoice_id: int,
    data: PaymentCreate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> PaymentCreatedResponse:
    """
    Record a payment.

    WHAT: Inserts the payment and updates the invoice's amount paid and
    status in one transaction.

    Raises:
        ResourceNotFoundError (404): If invoice not found
        InvalidStateTransitionError (400): If the invoice is cancelled
        ValidationError (400): If the amount is not positive
        OverpaymentError (400): If the amount exceeds the remaining balance
    """
    payment, invoice = await InvoiceService(db).add_payment(
        invoice_id, current_user.org_id, data, user_id=current_user.id
    )
    return PaymentCreatedResponse(
        **PaymentResponse.model_validate(payment).model_dump(),
        invoice_status=invoice.status,
        invoice_amount_paid=float(invoice.amount_paid),
        invoice_amount_due=float(invoice.amount_due),
    )


# ============================================================================
# Workflow
# ============================================================================


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Send invoice",
    description="Mark the invoice as sent and record the delivery (ADMIN only)",
)
async def send_invoice(
    invoice_id: int,
    data: Optional[InvoiceSendRequest] = None,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    data = data or InvoiceSendRequest()
    invoice = await InvoiceService(db).send_invoice(
        invoice_id, current_user.org_id, recipient=data.recipient, subject=data.subject
    )
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/viewed",
    response_model=InvoiceResponse,
    summary="Mark invoice viewed",
    description="Record that the client opened the invoice",
)
async def mark_invoice_viewed(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).mark_viewed(invoice_id, current_user.org_id)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="Cancel invoice",
    description="Void an unpaid invoice; it accepts no further payments (ADMIN only)",
)
async def cancel_invoice(
    invoice_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).cancel_invoice(invoice_id, current_user.org_id)
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "/{invoice_id}/reminders",
    response_model=ReminderStatusResponse,
    summary="Get reminder status",
    description="Reminders sent so far and when the next one is due",
)
async def get_reminder_status(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ReminderStatusResponse:
    reminder_status = await InvoiceService(db).reminder_status(invoice_id, current_user.org_id)
    return ReminderStatusResponse.model_validate(reminder_status, from_attributes=True)


@router.post(
    "/{invoice_id}/reminders",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record reminder",
    description="Record a payment reminder for an open invoice (ADMIN only)",
)
async def record_reminder(
    invoice_id: int,
    data: Optional[ReminderCreate] = None,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).record_reminder(
        invoice_id, current_user.org_id, data or ReminderCreate()
    )
    return InvoiceResponse.model_validate(invoice)
