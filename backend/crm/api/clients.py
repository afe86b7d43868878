"""
Client management API endpoints.

WHAT: RESTful API for the agency's clients.

HOW: Org-scoped CRUD; reads are open to every member, changes need ADMIN.
Clients that have been invoiced cannot be deleted (their invoices are
financial records); deactivate them instead.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.deps import get_current_user, require_role
from crm.core.exceptions import ResourceNotFoundError, ValidationError
from crm.db.session import get_db
from crm.dao.client import ClientDAO
from crm.dao.invoice import InvoiceDAO
from crm.models.client import Client
from crm.models.user import User
from crm.schemas.client import (
    ClientCreate,
    ClientUpdate,
    ClientResponse,
    ClientListResponse,
    ClientStatsResponse,
)


router = APIRouter(prefix="/clients", tags=["clients"])


async def _get_client(dao: ClientDAO, client_id: int, org_id: int) -> Client:
    client = await dao.get_by_id_and_org(client_id, org_id)
    if not client:
        raise ResourceNotFoundError(
            message=f"Client with id {client_id} not found",
            resource_type="Client",
            resource_id=client_id,
        )
    return client


@router.post(
    "",
    response_model=ClientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create client",
    description="Create a new client (ADMIN only)",
)
async def create_client(
    data: ClientCreate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    client = await ClientDAO(db).create(org_id=current_user.org_id, **data.model_dump())
    return ClientResponse.model_validate(client)


@router.get(
    "",
    response_model=ClientListResponse,
    summary="List clients",
    description="Clients ordered by name, with optional search",
)
async def list_clients(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    search: Optional[str] = Query(None, description="Matches name, company or e-mail"),
    active_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ClientListResponse:
    clients, total = await ClientDAO(db).search(
        current_user.org_id, search=search, active_only=active_only, skip=skip, limit=limit
    )
    return ClientListResponse(
        items=[ClientResponse.model_validate(c) for c in clients],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=ClientStatsResponse,
    summary="Client statistics",
    description="Client counts for the dashboard",
)
async def get_client_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ClientStatsResponse:
    stats = await ClientDAO(db).get_stats(current_user.org_id)
    return ClientStatsResponse(**stats)


@router.get("/{client_id}", response_model=ClientResponse, summary="Get client")
async def get_client(
    client_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    client = await _get_client(ClientDAO(db), client_id, current_user.org_id)
    return ClientResponse.model_validate(client)


@router.put(
    "/{client_id}",
    response_model=ClientResponse,
    summary="Update client",
    description="Partially update a client (ADMIN only)",
)
async def update_client(
    client_id: int,
    data: ClientUpdate,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> ClientResponse:
    dao = ClientDAO(db)
    client = await _get_client(dao, client_id, current_user.org_id)
    changes = data.model_dump(exclude_unset=True)
    for required in ("name", "is_active"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    client = await dao.update_instance(client, **changes)
    return ClientResponse.model_validate(client)


@router.delete(
    "/{client_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete client",
    description="Delete a client that has never been invoiced (ADMIN only)",
)
async def delete_client(
    client_id: int,
    current_user: User = Depends(require_role("ADMIN")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """
    Raises:
        ValidationError (400): If the client has invoices
    """
    dao = ClientDAO(db)
    client = await _get_client(dao, client_id, current_user.org_id)
    if await InvoiceDAO(db).exists(client_id=client.id):
        raise ValidationError(
            message="Cannot delete a client that has invoices; deactivate it instead",
            client_id=client.id,
        )
    await dao.delete_instance(client)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
