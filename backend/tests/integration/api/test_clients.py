"""
Integration tests for client management API.

WHAT: Client CRUD over HTTP.

WHY: Clients are billed by invoices; these tests ensure:
1. Only admins can create/modify clients
2. Members can view and search clients of their organization
3. Org-scoping prevents cross-org access
4. A client that has been invoiced cannot be deleted
5. Dashboard statistics count only the caller's clients
"""

import pytest

from crm.models.invoice import InvoiceStatus
from tests.conftest import auth_headers_for
from tests.factories import ClientFactory, InvoiceFactory, UserFactory


@pytest.mark.asyncio
class TestClientCrud:
    async def test_create_as_admin(self, client, admin_headers, test_org):
        org_id = test_org.id

        response = await client.post(
            "/api/clients",
            headers=admin_headers,
            json={"name": "  Acme Corp  ", "email": "billing@acme.test", "company": "Acme"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Acme Corp"
        assert data["org_id"] == org_id
        assert data["is_active"] is True

    async def test_member_cannot_create(self, client, user_headers):
        response = await client.post("/api/clients", headers=user_headers, json={"name": "Acme"})

        assert response.status_code == 403

    async def test_member_can_search(self, client, db_session, user_headers, test_org):
        await ClientFactory.create(db_session, test_org, name="Acme Corp")
        await ClientFactory.create(db_session, test_org, name="Globex", email="ap@globex.test")

        response = await client.get(
            "/api/clients", headers=user_headers, params={"search": "acme"}
        )

        assert response.status_code == 200
        assert [c["name"] for c in response.json()["items"]] == ["Acme Corp"]

    async def test_partial_update(self, client, db_session, admin_headers, test_org):
        acme = await ClientFactory.create(db_session, test_org)

        response = await client.put(
            f"/api/clients/{acme.id}", headers=admin_headers, json={"is_active": False}
        )

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["email"] == "billing@acme.test"

    async def test_other_org_gets_404(self, client, db_session, user_headers, other_org):
        foreign = await ClientFactory.create(db_session, other_org, name="Foreign")

        response = await client.get(f"/api/clients/{foreign.id}", headers=user_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "ResourceNotFoundError"


@pytest.mark.asyncio
class TestClientDelete:
    async def test_delete_unused_client(self, client, db_session, admin_headers, test_org):
        acme = await ClientFactory.create(db_session, test_org)
        client_id = acme.id

        response = await client.delete(f"/api/clients/{client_id}", headers=admin_headers)

        assert response.status_code == 204
        assert (
            await client.get(f"/api/clients/{client_id}", headers=admin_headers)
        ).status_code == 404

    async def test_invoiced_client_cannot_be_deleted(
        self, client, db_session, test_org
    ):
        """
        Test delete protection.

        WHY: Deleting an invoiced client would orphan its billing history;
        deactivating it is the supported path.
        """
        admin = await UserFactory.create_admin(
            db_session, email="owner@agency.test", organization=test_org
        )
        headers = auth_headers_for(admin)
        acme = await ClientFactory.create(db_session, test_org)
        client_id = acme.id
        await InvoiceFactory.create(db_session, test_org, acme)

        response = await client.delete(f"/api/clients/{client_id}", headers=headers)

        assert response.status_code == 400
        assert (await client.get(f"/api/clients/{client_id}", headers=headers)).status_code == 200


@pytest.mark.asyncio
class TestClientStats:
    async def test_counts(self, client, db_session, user_headers, test_org, other_org):
        acme = await ClientFactory.create(db_session, test_org)
        globex = await ClientFactory.create(db_session, test_org, name="Globex")
        await ClientFactory.create(db_session, test_org, name="Initech", is_active=False)
        await ClientFactory.create(db_session, other_org, name="Foreign")
        await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)
        await InvoiceFactory.create(db_session, test_org, acme, status=InvoiceStatus.SENT)
        await InvoiceFactory.create(db_session, test_org, globex)

        response = await client.get("/api/clients/stats", headers=user_headers)

        assert response.status_code == 200
        assert response.json() == {
            "total_clients": 3,
            "active_clients": 2,
            "inactive_clients": 1,
            "clients_with_unpaid_invoices": 1,
        }

    async def test_empty_organization(self, client, user_headers):
        response = await client.get("/api/clients/stats", headers=user_headers)

        assert response.json()["total_clients"] == 0
        assert response.json()["clients_with_unpaid_invoices"] == 0

    async def test_requires_token(self, client):
        response = await client.get("/api/clients/stats")

        assert response.status_code == 401
