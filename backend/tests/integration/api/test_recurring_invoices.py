"""
Integration tests for the recurring invoice API.

WHAT: Template management and on-demand generation over HTTP.

WHY: Generation runs unattended from the scheduler; the API path must
produce exactly the same invoices and must be safe to trigger twice.
"""

import pytest
import pytest_asyncio
from datetime import date

from tests.conftest import auth_headers_for
from tests.factories import ClientFactory, UserFactory


@pytest_asyncio.fixture
async def client_id(db_session, test_org) -> int:
    acme = await ClientFactory.create(db_session, test_org)
    return acme.id


def _template_body(client_id: int, **overrides) -> dict:
    body = {
        "name": "Monthly retainer",
        "client_id": client_id,
        "recurrence_interval": "monthly",
        "start_date": date.today().isoformat(),
        "tax_rate": 10,
        "line_items": [{"description": "Retainer", "quantity": 2, "rate": 50}],
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
class TestTemplates:
    async def test_create_schedules_first_occurrence(self, client, admin_headers, client_id):
        response = await client.post(
            "/api/recurring-invoices", headers=admin_headers, json=_template_body(client_id)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["active"] is True
        assert data["next_generation_date"] == date.today().isoformat()
        assert data["last_generated_date"] is None

    async def test_custom_interval_requires_days(self, client, admin_headers, client_id):
        response = await client.post(
            "/api/recurring-invoices",
            headers=admin_headers,
            json=_template_body(client_id, recurrence_interval="custom"),
        )

        assert response.status_code == 400

    async def test_empty_line_items_rejected(self, client, admin_headers, client_id):
        response = await client.post(
            "/api/recurring-invoices",
            headers=admin_headers,
            json=_template_body(client_id, line_items=[]),
        )

        assert response.status_code == 400

    async def test_toggle(self, client, admin_headers, client_id):
        created = (
            await client.post(
                "/api/recurring-invoices", headers=admin_headers, json=_template_body(client_id)
            )
        ).json()

        paused = await client.post(
            f"/api/recurring-invoices/{created['id']}/toggle", headers=admin_headers
        )
        listing = await client.get(
            "/api/recurring-invoices", headers=admin_headers, params={"active": "false"}
        )

        assert paused.json()["active"] is False
        assert [t["id"] for t in listing.json()["items"]] == [created["id"]]

    async def test_member_cannot_create(self, client, user_headers, client_id):
        response = await client.post(
            "/api/recurring-invoices", headers=user_headers, json=_template_body(client_id)
        )

        assert response.status_code == 403

    async def test_other_org_gets_404(
        self, client, db_session, admin_headers, client_id, other_org
    ):
        outsider = await UserFactory.create_admin(
            db_session, email="admin@other.test", organization=other_org
        )
        outsider_headers = auth_headers_for(outsider)
        created = (
            await client.post(
                "/api/recurring-invoices", headers=admin_headers, json=_template_body(client_id)
            )
        ).json()

        response = await client.get(
            f"/api/recurring-invoices/{created['id']}", headers=outsider_headers
        )

        assert response.status_code == 404


@pytest.mark.asyncio
class TestGeneration:
    async def test_generate_is_idempotent(self, client, admin_headers, client_id):
        """
        Test on-demand generation.

        WHY: An admin pressing "generate" twice must not bill the client twice.
        """
        created = (
            await client.post(
                "/api/recurring-invoices", headers=admin_headers, json=_template_body(client_id)
            )
        ).json()

        first = await client.post("/api/recurring-invoices/generate", headers=admin_headers)
        second = await client.post("/api/recurring-invoices/generate", headers=admin_headers)

        assert first.json()["invoices_generated"] == 1
        assert second.json()["invoices_generated"] == 0

        invoice_id = first.json()["invoice_ids"][0]
        invoice = (await client.get(f"/api/invoices/{invoice_id}", headers=admin_headers)).json()
        assert invoice["recurring_template_id"] == created["id"]
        assert invoice["recurrence_date"] == date.today().isoformat()
        assert invoice["total"] == 110.0

        template = (
            await client.get(f"/api/recurring-invoices/{created['id']}", headers=admin_headers)
        ).json()
        assert template["last_generated_date"] == date.today().isoformat()
        assert template["next_generation_date"] > date.today().isoformat()

    async def test_delete_keeps_generated_invoices(self, client, admin_headers, client_id):
        created = (
            await client.post(
                "/api/recurring-invoices", headers=admin_headers, json=_template_body(client_id)
            )
        ).json()
        run = (await client.post("/api/recurring-invoices/generate", headers=admin_headers)).json()

        deleted = await client.delete(
            f"/api/recurring-invoices/{created['id']}", headers=admin_headers
        )

        assert deleted.status_code == 204
        invoice = await client.get(f"/api/invoices/{run['invoice_ids'][0]}", headers=admin_headers)
        assert invoice.status_code == 200
        assert invoice.json()["recurring_template_id"] is None
