"""
Integration tests for the project budget API.

WHAT: Budget, categories and expenses over HTTP.

WHY: Category spend is a cached sum of its expenses; these tests ensure the
cache follows every expense change made through the API, and that the
overview adds up.
"""

import pytest
import pytest_asyncio

from tests.factories import ProjectFactory


@pytest_asyncio.fixture
async def base_url(db_session, test_org) -> str:
    project = await ProjectFactory.create(db_session, test_org)
    return f"/api/projects/{project.id}/budget"


async def _category(client, headers, base_url, name, allocated, threshold=80) -> dict:
    response = await client.post(
        f"{base_url}/categories",
        headers=headers,
        json={"name": name, "allocated_amount": allocated, "alert_threshold": threshold},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _expense(client, headers, base_url, amount, category_id=None) -> dict:
    response = await client.post(
        f"{base_url}/expenses",
        headers=headers,
        json={
            "description": "Stock photos",
            "amount": amount,
            "expense_date": "2024-03-10",
            "category_id": category_id,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
class TestBudgetOverview:
    async def test_empty_project_has_zero_budget(self, client, user_headers, base_url):
        response = await client.get(base_url, headers=user_headers)

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["total_budget"] == 0.0
        assert summary["budget_utilization"] == 0.0

    async def test_overview_adds_up(self, client, user_headers, base_url):
        await client.put(base_url, headers=user_headers, json={"total_budget": 2000})
        design = await _category(client, user_headers, base_url, "Design", 1000)
        await _category(client, user_headers, base_url, "Hosting", 200)
        await _expense(client, user_headers, base_url, 300, design["id"])
        await _expense(client, user_headers, base_url, 200)

        data = (await client.get(base_url, headers=user_headers)).json()

        assert data["summary"]["total_allocated"] == 1200.0
        assert data["summary"]["total_spent"] == 500.0
        assert data["summary"]["remaining_budget"] == 1500.0
        assert data["summary"]["budget_utilization"] == 25.0
        assert len(data["recent_expenses"]) == 2
        assert data["budget_history"][0]["change_type"]


@pytest.mark.asyncio
class TestCategories:
    async def test_duplicate_name_is_409(self, client, user_headers, base_url):
        await _category(client, user_headers, base_url, "Design", 100)

        response = await client.post(
            f"{base_url}/categories",
            headers=user_headers,
            json={"name": "design", "allocated_amount": 50},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ResourceAlreadyExistsError"

    async def test_threshold_flag(self, client, user_headers, base_url):
        design = await _category(client, user_headers, base_url, "Design", 100, threshold=80)
        await _expense(client, user_headers, base_url, 85, design["id"])

        category = (
            await client.get(f"{base_url}/categories/{design['id']}", headers=user_headers)
        ).json()

        assert category["spent_amount"] == 85.0
        assert category["utilization_percentage"] == 85.0
        assert category["is_over_threshold"] is True

    async def test_category_with_expenses_cannot_be_deleted(self, client, user_headers, base_url):
        design = await _category(client, user_headers, base_url, "Design", 100)
        await _expense(client, user_headers, base_url, 10, design["id"])

        response = await client.delete(
            f"{base_url}/categories/{design['id']}", headers=user_headers
        )

        assert response.status_code == 400


@pytest.mark.asyncio
class TestExpenses:
    async def test_spend_follows_expense_changes(self, client, user_headers, base_url):
        """
        Test the cached category spend.

        WHY: Moving or deleting an expense must update both categories, or
        the budget report drifts away from the expense list.
        """
        design = await _category(client, user_headers, base_url, "Design", 1000)
        hosting = await _category(client, user_headers, base_url, "Hosting", 1000)
        expense = await _expense(client, user_headers, base_url, 120, design["id"])

        moved = await client.put(
            f"{base_url}/expenses/{expense['id']}",
            headers=user_headers,
            json={"category_id": hosting["id"], "amount": 150},
        )
        assert moved.status_code == 200
        assert moved.json()["category_name"] == "Hosting"

        categories = {
            c["name"]: c["spent_amount"]
            for c in (await client.get(f"{base_url}/categories", headers=user_headers)).json()
        }
        assert categories == {"Design": 0.0, "Hosting": 150.0}

        await client.delete(f"{base_url}/expenses/{expense['id']}", headers=user_headers)
        categories = {
            c["name"]: c["spent_amount"]
            for c in (await client.get(f"{base_url}/categories", headers=user_headers)).json()
        }
        assert categories == {"Design": 0.0, "Hosting": 0.0}

    async def test_list_total_amount(self, client, user_headers, base_url):
        await _expense(client, user_headers, base_url, 10)
        await _expense(client, user_headers, base_url, 15.5)

        response = await client.get(f"{base_url}/expenses", headers=user_headers)

        assert response.json()["total"] == 2
        assert response.json()["total_amount"] == 25.5

    async def test_non_positive_amount_rejected(self, client, user_headers, base_url):
        response = await client.post(
            f"{base_url}/expenses",
            headers=user_headers,
            json={"description": "Refund", "amount": 0, "expense_date": "2024-03-10"},
        )

        assert response.status_code == 400

    async def test_other_org_project_is_404(self, client, db_session, user_headers, other_org):
        foreign = await ProjectFactory.create(db_session, other_org, name="Foreign")

        response = await client.get(f"/api/projects/{foreign.id}/budget", headers=user_headers)

        assert response.status_code == 404
