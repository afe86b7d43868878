"""
Integration tests for project management API.

WHAT: Tests for project CRUD operations via HTTP API.

WHY: Projects own budgets and tasks. These tests ensure:
1. Only admins can create/modify projects
2. Users can view projects in their organization
3. Org-scoping prevents cross-org access, including through client links
4. Deleting a project removes its tasks
5. Creating and changing a project is written to its activity timeline

HOW: Uses pytest-asyncio with AsyncClient for HTTP testing.
"""

import pytest

from tests.factories import ClientFactory, ProjectFactory
from crm.models.project import ProjectStatus


@pytest.mark.asyncio
class TestProjectCreate:
    async def test_create_project_as_admin(self, client, db_session, admin_headers, test_org):
        acme = await ClientFactory.create(db_session, test_org)
        client_id = acme.id

        response = await client.post(
            "/api/projects",
            headers=admin_headers,
            json={
                "name": "New Project",
                "description": "A test project",
                "client_id": client_id,
                "start_date": "2024-03-01",
                "due_date": "2024-06-30",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "New Project"
        assert data["status"] == "active"
        assert data["client_id"] == client_id
        assert "id" in data

    async def test_member_cannot_create(self, client, user_headers):
        response = await client.post("/api/projects", headers=user_headers, json={"name": "X"})

        assert response.status_code == 403

    async def test_due_before_start_rejected(self, client, admin_headers):
        response = await client.post(
            "/api/projects",
            headers=admin_headers,
            json={"name": "Backwards", "start_date": "2024-06-01", "due_date": "2024-05-01"},
        )

        assert response.status_code == 400

    async def test_other_org_client_rejected(self, client, db_session, admin_headers, other_org):
        """
        Test client link scoping.

        WHY: Linking a project to another tenant's client would expose that
        client's name through the project.
        """
        foreign = await ClientFactory.create(db_session, other_org, name="Foreign")

        response = await client.post(
            "/api/projects",
            headers=admin_headers,
            json={"name": "Leak", "client_id": foreign.id},
        )

        assert response.status_code == 404


@pytest.mark.asyncio
class TestProjectReadUpdate:
    async def test_list_filters_by_status(self, client, db_session, user_headers, test_org):
        await ProjectFactory.create(db_session, test_org, name="Live")
        await ProjectFactory.create(
            db_session, test_org, name="Done", status=ProjectStatus.COMPLETED
        )

        response = await client.get(
            "/api/projects", headers=user_headers, params={"status": "completed"}
        )

        assert response.status_code == 200
        assert [p["name"] for p in response.json()["items"]] == ["Done"]

    async def test_update_status(self, client, db_session, admin_headers, test_org):
        project = await ProjectFactory.create(db_session, test_org)

        response = await client.put(
            f"/api/projects/{project.id}", headers=admin_headers, json={"status": "on_hold"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "on_hold"
        assert response.json()["name"] == "Website Redesign"

    async def test_other_org_gets_404(self, client, db_session, user_headers, other_org):
        foreign = await ProjectFactory.create(db_session, other_org, name="Foreign")

        response = await client.get(f"/api/projects/{foreign.id}", headers=user_headers)

        assert response.status_code == 404


@pytest.mark.asyncio
class TestProjectDelete:
    async def test_delete_removes_tasks(self, client, db_session, admin_headers, test_org):
        project = await ProjectFactory.create(db_session, test_org)
        project_id = project.id
        task = await client.post(
            f"/api/projects/{project_id}/tasks",
            headers=admin_headers,
            json={"title": "Wireframes", "due_date": "2024-04-01"},
        )
        assert task.status_code == 201

        response = await client.delete(f"/api/projects/{project_id}", headers=admin_headers)

        assert response.status_code == 204
        assert (
            await client.get(f"/api/projects/{project_id}", headers=admin_headers)
        ).status_code == 404
        assert (
            await client.get(
                f"/api/projects/{project_id}/tasks/{task.json()['id']}", headers=admin_headers
            )
        ).status_code == 404


@pytest.mark.asyncio
class TestProjectActivities:
    async def test_create_and_status_change_are_logged(self, client, admin_headers):
        created = await client.post(
            "/api/projects", headers=admin_headers, json={"name": "Brand Refresh"}
        )
        project_id = created.json()["id"]
        await client.put(
            f"/api/projects/{project_id}",
            headers=admin_headers,
            json={"status": "on_hold", "description": "Waiting on copy"},
        )

        response = await client.get(
            f"/api/projects/{project_id}/activities", headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        by_type = {a["activity_type"]: a for a in data["items"]}
        assert set(by_type) == {"created", "status_changed", "updated"}
        assert by_type["created"]["user_name"] == "Admin User"
        assert by_type["status_changed"]["details"] == {"from": "active", "to": "on_hold"}
        assert by_type["updated"]["details"] == {"fields": ["description"]}
        assert data["items"][-1]["activity_type"] == "created"

    async def test_unchanged_fields_are_not_logged(self, client, db_session, admin_headers, test_org):
        project = await ProjectFactory.create(db_session, test_org)
        project_id = project.id

        await client.put(
            f"/api/projects/{project_id}",
            headers=admin_headers,
            json={"name": "Website Redesign", "status": "active"},
        )

        response = await client.get(
            f"/api/projects/{project_id}/activities", headers=admin_headers
        )
        assert response.json()["total"] == 0

    async def test_member_posts_note_and_filters_by_type(
        self, client, db_session, user_headers, test_org
    ):
        project = await ProjectFactory.create(db_session, test_org)
        project_id = project.id

        posted = await client.post(
            f"/api/projects/{project_id}/activities",
            headers=user_headers,
            json={"activity_type": "call", "description": "Kick-off call with the client"},
        )
        await client.post(
            f"/api/projects/{project_id}/activities",
            headers=user_headers,
            json={"description": "Sent the moodboard"},
        )

        assert posted.status_code == 201
        assert posted.json()["user_name"] == "Test User"

        response = await client.get(
            f"/api/projects/{project_id}/activities",
            headers=user_headers,
            params={"type": "call"},
        )
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["description"] == "Kick-off call with the client"

    async def test_description_required(self, client, db_session, user_headers, test_org):
        project = await ProjectFactory.create(db_session, test_org)

        response = await client.post(
            f"/api/projects/{project.id}/activities",
            headers=user_headers,
            json={"activity_type": "call"},
        )

        assert response.status_code == 400

    async def test_other_org_project_is_404(self, client, db_session, user_headers, other_org):
        foreign = await ProjectFactory.create(db_session, other_org, name="Foreign")
        foreign_id = foreign.id

        listed = await client.get(f"/api/projects/{foreign_id}/activities", headers=user_headers)
        posted = await client.post(
            f"/api/projects/{foreign_id}/activities",
            headers=user_headers,
            json={"description": "Sneaky"},
        )

        assert listed.status_code == 404
        assert posted.status_code == 404
