"""End-to-end tests for planning and executing projects over HTTP."""

import pytest
from httpx import AsyncClient

from orchestra.db.models import Deliverable
from orchestra.db.session import AsyncSessionLocal
from sqlalchemy import func, select


LINKEDIN_REQUEST = "Write a LinkedIn post about our new analytics dashboard"


async def create_project(client: AsyncClient, tenant, **body) -> dict:
    response = await client.post("/projects", json={"request": LINKEDIN_REQUEST, **body}, headers=tenant.headers)
    assert response.status_code == 201, response.text
    return response.json()


async def deliverable_count(project_id: str) -> int:
    async with AsyncSessionLocal() as session:
        return (await session.execute(
            select(func.count()).select_from(Deliverable).where(Deliverable.project_id == project_id)
        )).scalar_one()


class TestPlanning:
    """Tests for project creation and request analysis."""

    @pytest.mark.asyncio
    async def test_create_project_stores_plan(self, api_client: AsyncClient, tenant):
        project = await create_project(api_client, tenant)

        assert project["status"] == "planned"
        assert project["organization_id"] == tenant.organization_id
        assert project["project_type"] == "general"
        assert project["total_deliverables"] == 2
        phases = project["execution_plan"]["phases"]
        assert [p["name"] for p in phases] == ["Strategy", "Content Production"]
        assert await deliverable_count(project["id"]) == 0

    @pytest.mark.asyncio
    async def test_empty_request_rejected(self, api_client: AsyncClient, tenant):
        response = await api_client.post("/projects", json={"request": "  "}, headers=tenant.headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_unknown_campaign_rejected(self, api_client: AsyncClient, tenant):
        response = await api_client.post(
            "/projects",
            json={"request": LINKEDIN_REQUEST, "campaignId": "missing"},
            headers=tenant.headers,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CAMPAIGN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_project_linked_to_campaign(self, api_client: AsyncClient, tenant, make_campaign):
        campaign = await make_campaign(tenant.organization_id)

        project = await create_project(api_client, tenant, campaignId=campaign.id)

        assert project["campaign_id"] == campaign.id

    @pytest.mark.asyncio
    async def test_analyze_previews_without_persisting(self, api_client: AsyncClient, tenant):
        response = await api_client.post(
            "/projects/analyze",
            json={"request": "Global product launch with press release and social posts"},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["project_type"] == "product_launch"
        assert data["markets"] == ["EMEA", "APAC", "LATAM"]

    @pytest.mark.asyncio
    async def test_agents_grouped_by_category(self, api_client: AsyncClient, tenant):
        response = await api_client.get("/agents", headers=tenant.headers)

        assert response.status_code == 200
        assert list(response.json())[0] == "strategy"


class TestExecution:
    """Tests for running a stored plan."""

    @pytest.mark.asyncio
    async def test_execute_linkedin_request(self, api_client: AsyncClient, tenant):
        project = await create_project(api_client, tenant)

        response = await api_client.post(f"/projects/{project['id']}/execute", headers=tenant.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "completed"
        assert data["total_tasks"] == 2
        assert data["errors"] == []
        assert {d["type"] for d in data["deliverables"]} == {"strategic-brief", "social-media"}
        assert all(v == "attainable" for v in data["quality_gates"].values())

        stored = (await api_client.get(f"/projects/{project['id']}", headers=tenant.headers)).json()
        assert stored["status"] == "completed"
        assert sorted(stored["last_result"]["deliverable_ids"]) == sorted(d["id"] for d in data["deliverables"])

    @pytest.mark.asyncio
    async def test_re_execution_creates_no_deliverables(self, api_client: AsyncClient, tenant):
        project = await create_project(api_client, tenant)
        first = (await api_client.post(f"/projects/{project['id']}/execute", headers=tenant.headers)).json()

        response = await api_client.post(f"/projects/{project['id']}/execute", headers=tenant.headers)

        assert response.status_code == 200
        second = response.json()
        assert await deliverable_count(project["id"]) == 2
        assert all(d["reused"] for d in second["deliverables"])
        assert sorted(d["id"] for d in second["deliverables"]) == sorted(d["id"] for d in first["deliverables"])

    @pytest.mark.asyncio
    async def test_project_deliverables_listing(self, api_client: AsyncClient, tenant):
        project = await create_project(api_client, tenant)
        await api_client.post(f"/projects/{project['id']}/execute", headers=tenant.headers)

        response = await api_client.get(f"/projects/{project['id']}/deliverables", headers=tenant.headers)

        assert response.status_code == 200
        assert len(response.json()) == 2
        assert all(d["status"] == "draft" for d in response.json())


class TestProjectIsolation:
    """Projects owned by another organization look absent."""

    @pytest.mark.asyncio
    async def test_foreign_project_is_not_found(self, api_client: AsyncClient, tenant, other_tenant):
        project = await create_project(api_client, other_tenant)

        for method, path in (
            ("GET", f"/projects/{project['id']}"),
            ("POST", f"/projects/{project['id']}/execute"),
            ("GET", f"/projects/{project['id']}/deliverables"),
        ):
            response = await api_client.request(method, path, headers=tenant.headers)
            assert response.status_code == 404, path
            assert response.json()["error"]["code"] == "NOT_FOUND"

        assert await deliverable_count(project["id"]) == 0

    @pytest.mark.asyncio
    async def test_foreign_campaign_is_not_found(self, api_client: AsyncClient, tenant, other_tenant, make_campaign):
        campaign = await make_campaign(other_tenant.organization_id)

        response = await api_client.post(
            "/projects",
            json={"request": LINKEDIN_REQUEST, "campaign_id": campaign.id},
            headers=tenant.headers,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CAMPAIGN_NOT_FOUND"
