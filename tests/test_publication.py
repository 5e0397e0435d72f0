"""Tests for approval and the three publication strategies."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import AsyncClient

from orchestra.db.models import Deliverable, InteractionRecord
from orchestra.db.session import AsyncSessionLocal
from orchestra.dependencies import get_webflow_client
from orchestra.integrations.webflow import WebflowClient
from orchestra.main import app
from orchestra.storage import store
from sqlalchemy import select


def use_webflow(handler):
    """Route the Webflow client through an in-memory transport."""
    app.dependency_overrides[get_webflow_client] = lambda: WebflowClient(
        api_token="test-token",
        collection_id="collection-1",
        base_url="https://webflow.test/v2",
        transport=httpx.MockTransport(handler),
    )


async def load(deliverable_id: str) -> Deliverable:
    async with AsyncSessionLocal() as session:
        return await session.get(Deliverable, deliverable_id)


class TestApproval:
    """Tests for the approve endpoint."""

    @pytest.mark.asyncio
    async def test_approve_records_approval(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/approve",
            json={"feedback": "Looks great"},
            headers=tenant.headers,
        )
        await settle()

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        row = await load(deliverable.id)
        assert row.status == "approved"
        assert row.meta["approval"]["approved_by"] == tenant.user_id
        assert row.meta["approval"]["feedback"] == "Looks great"

        async with AsyncSessionLocal() as session:
            interactions = (await session.execute(select(InteractionRecord))).scalars().all()
        assert [(i.interaction_type, i.outcome) for i in interactions] == [("approval", "approved")]

    @pytest.mark.asyncio
    async def test_approve_without_body(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(f"/deliverables/{deliverable.id}/approve", headers=tenant.headers)

        assert response.status_code == 200
        assert response.json()["publish"] is None

    @pytest.mark.asyncio
    async def test_auto_publish(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/approve",
            json={"autoPublish": True},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "published"
        assert data["publish"]["url"] == f"/deliverables/{deliverable.id}/content"

    @pytest.mark.asyncio
    async def test_approve_while_revising_conflicts(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, status="revising", revision_holder="job")

        response = await api_client.post(f"/deliverables/{deliverable.id}/approve", headers=tenant.headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REVISION_IN_PROGRESS"


class TestPublishPreconditions:
    """Only approved deliverables may be published."""

    @pytest.mark.asyncio
    async def test_draft_cannot_be_published(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "platform_hosted"},
            headers=tenant.headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_revising_cannot_be_published(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, status="revising", revision_holder="job")

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverable_id": deliverable.id, "target": "platform_hosted"},
            headers=tenant.headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REVISION_IN_PROGRESS"


class TestPublishStrategies:
    """Hosted, direct Webflow with fallback, and deferred publication."""

    @pytest.mark.asyncio
    async def test_hosted_publish_is_immediate(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "platform_hosted"},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "published"
        assert data["workflow_id"] is None
        row = await load(deliverable.id)
        assert row.status == "published"
        assert row.meta["publish"]["target"] == "platform_hosted"

    @pytest.mark.asyncio
    async def test_webflow_direct_publish(self, api_client: AsyncClient, tenant, make_deliverable):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200, json={"id": "item-1"})

        use_webflow(handler)
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            "/deliverables/publish",
            json={
                "deliverableId": deliverable.id,
                "target": "webflow",
                "metadata": {"site_url": "https://blog.example.com"},
            },
            headers=tenant.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "published"
        assert data["fallback"] is False
        assert data["url"] == "https://blog.example.com/spring-sale-post"
        assert sent[0].url.path == "/v2/collections/collection-1/items/live"
        assert (await load(deliverable.id)).meta["publish"]["external_id"] == "item-1"

    @pytest.mark.asyncio
    async def test_webflow_failure_falls_back_to_workflow(
        self, api_client: AsyncClient, tenant, make_deliverable, settle
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("webflow unreachable", request=request)

        use_webflow(handler)
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "webflow"},
            headers=tenant.headers,
        )

        assert response.status_code == 202
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "queued"
        assert data["fallback"] is True
        assert data["workflow_id"]

        await settle()

        workflow = (await api_client.get(f"/workflows/{data['workflow_id']}", headers=tenant.headers)).json()
        assert workflow["status"] == "completed"
        assert workflow["kind"] == "publish"
        row = await load(deliverable.id)
        assert row.status == "published"
        assert row.meta["publish"]["status"] == "published"
        assert row.meta["publish"]["fallback"] is True
        assert row.meta["publish"]["workflow_id"] == data["workflow_id"]

    @pytest.mark.asyncio
    async def test_webflow_http_error_falls_back(self, api_client: AsyncClient, tenant, make_deliverable):
        use_webflow(lambda request: httpx.Response(503, text="maintenance"))
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "webflow"},
            headers=tenant.headers,
        )

        assert response.status_code == 202
        assert response.json()["fallback"] is True

    @pytest.mark.asyncio
    async def test_other_targets_are_deferred(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "wordpress"},
            headers=tenant.headers,
        )
        assert response.status_code == 202
        assert response.json()["fallback"] is False

        await settle()

        workflow = (await api_client.get(f"/workflows/{response.json()['workflow_id']}", headers=tenant.headers)).json()
        assert workflow["status"] == "completed"
        package = await load(workflow["result"]["package_id"])
        assert package.type == "publish-package"
        assert package.content_format == "json"
        assert (await load(deliverable.id)).status == "published"

    @pytest.mark.asyncio
    async def test_scheduled_publish_waits(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")
        when = datetime.now(timezone.utc) + timedelta(days=1)

        response = await api_client.post(
            "/deliverables/publish",
            json={"deliverableId": deliverable.id, "target": "platform_hosted", "when": when.isoformat()},
            headers=tenant.headers,
        )
        await settle()

        assert response.status_code == 202
        workflow_id = response.json()["workflow_id"]
        workflow = (await api_client.get(f"/workflows/{workflow_id}", headers=tenant.headers)).json()
        assert workflow["status"] == "queued"
        assert (await load(deliverable.id)).status == "approved"

        assert workflow_id not in await store.due_workflows()
        assert workflow_id in await store.due_workflows(now=when + timedelta(minutes=1))
