"""HTTP tests for deliverable reads, metadata, suggestions, fix-and-recheck and isolation."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from conftest import SOCIAL_POST
from orchestra.db.models import Deliverable, InteractionRecord
from orchestra.db.session import AsyncSessionLocal


async def load(deliverable_id: str) -> Deliverable:
    async with AsyncSessionLocal() as session:
        return await session.get(Deliverable, deliverable_id)


async def count_rows(model) -> int:
    async with AsyncSessionLocal() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestReading:
    """Tests for listing and fetching deliverables."""

    @pytest.mark.asyncio
    async def test_get_deliverable(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, meta={"campaign_note": "spring"})

        response = await api_client.get(f"/deliverables/{deliverable.id}", headers=tenant.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "social-media"
        assert data["content"] == SOCIAL_POST
        assert data["metadata"] == {"campaign_note": "spring"}
        assert data["iteration_count"] == 0

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_organization(
        self, api_client: AsyncClient, tenant, other_tenant, make_deliverable
    ):
        await make_deliverable(tenant.organization_id, title="Draft post")
        approved = await make_deliverable(tenant.organization_id, title="Approved post", status="approved")
        await make_deliverable(other_tenant.organization_id, status="approved")

        everything = await api_client.get("/deliverables", headers=tenant.headers)
        filtered = await api_client.get("/deliverables", params={"status": "approved"}, headers=tenant.headers)

        assert len(everything.json()) == 2
        assert [d["id"] for d in filtered.json()] == [approved.id]

    @pytest.mark.asyncio
    async def test_text_content_is_plain_text(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.get(f"/deliverables/{deliverable.id}/content", headers=tenant.headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == SOCIAL_POST

    @pytest.mark.asyncio
    async def test_binary_content_is_a_descriptor(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(
            tenant.organization_id,
            type="image",
            content="Key visual concept",
            file_path="generated/key-visual.png",
            agent_id="acd-visual",
        )

        response = await api_client.get(f"/deliverables/{deliverable.id}/content", headers=tenant.headers)

        assert response.status_code == 200
        assert response.json()["file_path"] == "generated/key-visual.png"


class TestMetadata:
    """Tests for the metadata merge-patch endpoint."""

    @pytest.mark.asyncio
    async def test_patch_merges_sections(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(
            tenant.organization_id,
            meta={"lineage": {"revision_of": "source-1"}, "campaign_note": "spring"},
        )

        response = await api_client.patch(
            f"/deliverables/{deliverable.id}/metadata",
            json={"lineage": {"instruction": "Make it shorter"}, "channel": "linkedin"},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        merged = response.json()
        assert merged["lineage"] == {"revision_of": "source-1", "instruction": "Make it shorter"}
        assert merged["extra"] == {"campaign_note": "spring", "channel": "linkedin"}
        assert (await load(deliverable.id)).meta == merged

    @pytest.mark.asyncio
    async def test_invalid_section_rejected(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.patch(
            f"/deliverables/{deliverable.id}/metadata",
            json={"publish": {"target": "webflow"}},
            headers=tenant.headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"
        assert (await load(deliverable.id)).meta is None


class TestSuggestions:
    """Tests for improvement suggestions."""

    @pytest.mark.asyncio
    async def test_suggestions_combine_sources(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(
            tenant.organization_id,
            meta={
                "quality": {"pass": False, "axes": {"clarity": 60}, "overall": 60, "suggestions": ["Add a hook."]},
                "validators": [{"rule": "call_to_action", "pass": False, "detail": "no call to action found"}],
            },
        )
        earlier = await make_deliverable(tenant.organization_id)
        await api_client.post(
            f"/deliverables/{earlier.id}/modify",
            json={"instruction": "Mention the free trial"},
            headers=tenant.headers,
        )
        await settle()

        response = await api_client.get(f"/deliverables/{deliverable.id}/suggestions", headers=tenant.headers)

        assert response.status_code == 200
        suggestions = response.json()
        assert suggestions[0] == {"text": "Add a hook.", "source": "quality"}
        assert suggestions[1] == {"text": "Fix call to action: no call to action found", "source": "validators"}
        assert {"text": "Mention the free trial", "source": "history"} in suggestions
        assert [s["source"] for s in suggestions].count("type") == 2


class TestFixAndRecheck:
    """Tests for the auto-fix endpoint."""

    @pytest.mark.asyncio
    async def test_binary_deliverable_unsupported(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(
            tenant.organization_id,
            type="image",
            content="",
            file_path="generated/key-visual.png",
            agent_id="acd-visual",
        )

        response = await api_client.post(f"/deliverables/{deliverable.id}/fix-and-recheck", headers=tenant.headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED"

    @pytest.mark.asyncio
    async def test_png_path_unsupported_for_any_type(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, type="deck", file_path="exports/x.png")

        response = await api_client.post(f"/deliverables/{deliverable.id}/fix-and-recheck", headers=tenant.headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED"

    @pytest.mark.asyncio
    async def test_text_fix_creates_revision(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(
            tenant.organization_id,
            content="Guaranteed results for every team that joins our spring programme this season. #spring",
        )

        response = await api_client.post(f"/deliverables/{deliverable.id}/fix-and-recheck", headers=tenant.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["revision_id"] != deliverable.id
        assert data["attempts"] >= 1
        assert {v["rule"] for v in data["validators"]} >= {"non_empty", "forbidden_claims", "call_to_action"}

        revision = await load(data["revision_id"])
        assert revision.status == "draft"
        assert revision.meta["lineage"] == {"revision_of": deliverable.id, "fixed_by": "auto_fix"}
        assert "guaranteed" not in revision.content.lower()
        original = await load(deliverable.id)
        assert original.content == deliverable.content
        assert original.meta["lineage"]["last_revision_id"] == data["revision_id"]


    @pytest.mark.asyncio
    async def test_fix_while_revising_conflicts(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="revising", revision_holder="other")

        response = await api_client.post(f"/deliverables/{deliverable.id}/fix-and-recheck", headers=tenant.headers)
        await settle()

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REVISION_IN_PROGRESS"
        row = await load(deliverable.id)
        assert row.revision_holder == "other"
        assert row.meta is None
        assert await count_rows(Deliverable) == 1
        assert await count_rows(InteractionRecord) == 0

    @pytest.mark.asyncio
    async def test_fix_records_interaction_and_restores_status(
        self, api_client: AsyncClient, tenant, make_deliverable, settle
    ):
        deliverable = await make_deliverable(
            tenant.organization_id,
            status="approved",
            content="Guaranteed results for every team that joins our spring programme this season. #spring",
        )

        response = await api_client.post(f"/deliverables/{deliverable.id}/fix-and-recheck", headers=tenant.headers)
        await settle()

        assert response.status_code == 200
        original = await load(deliverable.id)
        assert original.status == "approved"
        assert original.revision_holder is None

        async with AsyncSessionLocal() as session:
            interactions = (await session.execute(select(InteractionRecord))).scalars().all()
        assert len(interactions) == 1
        record = interactions[0]
        assert record.interaction_type == "auto_fix"
        assert record.deliverable_id == deliverable.id
        assert record.original_content == deliverable.content
        assert record.feedback_content
        assert record.iteration_count == 0

class TestOwnershipIsolation:
    """Another organization's deliverables answer 404, never 403."""

    @pytest.mark.asyncio
    async def test_foreign_deliverable_is_not_found(
        self, api_client: AsyncClient, tenant, other_tenant, make_deliverable
    ):
        deliverable = await make_deliverable(other_tenant.organization_id, status="approved")
        base = f"/deliverables/{deliverable.id}"

        calls = [
            ("GET", base, None),
            ("GET", f"{base}/content", None),
            ("GET", f"{base}/suggestions", None),
            ("GET", f"{base}/history", None),
            ("PATCH", f"{base}/metadata", {"channel": "linkedin"}),
            ("POST", f"{base}/modify", {"instruction": "Make it shorter"}),
            ("POST", f"{base}/revise", {"instruction": "Make it shorter", "mode": "workflow"}),
            ("POST", f"{base}/undo", None),
            ("POST", f"{base}/fix-and-recheck", None),
            ("POST", f"{base}/approve", {}),
            ("POST", f"{base}/variants", {"pack": "social"}),
            ("POST", "/deliverables/publish", {"deliverableId": deliverable.id, "target": "platform_hosted"}),
        ]
        for method, path, body in calls:
            response = await api_client.request(method, path, json=body, headers=tenant.headers)
            assert response.status_code == 404, f"{method} {path}"
            assert response.json()["error"]["code"] == "NOT_FOUND"

        row = await load(deliverable.id)
        assert row.status == "approved"
        assert row.content == SOCIAL_POST
        assert row.meta is None

    @pytest.mark.asyncio
    async def test_owner_still_has_access(self, api_client: AsyncClient, tenant, other_tenant, make_deliverable):
        deliverable = await make_deliverable(other_tenant.organization_id)

        response = await api_client.get(f"/deliverables/{deliverable.id}", headers=other_tenant.headers)

        assert response.status_code == 200
