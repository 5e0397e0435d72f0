"""Tests for deliverable modification: direct edits, queued revisions, undo and locking."""

import asyncio
import logging
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update

from orchestra.agents.generation import SimulatedContentGenerator
from orchestra.core.config import settings
from orchestra.db.models import Deliverable, InteractionRecord, ModificationRecord
from orchestra.db.session import AsyncSessionLocal
from orchestra.dependencies import get_generator
from orchestra.main import app
from orchestra.services.modification import classify_instruction
from orchestra.storage import store, utcnow


async def load(deliverable_id: str) -> Deliverable:
    async with AsyncSessionLocal() as session:
        return await session.get(Deliverable, deliverable_id)


async def count(model) -> int:
    async with AsyncSessionLocal() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class SlowAssessGenerator(SimulatedContentGenerator):
    async def assess(self, content, deliverable_type, context):
        await asyncio.sleep(1)
        return None


class TestInstructionClassification:
    """Tests for mapping instructions onto edit actions."""

    def test_replace_pattern(self):
        assert classify_instruction('Replace "spring" with "summer"') == "replace_text"

    def test_rewrite_words_make_new_revision(self):
        assert classify_instruction("Rewrite this completely") == "new_revision"
        assert classify_instruction("Give me a new version") == "new_revision"

    def test_everything_else_revises_in_place(self):
        assert classify_instruction("Make it shorter") == "revise_in_place"


class TestDirectModification:
    """Tests for synchronous modifications."""

    @pytest.mark.asyncio
    async def test_empty_instruction_rejected_without_side_effects(
        self, api_client: AsyncClient, tenant, make_deliverable, settle, caplog
    ):
        caplog.set_level(logging.INFO, logger="audit")
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": "   "},
            headers=tenant.headers,
        )
        await settle()

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"
        assert await count(ModificationRecord) == 0
        assert await count(InteractionRecord) == 0
        assert not [r for r in caplog.records if r.name == "audit"]
        assert (await load(deliverable.id)).status == "draft"

    @pytest.mark.asyncio
    async def test_revise_in_place(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": "Mention the free trial"},
            headers=tenant.headers,
        )
        await settle()

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["action"] == "revise_in_place"
        assert data["details"]["iteration_count"] == 1
        assert data["preview_url"] == f"/deliverables/{deliverable.id}/content"

        row = await load(deliverable.id)
        assert row.content.endswith("Edit applied: Mention the free trial.")
        assert row.status == "draft"
        assert row.revision_holder is None
        assert "quality" in row.meta

        async with AsyncSessionLocal() as session:
            interactions = (await session.execute(select(InteractionRecord))).scalars().all()
        assert [(i.interaction_type, i.feedback_content) for i in interactions] == [
            ("iteration", "Mention the free trial"),
        ]

    @pytest.mark.asyncio
    async def test_replace_text(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": 'Replace "twenty percent" with "25%"'},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        assert response.json()["action"] == "replace_text"
        assert "25% off" in (await load(deliverable.id)).content

    @pytest.mark.asyncio
    async def test_replace_missing_text_fails_and_releases_lock(
        self, api_client: AsyncClient, tenant, make_deliverable
    ):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": 'Replace "winter" with "summer"'},
            headers=tenant.headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "MODIFICATION_FAILED"
        row = await load(deliverable.id)
        assert row.status == "approved"
        assert row.revision_holder is None
        assert await count(ModificationRecord) == 0

    @pytest.mark.asyncio
    async def test_revise_endpoint_reports_revision_failed(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/revise",
            json={"instruction": 'Replace "winter" with "summer"'},
            headers=tenant.headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "REVISION_FAILED"

    @pytest.mark.asyncio
    async def test_rewrite_creates_revision_and_restores_status(
        self, api_client: AsyncClient, tenant, make_deliverable
    ):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": "Rewrite this for a younger audience"},
            headers=tenant.headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "new_revision"
        revision = await load(data["new_deliverable_id"])
        assert revision.status == "draft"
        assert revision.meta["lineage"]["revision_of"] == deliverable.id

        original = await load(deliverable.id)
        assert original.status == "approved"
        assert original.content == deliverable.content
        assert original.meta["lineage"]["last_revision_id"] == revision.id

    @pytest.mark.asyncio
    async def test_slow_quality_check_counts_against_time_limit(
        self, api_client: AsyncClient, tenant, make_deliverable, monkeypatch
    ):
        monkeypatch.setattr(settings, "DIRECT_MODIFICATION_TIMEOUT_SECONDS", 0.2)
        app.dependency_overrides[get_generator] = SlowAssessGenerator
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": "Mention the free trial"},
            headers=tenant.headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "MODIFICATION_FAILED"
        row = await load(deliverable.id)
        assert row.content == deliverable.content
        assert row.status == "approved"
        assert row.revision_holder is None
        assert await count(ModificationRecord) == 0

    @pytest.mark.asyncio
    async def test_invalid_mode_rejected(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/revise",
            json={"instruction": "Make it shorter", "mode": "batch"},
            headers=tenant.headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"


class TestRevisionLock:
    """At most one revision of a deliverable is in flight at a time."""

    @pytest.mark.asyncio
    async def test_modify_while_revising_conflicts(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="revising", revision_holder="other")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/modify",
            json={"instruction": "Make it shorter"},
            headers=tenant.headers,
        )
        await settle()

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REVISION_IN_PROGRESS"
        row = await load(deliverable.id)
        assert row.content == deliverable.content
        assert row.revision_holder == "other"
        assert await count(InteractionRecord) == 0

    @pytest.mark.asyncio
    async def test_concurrent_lock_attempts_admit_one(self, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        outcomes = await asyncio.gather(*(
            store.acquire_revision_lock(deliverable.id, tenant.organization_id, f"holder-{n}")
            for n in range(5)
        ))

        assert sorted(outcomes) == [False, False, False, False, True]
        row = await load(deliverable.id)
        assert row.status == "revising"
        assert row.revision_holder == f"holder-{outcomes.index(True)}"

    @pytest.mark.asyncio
    async def test_release_requires_matching_holder(self, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)
        await store.acquire_revision_lock(deliverable.id, tenant.organization_id, "owner")

        assert await store.release_revision_lock(deliverable.id, "draft", holder="intruder") is False
        assert await store.release_revision_lock(deliverable.id, "draft", holder="owner") is True
        assert (await load(deliverable.id)).status == "draft"


    @pytest.mark.asyncio
    async def test_stale_lock_restores_prior_status(self, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")
        await store.acquire_revision_lock(deliverable.id, tenant.organization_id, "direct:hung")
        async with AsyncSessionLocal() as session:
            await session.execute(
                update(Deliverable)
                .where(Deliverable.id == deliverable.id)
                .values(revision_locked_at=utcnow() - timedelta(hours=1))
            )
            await session.commit()

        released = await store.release_stale_locks(ttl_minutes=15)

        assert released == 1
        row = await load(deliverable.id)
        assert row.status == "approved"
        assert row.revision_holder is None
        assert row.revision_prior_status is None

    @pytest.mark.asyncio
    async def test_fresh_lock_survives_sweep(self, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)
        await store.acquire_revision_lock(deliverable.id, tenant.organization_id, "direct:busy")

        assert await store.release_stale_locks(ttl_minutes=15) == 0
        assert (await load(deliverable.id)).revision_prior_status == "draft"

class TestUndo:
    """Undo walks back in-place edits one at a time."""

    @pytest.mark.asyncio
    async def test_undo_stack(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)
        url = f"/deliverables/{deliverable.id}"

        await api_client.post(f"{url}/modify", json={"instruction": "Mention the webinar"}, headers=tenant.headers)
        after_first = (await load(deliverable.id)).content
        await api_client.post(f"{url}/modify", json={"instruction": "Mention the discount code"}, headers=tenant.headers)

        first_undo = await api_client.post(f"{url}/undo", headers=tenant.headers)
        assert first_undo.status_code == 200
        assert (await load(deliverable.id)).content == after_first

        second_undo = await api_client.post(f"{url}/undo", headers=tenant.headers)
        assert second_undo.status_code == 200
        row = await load(deliverable.id)
        assert row.content == deliverable.content
        assert row.iteration_count == 0

        third_undo = await api_client.post(f"{url}/undo", headers=tenant.headers)
        assert third_undo.status_code == 409
        assert third_undo.json()["error"]["code"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_history_lists_newest_first(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)
        url = f"/deliverables/{deliverable.id}"
        await api_client.post(f"{url}/modify", json={"instruction": "Mention the webinar"}, headers=tenant.headers)
        await api_client.post(f"{url}/undo", headers=tenant.headers)

        response = await api_client.get(f"{url}/history", headers=tenant.headers)

        assert response.status_code == 200
        assert [r["action"] for r in response.json()] == ["undo", "revise_in_place"]


class TestWorkflowRevision:
    """Workflow mode queues a revision job and answers 202."""

    @pytest.mark.asyncio
    async def test_queued_revision_completes(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id, status="approved")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/revise",
            json={"instruction": "Make it shorter", "mode": "workflow"},
            headers=tenant.headers,
        )

        assert response.status_code == 202
        data = response.json()
        assert data["action"] == "revision_queued"
        workflow_id = data["workflow_id"]

        await settle()

        workflow = await api_client.get(f"/workflows/{workflow_id}", headers=tenant.headers)
        assert workflow.status_code == 200
        body = workflow.json()
        assert body["status"] == "completed"
        assert body["kind"] == "revision"
        assert body["plan"]["analysis"]["intent"] == "revision"

        revision = await load(body["result"]["new_deliverable_id"])
        assert len(revision.content) < len(deliverable.content)
        assert revision.meta["lineage"]["revision_of"] == deliverable.id

        original = await load(deliverable.id)
        assert original.status == "approved"
        assert original.revision_holder is None
        assert original.meta["lineage"]["last_revision_id"] == revision.id

    @pytest.mark.asyncio
    async def test_image_revision_completes(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(
            tenant.organization_id,
            type="image",
            content="Key visual concept",
            file_path="generated/key-visual.png",
            agent_id="acd-visual",
        )

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/revise",
            json={"instruction": "Use a warmer palette", "mode": "workflow"},
            headers=tenant.headers,
        )
        assert response.status_code == 202
        await settle()

        body = (await api_client.get(f"/workflows/{response.json()['workflow_id']}", headers=tenant.headers)).json()
        assert body["status"] == "completed"
        assert body["plan"]["quality_gates"] == ["media_asset"]
        revision = await load(body["result"]["new_deliverable_id"])
        assert revision.type == "image"
        assert revision.meta["lineage"]["revision_of"] == deliverable.id

        original = await load(deliverable.id)
        assert original.status == "draft"
        assert original.meta["lineage"]["last_revision_id"] == revision.id

    @pytest.mark.asyncio
    async def test_second_revision_rejected_while_queued(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)
        await store.acquire_revision_lock(deliverable.id, tenant.organization_id, "workflow-in-flight")

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/revise",
            json={"instruction": "Make it shorter", "mode": "workflow"},
            headers=tenant.headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "REVISION_IN_PROGRESS"


class TestVariants:
    """Variant workflows produce one alternative per aspect."""

    @pytest.mark.asyncio
    async def test_explicit_aspects(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/variants",
            json={"aspects": ["playful", "formal"]},
            headers=tenant.headers,
        )
        assert response.status_code == 202
        workflow_id = response.json()["workflow_id"]

        await settle()

        body = (await api_client.get(f"/workflows/{workflow_id}", headers=tenant.headers)).json()
        assert body["status"] == "completed"
        variants = [await load(v) for v in body["result"]["variant_ids"]]
        assert [v.meta["lineage"]["variant_aspect"] for v in variants] == ["playful", "formal"]
        assert variants[0].title == "Spring sale post (playful)"
        assert all(v.meta["lineage"]["revision_of"] == deliverable.id for v in variants)

    @pytest.mark.asyncio
    async def test_named_pack(self, api_client: AsyncClient, tenant, make_deliverable, settle):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/variants",
            json={"pack": "social"},
            headers=tenant.headers,
        )
        await settle()

        assert response.json()["details"]["aspects"] == ["linkedin", "instagram", "facebook", "x"]
        body = (await api_client.get(f"/workflows/{response.json()['workflow_id']}", headers=tenant.headers)).json()
        assert len(body["result"]["variant_ids"]) == 4

    @pytest.mark.asyncio
    async def test_pack_or_aspects_required(self, api_client: AsyncClient, tenant, make_deliverable):
        deliverable = await make_deliverable(tenant.organization_id)

        response = await api_client.post(
            f"/deliverables/{deliverable.id}/variants",
            json={"aspects": []},
            headers=tenant.headers,
        )

        assert response.status_code == 400
