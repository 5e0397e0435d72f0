import logging
from typing import Any, Dict, List
from uuid import uuid4

from pydantic import BaseModel

from ..db.models import Deliverable
from ..errors import RevisionInProgressError, UnsupportedError
from ..feedback import FeedbackRecorder
from ..metadata import DeliverableMetadata, QualitySnapshot, RevisionLineage, ValidatorResult
from ..middleware.metrics import track_quality
from ..models import DeliverableStatus
from ..quality.gate import AutoFixOutcome, QualityGate
from ..quality.validators import DeliverableDraft, is_binary
from ..storage import DeliverableStore


logger = logging.getLogger(__name__)


class FixResult(BaseModel):
    success: bool = True
    revision_id: str
    verified: bool
    attempts: int
    quality: QualitySnapshot
    validators: List[ValidatorResult]


class QualityService:
    """Fix-and-recheck: auto-fix a deliverable into a new verified revision."""

    def __init__(self, quality_gate: QualityGate, store: DeliverableStore, feedback: FeedbackRecorder):
        self.quality_gate = quality_gate
        self.store = store
        self.feedback = feedback

    async def fix_and_recheck(self, deliverable_id: str, organization_id: str, actor_id: str) -> FixResult:
        deliverable = await self.store.load(deliverable_id, organization_id)
        draft = DeliverableDraft(
            type=deliverable.type,
            content=deliverable.content,
            title=deliverable.title,
            file_path=deliverable.file_path,
            content_format=deliverable.content_format,
        )
        if is_binary(draft):
            raise UnsupportedError(f"Auto-fix is not supported for {deliverable.type} deliverables")

        prior_status = deliverable.status
        holder = f"direct:{uuid4()}"
        if not await self.store.acquire_revision_lock(deliverable_id, organization_id, holder):
            raise RevisionInProgressError("A revision of this deliverable is already in progress")
        try:
            outcome = await self._fix(deliverable, draft)
            snapshot = outcome.quality.snapshot()
            revision_id = await self._save(deliverable, outcome, snapshot)
        finally:
            await self.store.release_revision_lock(deliverable_id, prior_status, holder=holder)

        track_quality(deliverable.type, outcome.verified)
        logger.info(
            f"Auto-fixed deliverable {deliverable_id} into {revision_id}: "
            f"verified={outcome.verified} attempts={outcome.attempts}"
        )
        self.feedback.auto_fix(
            organization_id=organization_id,
            actor_id=actor_id,
            deliverable_id=deliverable_id,
            deliverable_type=deliverable.type,
            campaign_id=deliverable.campaign_id,
            original_content=deliverable.content,
            suggestions=outcome.applied,
            iteration_count=deliverable.iteration_count or 0,
            revision_id=revision_id,
            verified=outcome.verified,
            attempts=outcome.attempts,
        )
        return FixResult(
            revision_id=revision_id,
            verified=outcome.verified,
            attempts=outcome.attempts,
            quality=snapshot,
            validators=outcome.validators,
        )

    async def _fix(self, deliverable: Deliverable, draft: DeliverableDraft) -> AutoFixOutcome:
        stored = DeliverableMetadata.from_raw(deliverable.meta)
        context: Dict[str, Any] = await self.store.project_context(deliverable.organization_id, deliverable.project_id)
        return await self.quality_gate.auto_fix(
            draft,
            context,
            stored_suggestions=stored.quality.suggestions if stored.quality else None,
        )

    async def _save(self, deliverable: Deliverable, outcome: AutoFixOutcome, snapshot: QualitySnapshot) -> str:
        metadata = DeliverableMetadata(
            quality=snapshot,
            validators=outcome.validators,
            lineage=RevisionLineage(revision_of=deliverable.id, fixed_by="auto_fix"),
        )
        revision = Deliverable(
            organization_id=deliverable.organization_id,
            project_id=deliverable.project_id,
            task_id=deliverable.task_id,
            campaign_id=deliverable.campaign_id,
            agent_id=deliverable.agent_id,
            type=deliverable.type,
            title=deliverable.title,
            content=outcome.content,
            content_format=deliverable.content_format,
            meta=metadata.to_raw(),
            status=DeliverableStatus.draft.value,
        )
        async with self.store.session_factory() as session:
            session.add(revision)
            await session.flush()
            original = await self.store.get_owned(session, deliverable.id, deliverable.organization_id, for_update=True)
            original.meta = DeliverableMetadata.from_raw(original.meta).merge(
                DeliverableMetadata(lineage=RevisionLineage(last_revision_id=revision.id))
            ).to_raw()
            await session.commit()
            return revision.id
