"""Deliverable modification: direct edits, queued revisions, suggestions and undo."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..agents.generation import ContentGenerator
from ..core.config import settings
from ..db.models import Deliverable, ModificationRecord
from ..errors import (
    ConflictError,
    GenerationError,
    InvalidInputError,
    ModificationFailedError,
    RevisionInProgressError,
    SuggestionsFailedError,
)
from ..feedback import FeedbackRecorder
from ..audit import AuditEventType
from ..memory.interactions import MemoryStore
from ..metadata import DeliverableMetadata, RevisionLineage
from ..middleware.metrics import track_modification
from ..models import DeliverableStatus, ModificationMode, WorkflowKind
from ..quality.gate import QualityGate
from ..quality.validators import DeliverableDraft, is_binary
from ..storage import DeliverableStore
from ..workflows.runner import WorkflowRunner


logger = logging.getLogger(__name__)

REPLACE_PATTERN = re.compile(r"replace\s+[\"'“](.+?)[\"'”]\s+with\s+[\"'“](.*?)[\"'”]", re.IGNORECASE)
REWRITE_WORDS = ("rewrite", "regenerate", "new version", "from scratch", "completely")

IN_PLACE_ACTIONS = ("replace_text", "revise_in_place")

TYPE_TIPS = {
    "social-media": ["Lead with the hook in the first line.", "Try a shorter version for mobile feeds."],
    "email-sequence": ["Sharpen the subject line.", "Make the call to action a single clear step."],
    "ad-copy": ["Tighten the headline to under 40 characters.", "Test a benefit-led variant."],
    "blog-article": ["Add subheadings for skimmability.", "Close with a concrete next step for the reader."],
    "landing-page": ["Move the primary call to action above the fold.", "Add one line of social proof."],
    "press-release": ["Put the news in the first sentence.", "Add a quote from a spokesperson."],
    "strategic-brief": ["State the single most important objective up front.", "Add measurable success criteria."],
    "video-script": ["Hook viewers in the first three seconds.", "Add on-screen text cues."],
    "deck": ["Keep one idea per slide.", "End with a clear ask."],
    "localized-copy": ["Check idioms for the target market.", "Adapt units, dates and currency."],
}


VARIANT_PACKS = {
    "social": ["linkedin", "instagram", "facebook", "x"],
    "ads": ["benefit-led headline", "urgency", "social proof"],
    "channels": ["email", "social post", "landing page hero"],
}


class ModificationResult(BaseModel):
    success: bool = True
    action: str
    message: str
    new_deliverable_id: Optional[str] = None
    workflow_id: Optional[str] = None
    preview_url: Optional[str] = None
    estimated_time: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class Suggestion(BaseModel):
    text: str
    source: str


@dataclass
class DirectEdit:
    action: str
    content: str


def classify_instruction(instruction: str) -> str:
    if REPLACE_PATTERN.search(instruction):
        return "replace_text"
    lowered = instruction.lower()
    if any(word in lowered for word in REWRITE_WORDS):
        return "new_revision"
    return "revise_in_place"


def _preview_url(deliverable_id: str) -> str:
    return f"{settings.HOSTED_BASE_URL.rstrip('/')}/{deliverable_id}/content"


class ModificationService:
    def __init__(
        self,
        generator: ContentGenerator,
        quality_gate: QualityGate,
        store: DeliverableStore,
        memory: MemoryStore,
        feedback: FeedbackRecorder,
        runner: WorkflowRunner,
        direct_timeout: Optional[float] = None,
    ):
        self.generator = generator
        self.quality_gate = quality_gate
        self.store = store
        self.memory = memory
        self.feedback = feedback
        self.runner = runner
        self.direct_timeout = direct_timeout or settings.DIRECT_MODIFICATION_TIMEOUT_SECONDS

    async def process_modification(
        self,
        deliverable_id: str,
        instruction: str,
        organization_id: str,
        actor_id: str,
        mode: str = ModificationMode.direct.value,
        failure_error: Type[ModificationFailedError] = ModificationFailedError,
    ) -> ModificationResult:
        """Apply ``instruction`` to a deliverable.

        Direct mode edits synchronously within ``direct_timeout``; workflow mode
        queues a revision job and returns its id. Either way the deliverable
        holds the revision lock while work is in flight.
        """
        instruction = (instruction or "").strip()
        if not instruction:
            raise InvalidInputError("instruction is required")
        if mode not in (ModificationMode.direct.value, ModificationMode.workflow.value):
            raise InvalidInputError(f"mode must be 'direct' or 'workflow', got '{mode}'")

        deliverable = await self.store.load(deliverable_id, organization_id)
        prior_status = deliverable.status
        holder = f"direct:{uuid4()}" if mode == ModificationMode.direct.value else str(uuid4())
        if not await self.store.acquire_revision_lock(deliverable_id, organization_id, holder):
            track_modification(mode, "conflict")
            raise RevisionInProgressError("A revision of this deliverable is already in progress")

        if mode == ModificationMode.workflow.value:
            result = await self._queue_revision(deliverable, instruction, actor_id, holder, prior_status)
        else:
            result = await self._direct(deliverable, instruction, actor_id, holder, prior_status, failure_error)

        track_modification(mode, "ok")
        self.feedback.modification(
            organization_id=organization_id,
            actor_id=actor_id,
            deliverable_id=deliverable_id,
            deliverable_type=deliverable.type,
            campaign_id=deliverable.campaign_id,
            original_content=deliverable.content,
            instruction=instruction,
            iteration_count=result.details.get("iteration_count", deliverable.iteration_count),
            mode=mode,
            action=result.action,
            new_deliverable_id=result.new_deliverable_id,
            workflow_id=result.workflow_id,
        )
        return result

    async def _direct(
        self,
        deliverable: Deliverable,
        instruction: str,
        actor_id: str,
        holder: str,
        prior_status: str,
        failure_error: Type[ModificationFailedError],
    ) -> ModificationResult:
        try:
            edit, patch = await asyncio.wait_for(self._prepare_edit(deliverable, instruction), timeout=self.direct_timeout)
        except asyncio.TimeoutError:
            await self.store.release_revision_lock(deliverable.id, prior_status, holder=holder)
            track_modification(ModificationMode.direct.value, "timeout")
            raise failure_error(
                f"Modification did not finish within {self.direct_timeout:g}s; retry with mode 'workflow'"
            )
        except (GenerationError, ModificationFailedError) as e:
            await self.store.release_revision_lock(deliverable.id, prior_status, holder=holder)
            track_modification(ModificationMode.direct.value, "failed")
            raise failure_error(getattr(e, "message", None) or str(e) or "Modification failed")
        except Exception:
            await self.store.release_revision_lock(deliverable.id, prior_status, holder=holder)
            raise

        try:
            if edit.action == "new_revision":
                return await self._save_revision(deliverable, instruction, actor_id, holder, prior_status, edit, patch)
            return await self._save_in_place(deliverable, instruction, actor_id, holder, edit, patch)
        except Exception:
            await self.store.release_revision_lock(deliverable.id, prior_status, holder=holder)
            raise

    async def _prepare_edit(self, deliverable: Deliverable, instruction: str) -> Tuple[DirectEdit, Dict[str, Any]]:
        """The edited content and its quality metadata; the whole of it counts against the direct-mode limit."""
        edit = await self._compute_edit(deliverable, instruction)
        return edit, await self._quality_patch(deliverable, edit.content)

    async def _compute_edit(self, deliverable: Deliverable, instruction: str) -> DirectEdit:
        action = classify_instruction(instruction)
        if action == "replace_text":
            match = REPLACE_PATTERN.search(instruction)
            old, new = match.group(1), match.group(2)
            if old not in deliverable.content:
                raise ModificationFailedError(f"Text '{old}' does not appear in the deliverable")
            return DirectEdit(action, deliverable.content.replace(old, new))

        context = await self.store.project_context(deliverable.organization_id, deliverable.project_id)
        content = await self.generator.revise(deliverable.content, instruction, {**context, "type": deliverable.type})
        if not content or not content.strip():
            raise GenerationError("Generator returned empty content")
        return DirectEdit(action, content)

    async def _quality_patch(self, deliverable: Deliverable, content: str) -> Dict[str, Any]:
        draft = DeliverableDraft(
            type=deliverable.type,
            content=content,
            title=deliverable.title,
            file_path=deliverable.file_path,
            content_format=deliverable.content_format,
        )
        if is_binary(draft) or draft.content_format != "text":
            return {}
        context = await self.store.project_context(deliverable.organization_id, deliverable.project_id)
        assessment = await self.quality_gate.evaluate_deliverable(draft, context)
        return DeliverableMetadata(
            quality=assessment.snapshot(),
            validators=self.quality_gate.run_hard_validators(draft, context),
        ).to_raw()

    async def _save_in_place(
        self,
        deliverable: Deliverable,
        instruction: str,
        actor_id: str,
        holder: str,
        edit: DirectEdit,
        patch: Dict[str, Any],
    ) -> ModificationResult:
        async with self.store.session_factory() as session:
            row = await self.store.get_owned(session, deliverable.id, deliverable.organization_id, for_update=True)
            previous = row.content
            row.content = edit.content
            row.iteration_count = (row.iteration_count or 0) + 1
            if patch:
                row.meta = DeliverableMetadata.from_raw(row.meta).merge(DeliverableMetadata.from_raw(patch)).to_raw()
            if row.revision_holder == holder:
                # edited content needs a fresh approval
                row.status = DeliverableStatus.draft.value
                row.revision_holder = None
                row.revision_locked_at = None
                row.revision_prior_status = None
            session.add(ModificationRecord(
                deliverable_id=row.id,
                organization_id=row.organization_id,
                actor_id=actor_id,
                instruction=instruction,
                mode=ModificationMode.direct.value,
                action=edit.action,
                status="completed",
                previous_content=previous,
            ))
            await session.commit()
            iteration_count = row.iteration_count

        logger.info(f"Deliverable {deliverable.id} modified in place ({edit.action}), iteration {iteration_count}")
        return ModificationResult(
            action=edit.action,
            message="Deliverable updated",
            preview_url=_preview_url(deliverable.id),
            details={"iteration_count": iteration_count, "mode": ModificationMode.direct.value},
        )

    async def _save_revision(
        self,
        deliverable: Deliverable,
        instruction: str,
        actor_id: str,
        holder: str,
        prior_status: str,
        edit: DirectEdit,
        patch: Dict[str, Any],
    ) -> ModificationResult:
        metadata = DeliverableMetadata.from_raw(patch)
        metadata.lineage = RevisionLineage(revision_of=deliverable.id, instruction=instruction)
        revision = Deliverable(
            organization_id=deliverable.organization_id,
            project_id=deliverable.project_id,
            task_id=deliverable.task_id,
            campaign_id=deliverable.campaign_id,
            agent_id=deliverable.agent_id,
            type=deliverable.type,
            title=deliverable.title,
            content=edit.content,
            content_format=deliverable.content_format,
            file_path=deliverable.file_path,
            meta=metadata.to_raw(),
            status=DeliverableStatus.draft.value,
        )
        async with self.store.session_factory() as session:
            session.add(revision)
            await session.flush()
            row = await self.store.get_owned(session, deliverable.id, deliverable.organization_id, for_update=True)
            row.meta = DeliverableMetadata.from_raw(row.meta).merge(
                DeliverableMetadata(lineage=RevisionLineage(last_revision_id=revision.id))
            ).to_raw()
            if row.revision_holder == holder:
                row.status = prior_status
                row.revision_holder = None
                row.revision_locked_at = None
                row.revision_prior_status = None
            session.add(ModificationRecord(
                deliverable_id=row.id,
                organization_id=row.organization_id,
                actor_id=actor_id,
                instruction=instruction,
                mode=ModificationMode.direct.value,
                action=edit.action,
                status="completed",
                new_deliverable_id=revision.id,
            ))
            await session.commit()
            revision_id = revision.id

        logger.info(f"Deliverable {deliverable.id} revised as {revision_id}")
        return ModificationResult(
            action=edit.action,
            message="New revision created",
            new_deliverable_id=revision_id,
            preview_url=_preview_url(revision_id),
            details={"iteration_count": deliverable.iteration_count, "mode": ModificationMode.direct.value},
        )

    async def _queue_revision(
        self,
        deliverable: Deliverable,
        instruction: str,
        actor_id: str,
        workflow_id: str,
        prior_status: str,
    ) -> ModificationResult:
        try:
            workflow = await self.store.create_workflow(
                id=workflow_id,
                organization_id=deliverable.organization_id,
                user_id=actor_id,
                project_id=deliverable.project_id,
                deliverable_id=deliverable.id,
                kind=WorkflowKind.revision.value,
                goal=f"Revise deliverable {deliverable.id}: {instruction}",
                payload={"instruction": instruction, "prior_status": prior_status, "actor_id": actor_id},
            )
            await self.store.record_modification(
                deliverable_id=deliverable.id,
                organization_id=deliverable.organization_id,
                actor_id=actor_id,
                instruction=instruction,
                mode=ModificationMode.workflow.value,
                action="revision_queued",
                status="queued",
                workflow_id=workflow_id,
            )
        except Exception:
            await self.store.release_revision_lock(deliverable.id, prior_status, holder=workflow_id)
            raise

        self.runner.enqueue(workflow)
        return ModificationResult(
            action="revision_queued",
            message="Revision queued",
            workflow_id=workflow_id,
            estimated_time="1-3 minutes",
            details={"iteration_count": deliverable.iteration_count, "mode": ModificationMode.workflow.value},
        )

    async def queue_variants(
        self,
        deliverable_id: str,
        organization_id: str,
        actor_id: str,
        aspects: List[str],
    ) -> ModificationResult:
        """Queue a variants workflow producing one alternative per aspect."""
        aspects = [a.strip() for a in aspects if a and a.strip()]
        if not aspects:
            raise InvalidInputError("at least one aspect is required")
        deliverable = await self.store.load(deliverable_id, organization_id)
        workflow = await self.store.create_workflow(
            organization_id=organization_id,
            user_id=actor_id,
            project_id=deliverable.project_id,
            deliverable_id=deliverable_id,
            kind=WorkflowKind.variants.value,
            goal=f"Create variants of deliverable {deliverable_id}: {', '.join(aspects)}",
            payload={"aspects": aspects},
        )
        self.feedback.audit(
            AuditEventType.DELIVERABLE_VARIANTS_QUEUED,
            {"aspects": aspects, "workflow_id": workflow.id},
            actor=actor_id,
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        self.runner.enqueue(workflow)
        return ModificationResult(
            action="variants_queued",
            message=f"{len(aspects)} variant(s) queued",
            workflow_id=workflow.id,
            estimated_time="1-3 minutes",
            details={"aspects": aspects},
        )

    async def get_suggestions(self, deliverable_id: str, organization_id: str) -> List[Suggestion]:
        deliverable = await self.store.load(deliverable_id, organization_id)
        try:
            metadata = DeliverableMetadata.from_raw(deliverable.meta)
            suggestions: List[Suggestion] = []
            if metadata.quality:
                suggestions += [Suggestion(text=s, source="quality") for s in metadata.quality.suggestions]
            for result in metadata.validators or []:
                if not result.passed:
                    suggestions.append(Suggestion(text=f"Fix {result.rule.replace('_', ' ')}: {result.detail}", source="validators"))
            suggestions += [Suggestion(text=t, source="type") for t in TYPE_TIPS.get(deliverable.type, [])]
            past = await self.memory.frequent_feedback(organization_id, deliverable.type)
            suggestions += [Suggestion(text=t, source="history") for t in past]
        except Exception as e:
            logger.error(f"Could not build suggestions for deliverable {deliverable_id}: {e}", exc_info=True)
            raise SuggestionsFailedError("Could not build suggestions")

        seen = set()
        unique = []
        for suggestion in suggestions:
            if suggestion.text not in seen:
                seen.add(suggestion.text)
                unique.append(suggestion)
        return unique

    async def get_modification_history(self, deliverable_id: str, organization_id: str) -> List[ModificationRecord]:
        return await self.store.modification_history(deliverable_id, organization_id)

    async def undo_last_modification(self, deliverable_id: str, organization_id: str, actor_id: str) -> ModificationResult:
        """Restore the content before the latest in-place edit not yet undone."""
        async with self.store.session_factory() as session:
            row = await self.store.get_owned(session, deliverable_id, organization_id, for_update=True)
            if row.status == DeliverableStatus.revising.value:
                raise RevisionInProgressError("A revision of this deliverable is already in progress")

            history = (await session.execute(
                select(ModificationRecord)
                .where(ModificationRecord.deliverable_id == deliverable_id)
                .order_by(ModificationRecord.created_at.desc(), ModificationRecord.id.desc())
            )).scalars().all()
            pending_undos = 0
            target: Optional[ModificationRecord] = None
            for record in history:
                if record.action == "undo":
                    pending_undos += 1
                elif record.action in IN_PLACE_ACTIONS and record.previous_content is not None:
                    if pending_undos:
                        pending_undos -= 1
                    else:
                        target = record
                        break
            if target is None:
                raise ConflictError("There is no modification to undo")

            current = row.content
            row.content = target.previous_content
            row.iteration_count = max(0, (row.iteration_count or 0) - 1)
            row.status = DeliverableStatus.draft.value
            session.add(ModificationRecord(
                deliverable_id=row.id,
                organization_id=organization_id,
                actor_id=actor_id,
                instruction=f"Undo: {target.instruction}",
                mode=ModificationMode.direct.value,
                action="undo",
                status="completed",
                previous_content=current,
            ))
            await session.commit()
            iteration_count = row.iteration_count

        self.feedback.audit(
            AuditEventType.DELIVERABLE_UNDONE,
            {"undone_record": target.id, "iteration_count": iteration_count},
            actor=actor_id,
            organization_id=organization_id,
            resource=f"deliverable:{deliverable_id}",
        )
        return ModificationResult(
            action="undo",
            message="Last modification undone",
            preview_url=_preview_url(deliverable_id),
            details={"iteration_count": iteration_count, "undone_record": target.id},
        )
