"""Workflow runner.

Revision, variant and deferred-publish jobs all re-enter the plan/execute loop:
the runner builds an intent plan for the source deliverable, stores it on the
workflow row, executes it and links the produced deliverables back to their
source. Terminal status (completed or failed) is the only outcome callers see.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..audit import AuditEventType
from ..db.models import Deliverable, Workflow
from ..errors import ConflictError, RevisionFailedError, ServiceError
from ..feedback import FeedbackRecorder
from ..metadata import PublishState, RevisionLineage
from ..middleware.metrics import track_publication, track_workflow_job
from ..models import ClientRequest, DeliverableStatus, PlanIntent, WorkflowKind, WorkflowStatus
from ..planning.planner import Planner
from ..storage import DeliverableStore, utcnow
from ..workers import BackgroundJobQueue
from .engine import ExecutionContext, ExecutionEngine, ExecutionResult, SourceDeliverable


logger = logging.getLogger(__name__)


class WorkflowRunner:
    def __init__(
        self,
        planner: Planner,
        engine: ExecutionEngine,
        store: DeliverableStore,
        feedback: FeedbackRecorder,
        jobs: BackgroundJobQueue,
    ):
        self.planner = planner
        self.engine = engine
        self.store = store
        self.feedback = feedback
        self.jobs = jobs

    def enqueue(self, workflow: Workflow) -> None:
        """Hand a queued workflow to the job queue unless it is scheduled for later."""
        scheduled = workflow.scheduled_for
        if scheduled is not None:
            if scheduled.tzinfo is None:
                scheduled = scheduled.replace(tzinfo=timezone.utc)
            if scheduled > utcnow():
                logger.info(f"Workflow {workflow.id} scheduled for {scheduled.isoformat()}")
                return
        self.jobs.submit(f"workflow:{workflow.id}", lambda: self.run(workflow.id))

    async def dispatch_due(self) -> int:
        """Enqueue every queued workflow whose schedule has come due."""
        due = await self.store.due_workflows()
        for workflow_id in due:
            self.jobs.submit(f"workflow:{workflow_id}", lambda wid=workflow_id: self.run(wid))
        return len(due)

    async def run(self, workflow_id: str) -> None:
        if not await self.store.claim_workflow(workflow_id):
            logger.debug(f"Workflow {workflow_id} already claimed")
            return

        async with self.store.session_factory() as session:
            workflow = await session.get(Workflow, workflow_id)
        payload: Dict[str, Any] = dict(workflow.payload or {})
        kind = workflow.kind
        self.feedback.audit(
            AuditEventType.WORKFLOW_STARTED,
            {"kind": kind, "goal": workflow.goal},
            actor=workflow.user_id or "system",
            organization_id=workflow.organization_id,
            resource=f"workflow:{workflow_id}",
        )
        logger.info(f"Running {kind} workflow {workflow_id}")

        try:
            if kind == WorkflowKind.revision.value:
                result = await self._run_revision(workflow, payload)
            elif kind == WorkflowKind.variants.value:
                result = await self._run_variants(workflow, payload)
            elif kind == WorkflowKind.publish.value:
                result = await self._run_publish(workflow, payload)
            else:
                raise ServiceError(f"Unknown workflow kind {kind}")
        except Exception as e:
            message = e.message if isinstance(e, ServiceError) else str(e)
            logger.error(f"Workflow {workflow_id} failed: {message}", exc_info=not isinstance(e, ServiceError))
            await self.store.update_workflow(
                workflow_id,
                status=WorkflowStatus.failed.value,
                error=message or e.__class__.__name__,
                completed_at=utcnow(),
            )
            if kind == WorkflowKind.revision.value and workflow.deliverable_id:
                await self.store.release_revision_lock(
                    workflow.deliverable_id,
                    payload.get("prior_status") or DeliverableStatus.draft.value,
                    holder=workflow_id,
                )
            track_workflow_job(kind, "failed")
            self.feedback.audit(
                AuditEventType.WORKFLOW_FAILED,
                {"kind": kind, "error": message},
                actor=workflow.user_id or "system",
                organization_id=workflow.organization_id,
                resource=f"workflow:{workflow_id}",
            )
            return

        await self.store.update_workflow(
            workflow_id,
            status=WorkflowStatus.completed.value,
            result=result,
            completed_at=utcnow(),
        )
        track_workflow_job(kind, "completed")
        self.feedback.audit(
            AuditEventType.WORKFLOW_COMPLETED,
            {"kind": kind, **{k: v for k, v in result.items() if k != "deliverables"}},
            actor=workflow.user_id or "system",
            organization_id=workflow.organization_id,
            resource=f"workflow:{workflow_id}",
        )

    async def _execute_intent(
        self,
        workflow: Workflow,
        source: Deliverable,
        intent: PlanIntent,
        context: Dict[str, Any],
        lineage: Dict[str, Any],
        instruction: Optional[str] = None,
    ) -> ExecutionResult:
        request = ClientRequest(
            request=workflow.goal,
            context={
                "intent": intent.value,
                "deliverable_type": source.type,
                "agent_id": source.agent_id,
                **context,
            },
        )
        plan = self.planner.build_plan(request)
        await self.store.update_workflow(workflow.id, plan=plan.model_dump(mode="json"))

        project_context = await self.store.project_context(workflow.organization_id, source.project_id)
        return await self.engine.execute(plan, ExecutionContext(
            organization_id=workflow.organization_id,
            request=workflow.goal,
            project_id=source.project_id,
            campaign_id=source.campaign_id,
            workflow_id=workflow.id,
            project_context=project_context,
            source=SourceDeliverable(
                id=source.id,
                type=source.type,
                title=source.title,
                content=source.content,
                agent_id=source.agent_id,
            ),
            instruction=instruction,
            lineage=lineage,
        ))

    async def _run_revision(self, workflow: Workflow, payload: Dict[str, Any]) -> Dict[str, Any]:
        source = await self.store.load(workflow.deliverable_id, workflow.organization_id)
        instruction = payload.get("instruction") or ""
        result = await self._execute_intent(
            workflow,
            source,
            PlanIntent.revision,
            {"instruction": instruction},
            {"revision_of": source.id, "instruction": instruction, "workflow_id": workflow.id},
            instruction=instruction,
        )
        if not result.deliverables:
            raise RevisionFailedError(f"Revision produced no deliverable: {result.errors or result.quality_gates}")
        if result.status == "failed":
            logger.warning(f"Revision workflow {workflow.id} missed quality gates {result.quality_gates}")

        revision = result.deliverables[0]
        await self.store.merge_metadata(
            source.id,
            workflow.organization_id,
            {"lineage": RevisionLineage(last_revision_id=revision.id, workflow_id=workflow.id).model_dump(exclude_none=True)},
        )
        await self.store.release_revision_lock(
            source.id,
            payload.get("prior_status") or DeliverableStatus.draft.value,
            holder=workflow.id,
        )
        return {
            "plan_id": result.plan_id,
            "status": result.status,
            "new_deliverable_id": revision.id,
            "deliverables": [d.id for d in result.deliverables],
        }

    async def _run_variants(self, workflow: Workflow, payload: Dict[str, Any]) -> Dict[str, Any]:
        source = await self.store.load(workflow.deliverable_id, workflow.organization_id)
        result = await self._execute_intent(
            workflow,
            source,
            PlanIntent.variants,
            {"aspects": payload.get("aspects") or []},
            {"revision_of": source.id, "workflow_id": workflow.id},
        )
        if not result.deliverables:
            raise ServiceError("No variants were produced")
        return {
            "plan_id": result.plan_id,
            "status": result.status,
            "variant_ids": [d.id for d in result.deliverables],
            "deliverables": [d.id for d in result.deliverables],
        }

    async def _run_publish(self, workflow: Workflow, payload: Dict[str, Any]) -> Dict[str, Any]:
        target = payload.get("target") or "unknown"
        source = await self.store.load(workflow.deliverable_id, workflow.organization_id)
        self._check_publishable(source)

        result = await self._execute_intent(workflow, source, PlanIntent.publish, {"target": target}, {})
        package = next((d for d in result.deliverables if d.type == "publish-package"), None)
        if package is None:
            raise ServiceError(f"Could not package deliverable {source.id} for {target}")

        publish = PublishState(
            target=target,
            status=DeliverableStatus.published.value,
            workflow_id=workflow.id,
            at=datetime.now(timezone.utc),
            fallback=bool(payload.get("fallback")),
            options=payload.get("options") or {},
        )
        async with self.store.session_factory() as session:
            deliverable = await self.store.get_owned(session, source.id, workflow.organization_id, for_update=True)
            self._check_publishable(deliverable)
            deliverable.status = DeliverableStatus.published.value
            await session.commit()
        await self.store.merge_metadata(
            source.id, workflow.organization_id, {"publish": publish.model_dump(mode="json", exclude_none=True)}
        )

        track_publication(target, "workflow")
        self.feedback.publication(
            organization_id=workflow.organization_id,
            actor_id=workflow.user_id,
            deliverable_id=source.id,
            deliverable_type=source.type,
            campaign_id=source.campaign_id,
            target=target,
            outcome="published",
            details={"workflow_id": workflow.id, "package_id": package.id},
        )
        return {
            "plan_id": result.plan_id,
            "status": result.status,
            "target": target,
            "package_id": package.id,
            "deliverables": [d.id for d in result.deliverables],
        }

    @staticmethod
    def _check_publishable(deliverable: Deliverable) -> None:
        if deliverable.status not in (DeliverableStatus.approved.value, DeliverableStatus.published.value):
            raise ConflictError(f"Deliverable is {deliverable.status}, only approved deliverables can be published")
