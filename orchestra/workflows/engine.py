"""Execution engine.

Walks an execution plan phase by phase. Assignments inside a phase run
concurrently on a bounded worker pool; each slot of an assignment is persisted
as soon as it is produced, keyed by (plan, assignment, slot), so re-running a
plan only fills in what is missing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..agents.generation import ContentGenerator, GeneratedContent, GenerationBrief
from ..agents.registry import AgentRegistry
from ..core.config import settings
from ..db.models import Deliverable, Task
from ..db.session import AsyncSessionLocal
from ..errors import GenerationError
from ..metadata import DeliverableMetadata, RevisionLineage
from ..middleware.metrics import track_agent_task, track_plan_execution, track_quality
from ..models import (
    BINARY_TYPES,
    DELIVERABLE_TYPE_ORDER,
    AgentAssignment,
    DeliverableStatus,
    ExecutionPlan,
    Phase,
    PlanIntent,
    TaskStatus,
)
from ..quality.gate import QualityGate
from ..quality.validators import DeliverableDraft, is_binary


logger = logging.getLogger(__name__)

TEXT_TYPES = frozenset(t for t in DELIVERABLE_TYPE_ORDER if t not in BINARY_TYPES)

# A gate is attainable when at least one of its types was produced
GATE_REQUIREMENTS = {
    "soft_quality": TEXT_TYPES,
    "hard_validators": TEXT_TYPES,
    "brand_consistency": TEXT_TYPES,
    "strategy_alignment": frozenset({"strategic-brief"}),
    "channel_readiness": frozenset({"social-media", "ad-copy", "email-sequence", "landing-page"}),
    "localization_review": frozenset({"localized-copy"}),
    "publication_package": frozenset({"publish-package"}),
    "media_asset": frozenset(BINARY_TYPES),
}


@dataclass
class SourceDeliverable:
    id: str
    type: str
    title: Optional[str]
    content: str
    agent_id: Optional[str] = None


@dataclass
class ExecutionContext:
    organization_id: str
    request: str
    project_id: Optional[str] = None
    campaign_id: Optional[str] = None
    workflow_id: Optional[str] = None
    project_context: Dict[str, Any] = field(default_factory=dict)
    source: Optional[SourceDeliverable] = None
    instruction: Optional[str] = None
    lineage: Dict[str, Any] = field(default_factory=dict)

    @property
    def brand(self) -> Dict[str, Any]:
        return dict(self.project_context.get("brandGuidelines") or {})


class ProducedDeliverable(BaseModel):
    id: str
    type: str
    title: Optional[str] = None
    agent_id: Optional[str] = None
    phase: str
    content: str
    file_path: Optional[str] = None
    verified: Optional[bool] = None
    quality_overall: Optional[float] = None
    reused: bool = False


class PhaseSummary(BaseModel):
    name: str
    status: str
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    deliverables: int


class ExecutionResult(BaseModel):
    plan_id: str
    status: str
    phases: List[PhaseSummary]
    deliverables: List[ProducedDeliverable]
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    execution_time: float
    quality_gates: Dict[str, str] = Field(default_factory=dict)
    errors: List[Dict[str, str]] = Field(default_factory=list)


@dataclass
class AssignmentOutcome:
    assignment: AgentAssignment
    completed: bool
    deliverables: List[ProducedDeliverable]
    error: Optional[str] = None


class ExecutionEngine:
    def __init__(
        self,
        registry: AgentRegistry,
        generator: ContentGenerator,
        quality_gate: QualityGate,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        max_concurrency: Optional[int] = None,
    ):
        self.registry = registry
        self.generator = generator
        self.quality_gate = quality_gate
        self.session_factory = session_factory
        self.max_concurrency = max(1, max_concurrency or settings.MAX_CONCURRENT_AGENTS)

    async def execute(self, plan: ExecutionPlan, context: ExecutionContext) -> ExecutionResult:
        """Run every phase in order and aggregate task statistics.

        Agent failures are counted and logged; the run only reports ``failed``
        when a declared quality gate can no longer be met.
        """
        started = time.monotonic()
        pool = asyncio.Semaphore(self.max_concurrency)
        phases: List[PhaseSummary] = []
        produced: List[ProducedDeliverable] = []
        errors: List[Dict[str, str]] = []

        logger.info(f"Executing plan {plan.plan_id} ({len(plan.phases)} phases) for org {context.organization_id}")

        for index, phase in enumerate(plan.phases):
            outcomes = await asyncio.gather(*(
                self._run_assignment(plan, index, phase, assignment, context, pool)
                for assignment in phase.agents
            ))
            completed = sum(1 for o in outcomes if o.completed)
            failed = len(outcomes) - completed
            phase_deliverables = [d for o in outcomes for d in o.deliverables]
            produced.extend(phase_deliverables)
            errors.extend(
                {"phase": phase.name, "agent_id": o.assignment.agent_id, "error": o.error or "failed"}
                for o in outcomes if not o.completed
            )
            phases.append(PhaseSummary(
                name=phase.name,
                status="completed" if failed == 0 else ("failed" if completed == 0 else "partial"),
                total_tasks=len(outcomes),
                completed_tasks=completed,
                failed_tasks=failed,
                deliverables=len(phase_deliverables),
            ))
            logger.info(f"Plan {plan.plan_id} phase '{phase.name}': {completed} completed, {failed} failed")

        produced_types = {d.type for d in produced}
        gates = {
            gate: "attainable" if produced_types & GATE_REQUIREMENTS.get(gate, frozenset()) else "unattainable"
            for gate in plan.quality_gates
        }
        total = sum(p.total_tasks for p in phases)
        completed_total = sum(p.completed_tasks for p in phases)
        failed_total = total - completed_total

        if any(v == "unattainable" for v in gates.values()):
            status = "failed"
        elif failed_total:
            status = "partial"
        else:
            status = "completed"

        elapsed = round(time.monotonic() - started, 3)
        track_plan_execution(status, elapsed)
        return ExecutionResult(
            plan_id=plan.plan_id,
            status=status,
            phases=phases,
            deliverables=produced,
            total_tasks=total,
            completed_tasks=completed_total,
            failed_tasks=failed_total,
            execution_time=elapsed,
            quality_gates=gates,
            errors=errors,
        )

    async def _run_assignment(
        self,
        plan: ExecutionPlan,
        phase_index: int,
        phase: Phase,
        assignment: AgentAssignment,
        context: ExecutionContext,
        pool: asyncio.Semaphore,
    ) -> AssignmentOutcome:
        async with pool:
            task, existing = await self._claim_task(plan, phase, assignment, context)
            if task.status == TaskStatus.completed.value:
                logger.debug(f"Task {plan.plan_id}:{assignment.assignment_key} already completed, reusing output")
                return AssignmentOutcome(assignment, True, [self._produced(d, phase, reused=True) for d in existing])

            results = [self._produced(d, phase, reused=True) for d in existing]
            done_slots = {d.slot for d in existing}
            error: Optional[str] = None

            for slot, deliverable_type in enumerate(assignment.expected_deliverables):
                if slot in done_slots:
                    continue
                try:
                    generated = await self._generate(plan, assignment, slot, deliverable_type, context)
                except Exception as e:
                    error = str(e) or e.__class__.__name__
                    logger.error(
                        f"Agent {assignment.agent_id} failed on {deliverable_type} "
                        f"(plan {plan.plan_id}, slot {slot}): {error}",
                        exc_info=not isinstance(e, GenerationError),
                    )
                    break
                row = await self._persist(plan, assignment, task.id, slot, deliverable_type, generated, context)
                results.append(self._produced(row, phase))

            await self._finish_task(task.id, len(results), error)
            track_agent_task(assignment.agent_id, "failed" if error else "completed")
            return AssignmentOutcome(assignment, error is None, results, error)

    async def _claim_task(
        self,
        plan: ExecutionPlan,
        phase: Phase,
        assignment: AgentAssignment,
        context: ExecutionContext,
    ) -> Tuple[Task, List[Deliverable]]:
        task_query = select(Task).where(Task.plan_id == plan.plan_id, Task.assignment_key == assignment.assignment_key)
        async with self.session_factory() as session:
            task = (await session.execute(task_query)).scalar_one_or_none()
            if task is None:
                task = Task(
                    plan_id=plan.plan_id,
                    assignment_key=assignment.assignment_key,
                    organization_id=context.organization_id,
                    project_id=context.project_id,
                    workflow_id=context.workflow_id,
                    agent_id=assignment.agent_id,
                    phase=phase.name,
                    status=TaskStatus.running.value,
                )
                session.add(task)
                try:
                    await session.commit()
                except IntegrityError:
                    # another executor claimed it first
                    await session.rollback()
                    task = (await session.execute(task_query)).scalar_one()
            elif task.status != TaskStatus.completed.value:
                task.status = TaskStatus.running.value
                task.error = None
                await session.commit()

            existing = (await session.execute(
                select(Deliverable)
                .where(Deliverable.plan_id == plan.plan_id, Deliverable.assignment_key == assignment.assignment_key)
                .order_by(Deliverable.slot)
            )).scalars().all()
            return task, list(existing)

    async def _generate(
        self,
        plan: ExecutionPlan,
        assignment: AgentAssignment,
        slot: int,
        deliverable_type: str,
        context: ExecutionContext,
    ) -> GeneratedContent:
        agent = self.registry.get(assignment.agent_id)
        if agent is None:
            raise GenerationError(f"Unknown agent {assignment.agent_id}")
        source = context.source
        brief = GenerationBrief(
            request=context.request,
            deliverable_type=deliverable_type,
            agent=agent,
            slot=slot,
            focus=assignment.focus_for(slot),
            intent=plan.analysis.intent.value,
            project_type=plan.analysis.project_type,
            channels=plan.analysis.channel_strategy.channels,
            brand=context.brand,
            instruction=context.instruction,
            source_title=source.title if source else None,
            source_content=source.content if source else None,
        )
        return await self.generator.generate(brief)

    async def _persist(
        self,
        plan: ExecutionPlan,
        assignment: AgentAssignment,
        task_id: str,
        slot: int,
        deliverable_type: str,
        generated: GeneratedContent,
        context: ExecutionContext,
    ) -> Deliverable:
        draft = DeliverableDraft(
            type=deliverable_type,
            content=generated.content,
            title=generated.title,
            file_path=generated.file_path,
            content_format=generated.content_format,
        )
        metadata = DeliverableMetadata()
        if not is_binary(draft) and draft.content_format == "text":
            assessment = await self.quality_gate.evaluate_deliverable(draft, context.project_context)
            metadata.quality = assessment.snapshot()
            metadata.validators = self.quality_gate.run_hard_validators(draft, context.project_context)
            track_quality(deliverable_type, metadata.verified)

        lineage = dict(context.lineage)
        if plan.analysis.intent == PlanIntent.variants:
            lineage["variant_aspect"] = assignment.focus_for(slot)
        if lineage:
            metadata.lineage = RevisionLineage(**lineage)

        row = Deliverable(
            organization_id=context.organization_id,
            project_id=context.project_id,
            task_id=task_id,
            campaign_id=context.campaign_id,
            plan_id=plan.plan_id,
            assignment_key=assignment.assignment_key,
            slot=slot,
            agent_id=assignment.agent_id,
            type=deliverable_type,
            title=(generated.title or "")[:255] or None,
            content=generated.content,
            content_format=generated.content_format,
            file_path=generated.file_path,
            meta=metadata.to_raw(),
            status=DeliverableStatus.draft.value,
        )
        async with self.session_factory() as session:
            session.add(row)
            try:
                await session.commit()
                return row
            except IntegrityError:
                await session.rollback()
                logger.info(f"Deliverable {plan.plan_id}:{assignment.assignment_key}:{slot} already produced")
                return (await session.execute(
                    select(Deliverable).where(
                        Deliverable.plan_id == plan.plan_id,
                        Deliverable.assignment_key == assignment.assignment_key,
                        Deliverable.slot == slot,
                    )
                )).scalar_one()

    async def _finish_task(self, task_id: str, deliverable_count: int, error: Optional[str]) -> None:
        async with self.session_factory() as session:
            task = await session.get(Task, task_id)
            task.status = TaskStatus.failed.value if error else TaskStatus.completed.value
            task.error = error
            task.deliverable_count = deliverable_count
            await session.commit()

    @staticmethod
    def _produced(row: Deliverable, phase: Phase, reused: bool = False) -> ProducedDeliverable:
        metadata = DeliverableMetadata.from_raw(row.meta)
        return ProducedDeliverable(
            id=row.id,
            type=row.type,
            title=row.title,
            agent_id=row.agent_id,
            phase=phase.name,
            content=row.content,
            file_path=row.file_path,
            verified=metadata.verified if metadata.quality else None,
            quality_overall=metadata.quality.overall if metadata.quality else None,
            reused=reused,
        )
