"""Tests for plan execution: phases, partial failure and idempotent re-runs."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from orchestra.agents.generation import GenerationBrief, SimulatedContentGenerator
from orchestra.agents.registry import get_agent_registry
from orchestra.db.models import Deliverable, Task
from orchestra.db.session import AsyncSessionLocal
from orchestra.errors import GenerationError
from orchestra.models import AgentAssignment, ExecutionPlan, Phase, PlanAnalysis
from orchestra.quality.gate import QualityGate
from orchestra.workflows.engine import ExecutionContext, ExecutionEngine


REQUEST = "Spring sale campaign for busy teams"


class FailingGenerator(SimulatedContentGenerator):
    """Simulated generator that cannot write the given deliverable types."""

    def __init__(self, failing_types):
        self.failing_types = set(failing_types)

    async def generate(self, brief: GenerationBrief):
        if brief.deliverable_type in self.failing_types:
            raise GenerationError(f"model refused {brief.deliverable_type}")
        return await super().generate(brief)


def build_plan(gates=("soft_quality", "channel_readiness")) -> ExecutionPlan:
    strategy = AgentAssignment(
        agent_id="strategist",
        role="Campaign strategy and positioning",
        expected_deliverables=["strategic-brief"],
        focus=[None],
        assignment_key="0:strategist",
    )
    social = AgentAssignment(
        agent_id="content-creator",
        role="Long-form, email and localized content",
        expected_deliverables=["social-media"],
        focus=["linkedin"],
        assignment_key="1:content-creator",
    )
    ads = AgentAssignment(
        agent_id="growth-hacker",
        role="Performance copy and conversion funnels",
        expected_deliverables=["ad-copy"],
        focus=[None],
        assignment_key="1:growth-hacker",
    )
    return ExecutionPlan(
        plan_id=str(uuid4()),
        phases=[
            Phase(name="Strategy", description="Brief", agents=[strategy], estimated_deliverables=1),
            Phase(name="Content Production", description="Copy", agents=[social, ads], estimated_deliverables=2),
        ],
        total_agents=3,
        total_deliverables=3,
        quality_gates=list(gates),
        analysis=PlanAnalysis(project_type="general", complexity="simple"),
    )


def engine_with(generator) -> ExecutionEngine:
    return ExecutionEngine(get_agent_registry(), generator, QualityGate(generator), max_concurrency=2)


async def count(model, **filters) -> int:
    query = select(func.count()).select_from(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    async with AsyncSessionLocal() as session:
        return (await session.execute(query)).scalar_one()


class TestExecution:
    """Tests for a full plan run."""

    @pytest.mark.asyncio
    async def test_all_phases_complete(self, tenant):
        plan = build_plan()
        engine = engine_with(SimulatedContentGenerator())

        result = await engine.execute(plan, ExecutionContext(organization_id=tenant.organization_id, request=REQUEST))

        assert result.status == "completed"
        assert [p.status for p in result.phases] == ["completed", "completed"]
        assert result.total_tasks == 3
        assert result.completed_tasks == 3
        assert {d.type for d in result.deliverables} == {"strategic-brief", "social-media", "ad-copy"}
        assert result.quality_gates == {"soft_quality": "attainable", "channel_readiness": "attainable"}
        assert await count(Deliverable, plan_id=plan.plan_id) == 3

    @pytest.mark.asyncio
    async def test_text_deliverables_carry_quality_metadata(self, tenant):
        plan = build_plan()
        engine = engine_with(SimulatedContentGenerator())

        result = await engine.execute(plan, ExecutionContext(organization_id=tenant.organization_id, request=REQUEST))

        async with AsyncSessionLocal() as session:
            row = await session.get(Deliverable, result.deliverables[0].id)
        assert row.status == "draft"
        assert "quality" in row.meta
        assert {v["rule"] for v in row.meta["validators"]} >= {"non_empty", "length_bounds"}

    @pytest.mark.asyncio
    async def test_agent_failure_gives_partial_result(self, tenant):
        plan = build_plan()
        engine = engine_with(FailingGenerator({"ad-copy"}))

        result = await engine.execute(plan, ExecutionContext(organization_id=tenant.organization_id, request=REQUEST))

        assert result.status == "partial"
        assert result.failed_tasks == 1
        assert result.phases[1].status == "partial"
        assert result.errors == [{
            "phase": "Content Production",
            "agent_id": "growth-hacker",
            "error": "model refused ad-copy",
        }]
        assert await count(Task, plan_id=plan.plan_id, status="failed") == 1

    @pytest.mark.asyncio
    async def test_unattainable_gate_fails_run(self, tenant):
        plan = build_plan(gates=("soft_quality", "localization_review"))
        engine = engine_with(SimulatedContentGenerator())

        result = await engine.execute(plan, ExecutionContext(organization_id=tenant.organization_id, request=REQUEST))

        assert result.status == "failed"
        assert result.quality_gates["localization_review"] == "unattainable"


class TestReExecution:
    """Re-running a plan only fills in what is missing."""

    @pytest.mark.asyncio
    async def test_second_run_creates_no_deliverables(self, tenant):
        plan = build_plan()
        engine = engine_with(SimulatedContentGenerator())
        context = ExecutionContext(organization_id=tenant.organization_id, request=REQUEST)

        first = await engine.execute(plan, context)
        second = await engine.execute(plan, context)

        assert await count(Deliverable, plan_id=plan.plan_id) == 3
        assert await count(Task, plan_id=plan.plan_id) == 3
        assert all(d.reused for d in second.deliverables)
        assert sorted(d.id for d in second.deliverables) == sorted(d.id for d in first.deliverables)

    @pytest.mark.asyncio
    async def test_retry_fills_only_failed_slot(self, tenant):
        plan = build_plan()
        context = ExecutionContext(organization_id=tenant.organization_id, request=REQUEST)

        await engine_with(FailingGenerator({"ad-copy"})).execute(plan, context)
        assert await count(Deliverable, plan_id=plan.plan_id) == 2

        result = await engine_with(SimulatedContentGenerator()).execute(plan, context)

        assert result.status == "completed"
        assert await count(Deliverable, plan_id=plan.plan_id) == 3
        fresh = [d for d in result.deliverables if not d.reused]
        assert [d.type for d in fresh] == ["ad-copy"]
