"""Tests for the agent catalog, request analysis and plan building."""

import pytest

from orchestra.agents.registry import AgentDefinition, AgentRegistry, CatalogError, get_agent_registry
from orchestra.errors import InvalidInputError
from orchestra.models import ClientRequest, PlanIntent
from orchestra.planning.analysis import RequestAnalyzer
from orchestra.planning.planner import Planner


LINKEDIN_REQUEST = "Write a LinkedIn post about our new analytics dashboard"


@pytest.fixture
def planner():
    return Planner(get_agent_registry())


class TestAgentRegistry:
    """Tests for the packaged agent catalog."""

    def test_catalog_loads_in_category_order(self):
        registry = get_agent_registry()
        grouped = registry.grouped()

        assert list(grouped)[0] == "strategy"
        assert [a.id for a in grouped["strategy"]] == ["strategist", "trend-researcher"]
        assert sum(len(agents) for agents in grouped.values()) == len(registry.all())

    def test_producers_respect_channels(self):
        registry = get_agent_registry()

        tiktok = registry.producers("social-media", channel="tiktok")
        linkedin = registry.producers("social-media", channel="linkedin")

        assert [a.id for a in tiktok] == ["tiktok-strategist"]
        assert [a.id for a in linkedin] == ["content-creator"]

    def test_duplicate_ids_are_rejected(self):
        agent = AgentDefinition(id="writer", name="Writer", role="Copy", category="marketing")

        with pytest.raises(CatalogError):
            AgentRegistry([agent, agent])

    def test_unknown_agent(self):
        registry = get_agent_registry()

        assert registry.get("nobody") is None
        with pytest.raises(KeyError):
            registry.require("nobody")


class TestRequestAnalysis:
    """Tests for keyword classification of client requests."""

    def test_linkedin_post_request(self):
        analysis = RequestAnalyzer().analyze(LINKEDIN_REQUEST)

        assert analysis.intent == PlanIntent.campaign
        assert analysis.project_type == "general"
        assert analysis.requested_deliverables == ["social-media"]
        assert analysis.channel_strategy.channels == ["linkedin"]
        assert [item.type for item in analysis.expanded_scope] == ["strategic-brief"]
        assert analysis.complexity == "simple"

    def test_global_request_adds_markets_and_localization(self):
        analysis = RequestAnalyzer().analyze("Global product launch with press release and social posts")

        assert analysis.project_type == "product_launch"
        assert analysis.markets == ["EMEA", "APAC", "LATAM"]
        assert "localized-copy" in [item.type for item in analysis.expanded_scope]

    def test_context_overrides_channels(self):
        analysis = RequestAnalyzer().analyze("Social posts for our launch", {"channels": ["TikTok"]})

        assert analysis.channel_strategy.channels == ["tiktok"]


class TestPlanBuilder:
    """Tests for execution plan construction."""

    def test_campaign_plan_phases(self, planner):
        plan = planner.build_plan(ClientRequest(request=LINKEDIN_REQUEST))

        assert [p.name for p in plan.phases] == ["Strategy", "Content Production"]
        strategy, content = plan.phases
        assert strategy.agents[0].agent_id == "strategist"
        assert content.agents[0].agent_id == "content-creator"
        assert content.agents[0].expected_deliverables == ["social-media"]
        assert content.agents[0].focus == ["linkedin"]
        assert plan.total_agents == 2
        assert plan.total_deliverables == 2
        assert plan.quality_gates == [
            "soft_quality", "hard_validators", "brand_consistency", "strategy_alignment", "channel_readiness",
        ]

    def test_plans_differ_only_by_id(self, planner):
        first = planner.build_plan(ClientRequest(request=LINKEDIN_REQUEST))
        second = planner.build_plan(ClientRequest(request=LINKEDIN_REQUEST))

        assert first.plan_id != second.plan_id
        assert first.model_dump(exclude={"plan_id"}) == second.model_dump(exclude={"plan_id"})

    def test_assignment_keys_are_unique(self, planner):
        plan = planner.build_plan(ClientRequest(request="Global product launch with press release and social posts"))

        keys = [a.assignment_key for _, _, a in plan.assignments()]
        assert len(keys) == len(set(keys))

    def test_empty_request_rejected(self, planner):
        with pytest.raises(InvalidInputError):
            planner.build_plan(ClientRequest(request="   "))

    def test_variants_plan_has_one_slot_per_aspect(self, planner):
        plan = planner.build_plan(ClientRequest(
            request="Create variants",
            context={
                "intent": "variants",
                "deliverable_type": "social-media",
                "agent_id": "content-creator",
                "aspects": ["playful", "formal"],
            },
        ))

        assert [p.name for p in plan.phases] == ["Variant Generation"]
        assignment = plan.phases[0].agents[0]
        assert assignment.agent_id == "content-creator"
        assert assignment.expected_deliverables == ["social-media", "social-media"]
        assert assignment.focus == ["playful", "formal"]

    def test_variants_without_aspects_rejected(self, planner):
        with pytest.raises(InvalidInputError):
            planner.build_plan(ClientRequest(
                request="Create variants",
                context={"intent": "variants", "deliverable_type": "social-media"},
            ))

    def test_publish_plan_uses_packaging_agent(self, planner):
        plan = planner.build_plan(ClientRequest(
            request="Publish deliverable",
            context={"intent": "publish", "deliverable_type": "blog-article", "target": "wordpress"},
        ))

        assignment = plan.phases[0].agents[0]
        assert assignment.agent_id == "frontend-dev"
        assert assignment.expected_deliverables == ["publish-package"]
        assert plan.quality_gates == ["publication_package"]

    def test_revision_falls_back_when_agent_cannot_produce_type(self, planner):
        plan = planner.build_plan(ClientRequest(
            request="Revise deliverable",
            context={"intent": "revision", "deliverable_type": "press-release", "agent_id": "content-creator"},
        ))

        assert plan.phases[0].agents[0].agent_id == "cmo"

    def test_binary_revision_uses_media_gate(self, planner):
        plan = planner.build_plan(ClientRequest(
            request="Revise deliverable",
            context={"intent": "revision", "deliverable_type": "image", "agent_id": "acd-visual"},
        ))

        assert plan.phases[0].agents[0].agent_id == "acd-visual"
        assert plan.quality_gates == ["media_asset"]

    def test_text_revision_keeps_text_gates(self, planner):
        plan = planner.build_plan(ClientRequest(
            request="Revise deliverable",
            context={"intent": "revision", "deliverable_type": "social-media", "agent_id": "content-creator"},
        ))

        assert plan.quality_gates == ["soft_quality", "hard_validators"]
