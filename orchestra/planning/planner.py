"""Plan Builder: client request to execution plan."""

import logging
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from ..agents.registry import AgentRegistry
from ..errors import InvalidInputError
from ..models import (
    BINARY_TYPES,
    AgentAssignment,
    ClientRequest,
    ExecutionPlan,
    Phase,
    PlanAnalysis,
    PlanIntent,
)
from .analysis import SOCIAL_CHANNELS, RequestAnalyzer, request_analyzer


logger = logging.getLogger(__name__)


# (phase name, description, producer categories, deliverable types)
CAMPAIGN_PHASES = [
    ("Strategy", "Research, positioning and the strategic brief",
     ["strategy"], ["strategic-brief"]),
    ("Content Production", "Channel copy and long-form content",
     ["marketing", "creative"],
     ["press-release", "social-media", "email-sequence", "blog-article", "ad-copy", "landing-page"]),
    ("Creative Assets", "Visual, motion and presentation assets",
     ["creative", "design"], ["image", "video-script", "deck"]),
    ("Localization", "Market-specific adaptations of the core messaging",
     ["marketing"], ["localized-copy"]),
]

BASE_GATES = ["soft_quality", "hard_validators", "brand_consistency"]
CHANNEL_TYPES = {"social-media", "ad-copy", "email-sequence", "landing-page"}


class Planner:
    """Builds execution plans from client requests.

    Deterministic for a given request and registry: only ``plan_id`` differs
    between two plans built from the same input.
    """

    def __init__(self, registry: AgentRegistry, analyzer: RequestAnalyzer = request_analyzer):
        self.registry = registry
        self.analyzer = analyzer

    def analyze(self, request: ClientRequest) -> PlanAnalysis:
        if not request.request:
            raise InvalidInputError("request is required")
        return self.analyzer.analyze(request.request, request.context)

    def build_plan(self, request: ClientRequest) -> ExecutionPlan:
        analysis = self.analyze(request)
        if analysis.intent == PlanIntent.campaign:
            phases = self._campaign_phases(analysis, request.context)
            gates = self._campaign_gates(phases)
        else:
            phases, gates = self._intent_phase(analysis, request.context)

        plan = ExecutionPlan(
            plan_id=str(uuid4()),
            phases=phases,
            total_agents=len({a.agent_id for p in phases for a in p.agents}),
            total_deliverables=sum(p.estimated_deliverables for p in phases),
            quality_gates=gates,
            analysis=analysis,
        )
        logger.info(
            f"Built plan {plan.plan_id}: intent={analysis.intent.value} type={analysis.project_type} "
            f"complexity={analysis.complexity} phases={len(phases)} deliverables={plan.total_deliverables}"
        )
        return plan

    def _campaign_phases(self, analysis: PlanAnalysis, context: Dict) -> List[Phase]:
        wanted = set(analysis.requested_deliverables) | {item.type for item in analysis.expanded_scope}
        social = [c for c in analysis.channel_strategy.channels if c in SOCIAL_CHANNELS]
        phases: List[Phase] = []

        for name, description, categories, types in CAMPAIGN_PHASES:
            slots: List[Tuple[str, str, Optional[str]]] = []
            for deliverable_type in types:
                if deliverable_type not in wanted:
                    continue
                for focus in self._focus_values(deliverable_type, social, analysis.markets):
                    agent = self._pick_agent(deliverable_type, categories, focus)
                    if agent is not None:
                        slots.append((agent, deliverable_type, focus))
                if deliverable_type == "strategic-brief" and analysis.complexity == "complex":
                    extra = self._pick_agent(deliverable_type, categories, None, exclude=[s[0] for s in slots])
                    if extra is not None:
                        slots.append((extra, deliverable_type, "trends"))
            if slots:
                phases.append(self._phase(len(phases), name, description, slots))
        return phases

    def _focus_values(self, deliverable_type: str, social: List[str], markets: List[str]) -> List[Optional[str]]:
        if deliverable_type == "social-media" and social:
            return list(social)
        if deliverable_type == "localized-copy":
            return list(markets)
        return [None]

    def _pick_agent(
        self,
        deliverable_type: str,
        categories: List[str],
        focus: Optional[str],
        exclude: Optional[List[str]] = None,
    ) -> Optional[str]:
        channel = focus if focus in SOCIAL_CHANNELS else None
        for agent in self.registry.producers(deliverable_type, categories, channel):
            if exclude and agent.id in exclude:
                continue
            return agent.id
        logger.warning(f"No agent in {categories} can produce {deliverable_type} (focus={focus})")
        return None

    def _phase(self, index: int, name: str, description: str, slots: List[Tuple[str, str, Optional[str]]]) -> Phase:
        grouped: Dict[str, List[Tuple[str, Optional[str]]]] = {}
        for agent_id, deliverable_type, focus in slots:
            grouped.setdefault(agent_id, []).append((deliverable_type, focus))

        assignments = [
            AgentAssignment(
                agent_id=agent_id,
                role=self.registry.require(agent_id).role,
                expected_deliverables=[t for t, _ in items],
                focus=[f for _, f in items],
                assignment_key=f"{index}:{agent_id}",
            )
            for agent_id, items in grouped.items()
        ]
        return Phase(
            name=name,
            description=description,
            agents=assignments,
            estimated_deliverables=sum(len(a.expected_deliverables) for a in assignments),
        )

    def _campaign_gates(self, phases: List[Phase]) -> List[str]:
        produced = {t for p in phases for a in p.agents for t in a.expected_deliverables}
        gates = list(BASE_GATES)
        if "strategic-brief" in produced:
            gates.append("strategy_alignment")
        if produced & CHANNEL_TYPES:
            gates.append("channel_readiness")
        if "localized-copy" in produced:
            gates.append("localization_review")
        return gates

    def _intent_phase(self, analysis: PlanAnalysis, context: Dict) -> Tuple[List[Phase], List[str]]:
        deliverable_type = analysis.requested_deliverables[0]

        if analysis.intent == PlanIntent.publish:
            agent = self._pick_agent("publish-package", ["engineering"], None)
            if agent is None:
                raise InvalidInputError("No agent can package deliverables for publication")
            phase = self._phase(0, "Distribution", f"Package for {context.get('target', 'publication')}",
                                [(agent, "publish-package", context.get("target"))])
            return [phase], ["publication_package"]

        agent_id = context.get("agent_id")
        if not agent_id or self.registry.get(agent_id) is None or deliverable_type not in self.registry.require(agent_id).deliverables:
            agent_id = self._pick_agent(deliverable_type, [a.category for a in self.registry.all()], None)
        if agent_id is None:
            raise InvalidInputError(f"No agent can produce deliverable type {deliverable_type}")

        # binary assets carry no text to score
        gates = ["media_asset"] if deliverable_type in BINARY_TYPES else ["soft_quality", "hard_validators"]

        if analysis.intent == PlanIntent.variants:
            aspects = list(context.get("aspects") or [])
            if not aspects:
                raise InvalidInputError("variants require at least one aspect")
            slots = [(agent_id, deliverable_type, aspect) for aspect in aspects]
            return [self._phase(0, "Variant Generation", "Alternative takes on the source deliverable", slots)], gates[:1]

        slots = [(agent_id, deliverable_type, context.get("instruction"))]
        return [self._phase(0, "Revision", "Apply the requested revision", slots)], gates
