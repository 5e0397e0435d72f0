from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeliverableType(str, Enum):
    strategic_brief = "strategic-brief"
    social_media = "social-media"
    email_sequence = "email-sequence"
    blog_article = "blog-article"
    ad_copy = "ad-copy"
    video_script = "video-script"
    image = "image"
    deck = "deck"
    landing_page = "landing-page"
    press_release = "press-release"
    localized_copy = "localized-copy"
    publish_package = "publish-package"


# Canonical ordering used when a plan lists deliverable types
DELIVERABLE_TYPE_ORDER = [t.value for t in DeliverableType]

BINARY_TYPES = {DeliverableType.image.value, "video"}
BINARY_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".mp4", ".mov", ".webm")


class DeliverableStatus(str, Enum):
    draft = "draft"
    revising = "revising"
    approved = "approved"
    published = "published"


class ProjectStatus(str, Enum):
    planning = "planning"
    planned = "planned"
    executing = "executing"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class TaskStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class WorkflowStatus(str, Enum):
    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class WorkflowKind(str, Enum):
    revision = "revision"
    variants = "variants"
    publish = "publish"


class ModificationMode(str, Enum):
    direct = "direct"
    workflow = "workflow"


class PlanIntent(str, Enum):
    campaign = "campaign"
    revision = "revision"
    variants = "variants"
    publish = "publish"


class ClientRequest(BaseModel):
    """Natural-language request plus free-form context; never persisted as-is."""

    request: str = Field(..., description="What the client wants produced")
    client_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("request")
    @classmethod
    def strip_request(cls, value: str) -> str:
        return value.strip()


class AgentAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    role: str
    expected_deliverables: List[str]
    focus: List[Optional[str]] = Field(default_factory=list, description="Channel, market or aspect per slot")
    assignment_key: str

    def focus_for(self, slot: int) -> Optional[str]:
        return self.focus[slot] if slot < len(self.focus) else None


class Phase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    agents: List[AgentAssignment]
    estimated_deliverables: int


class ChannelStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: List[str] = Field(default_factory=list)
    secondary: List[str] = Field(default_factory=list)
    rationale: str = ""

    @property
    def channels(self) -> List[str]:
        return [*self.primary, *self.secondary]


class ScopeItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    reason: str


class PlanAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: PlanIntent = PlanIntent.campaign
    project_type: str
    complexity: str
    requested_deliverables: List[str] = Field(default_factory=list)
    expanded_scope: List[ScopeItem] = Field(default_factory=list)
    channel_strategy: ChannelStrategy = Field(default_factory=ChannelStrategy)
    markets: List[str] = Field(default_factory=list)


class ExecutionPlan(BaseModel):
    """Phase-ordered blueprint; re-planning builds a new plan with a new id."""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    phases: List[Phase]
    total_agents: int
    total_deliverables: int
    quality_gates: List[str]
    analysis: PlanAnalysis

    def assignments(self):
        for index, phase in enumerate(self.phases):
            for assignment in phase.agents:
                yield index, phase, assignment


class TokenData(BaseModel):
    email: Optional[str] = None
