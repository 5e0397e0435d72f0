"""Request and response schemas for the HTTP API.

Responses are snake_case. Request bodies also accept the camelCase spellings
existing clients send (``durationDays``, ``autoPublish``, ...).
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .models import ModificationMode


def camel(name: str, camel_name: str) -> AliasChoices:
    return AliasChoices(name, camel_name)


# Auth

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    organization_name: str = Field(..., min_length=1, validation_alias=camel("organization_name", "organizationName"))
    industry: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    role: str
    active: bool
    organization_id: Optional[str] = None
    created_at: datetime


# Projects

class ProjectCreate(BaseModel):
    request: str = Field(..., description="Natural-language client request")
    client_id: Optional[str] = Field(default=None, validation_alias=camel("client_id", "clientId"))
    campaign_id: Optional[str] = Field(default=None, validation_alias=camel("campaign_id", "campaignId"))
    context: Dict[str, Any] = Field(default_factory=dict)


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    campaign_id: Optional[str] = None
    client_id: Optional[str] = None
    request: str
    status: str
    project_type: Optional[str] = None
    complexity: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    execution_plan: Optional[Dict[str, Any]] = None
    total_agents: int
    total_deliverables: int
    last_result: Optional[Dict[str, Any]] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DeliverablePreview(BaseModel):
    id: str
    type: str
    title: Optional[str] = None
    agent_id: Optional[str] = None
    phase: str
    content_preview: str
    truncated: bool
    file_path: Optional[str] = None
    verified: Optional[bool] = None
    quality_overall: Optional[float] = None
    reused: bool = False


class PhaseResult(BaseModel):
    name: str
    status: str
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    deliverables: int


class ExecuteResponse(BaseModel):
    success: bool
    project_id: str
    plan_id: str
    status: str
    phases: List[PhaseResult]
    deliverables: List[DeliverablePreview]
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    execution_time: float
    quality_gates: Dict[str, str]
    errors: List[Dict[str, str]] = Field(default_factory=list)


# Deliverables

class DeliverableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: Optional[str] = None
    campaign_id: Optional[str] = None
    agent_id: Optional[str] = None
    type: str
    title: Optional[str] = None
    content: Optional[str] = None
    content_format: str
    file_path: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=camel("meta", "metadata"))
    iteration_count: int
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_map(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}


class ModifyRequest(BaseModel):
    instruction: str = ""
    mode: ModificationMode = ModificationMode.direct


class ModificationResponse(BaseModel):
    success: bool
    action: str
    message: str
    new_deliverable_id: Optional[str] = None
    workflow_id: Optional[str] = None
    preview_url: Optional[str] = None
    estimated_time: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class SuggestionResponse(BaseModel):
    text: str
    source: str


class ModificationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    instruction: str
    mode: str
    action: str
    status: str
    actor_id: Optional[str] = None
    new_deliverable_id: Optional[str] = None
    workflow_id: Optional[str] = None
    created_at: datetime


class ApproveRequest(BaseModel):
    feedback: Optional[str] = None
    auto_publish: bool = Field(default=False, validation_alias=camel("auto_publish", "autoPublish"))


class PublishRequest(BaseModel):
    deliverable_id: str = Field(..., validation_alias=camel("deliverable_id", "deliverableId"))
    target: str = Field(..., min_length=1)
    when: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VariantsRequest(BaseModel):
    pack: Optional[Literal["social", "ads", "channels"]] = None
    aspects: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_pack_or_aspects(self):
        if not self.pack and not any(a.strip() for a in self.aspects):
            raise ValueError("either pack or aspects is required")
        return self


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: str
    status: str
    goal: str
    deliverable_id: Optional[str] = None
    project_id: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# Predictions

Channel = Literal["meta", "google", "linkedin", "tiktok", "twitter"]


class ForecastRequest(BaseModel):
    budget: float = Field(..., gt=0)
    duration_days: int = Field(..., ge=1, le=365, validation_alias=camel("duration_days", "durationDays"))
    channels: List[Channel] = Field(..., min_length=1)


class VariantPayload(BaseModel):
    variant_id: str = Field(..., validation_alias=camel("variant_id", "variantId"))
    variation_index: int = Field(default=0, validation_alias=camel("variation_index", "variationIndex"))
    headline: Optional[str] = None
    body_text: Optional[str] = Field(default=None, validation_alias=camel("body_text", "bodyText"))
    cta: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=camel("image_url", "imageUrl"))
    image_quality_score: Optional[float] = Field(
        default=None, validation_alias=camel("image_quality_score", "imageQualityScore")
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VariantRankRequest(BaseModel):
    campaign_prediction_id: str = Field(..., validation_alias=camel("campaign_prediction_id", "campaignPredictionId"))
    variants: List[VariantPayload] = Field(..., min_length=2)


class ActualMetrics(BaseModel):
    roi: float
    ctr: float
    cpc: float
    conversions: float
    revenue: float
    impressions: float = 0
    clicks: float = 0
    spend: float = 0


class PredictionFeedbackRequest(BaseModel):
    prediction_id: str = Field(..., validation_alias=camel("prediction_id", "predictionId"))
    actual_metrics: ActualMetrics = Field(..., validation_alias=camel("actual_metrics", "actualMetrics"))


class BudgetOptimizeRequest(BaseModel):
    total_budget: float = Field(..., gt=0, validation_alias=camel("total_budget", "totalBudget"))
    channels: List[str] = Field(..., min_length=1)
    objectives: List[str] = Field(default_factory=list)
    target_audience: Optional[Any] = Field(default=None, validation_alias=camel("target_audience", "targetAudience"))
