"""Database models for the orchestration service.

Projects own an execution plan; executing it produces tasks and deliverables.
Deliverables are revised, approved and published; every modification is kept in
an append-only trail and fed back into the interaction memory and forecasting
tables.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class Organization(Base):
    """Tenant boundary for every owned row."""

    __tablename__ = "organizations"

    id = Column(String(), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    industry = Column(String(100), nullable=True)
    brand_guidelines = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class User(Base):
    """Model for user authentication and authorization."""

    __tablename__ = "users"

    id = Column(String(), primary_key=True, default=_uuid)
    username = Column(String(), nullable=False, unique=True)
    email = Column(String(), nullable=False, unique=True)
    password_hash = Column(String(), nullable=False)
    role = Column(String(), nullable=False, default="user")
    active = Column(Boolean(), nullable=False, default=True)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(), primary_key=True, default=_uuid)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    industry = Column(String(100), nullable=True)
    objective = Column(String(100), nullable=True)
    status = Column(String(50), nullable=False, default="draft")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())

    metrics = relationship("CampaignMetric", back_populates="campaign", cascade="all, delete-orphan")


class CampaignMetric(Base):
    """Historical per-channel performance, the input to forecasting."""

    __tablename__ = "campaign_metrics"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    campaign_id = Column(String(), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    channel = Column(String(50), nullable=False)
    spend = Column(Float(), nullable=False, default=0.0)
    impressions = Column(Integer(), nullable=False, default=0)
    clicks = Column(Integer(), nullable=False, default=0)
    conversions = Column(Integer(), nullable=False, default=0)
    revenue = Column(Float(), nullable=False, default=0.0)
    recorded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    campaign = relationship("Campaign", back_populates="metrics")


class CampaignPrediction(Base):
    """One forecast per request; later forecasts supersede, never overwrite."""

    __tablename__ = "campaign_predictions"

    id = Column(String(), primary_key=True, default=_uuid)
    campaign_id = Column(String(), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    inputs = Column(JSONType, nullable=False)
    predicted_roi = Column(Float(), nullable=False)
    predicted_ctr = Column(Float(), nullable=False)
    predicted_cpc = Column(Float(), nullable=False)
    predicted_conversions = Column(Float(), nullable=False)
    predicted_revenue = Column(Float(), nullable=False)
    confidence_score = Column(Float(), nullable=False)
    details = Column(JSONType, nullable=False)
    model_version = Column(String(50), nullable=False)
    superseded_by = Column(String(), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)
    actual_metrics = Column(JSONType, nullable=True)
    accuracy = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Project(Base):
    """A client request and the execution plan built from it."""

    __tablename__ = "projects"

    id = Column(String(), primary_key=True, default=_uuid)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(String(), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    client_id = Column(String(), nullable=True)
    request = Column(Text(), nullable=False)
    context = Column(JSONType, nullable=True)
    status = Column(String(50), nullable=False, default="planning")
    project_type = Column(String(50), nullable=True)
    complexity = Column(String(20), nullable=True)
    analysis = Column(JSONType, nullable=True)
    execution_plan = Column(JSONType, nullable=True)
    total_agents = Column(Integer(), nullable=False, default=0)
    total_deliverables = Column(Integer(), nullable=False, default=0)
    last_result = Column(JSONType, nullable=True)
    created_by = Column(String(), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")


class Workflow(Base):
    """Asynchronous job re-entering the plan/execute loop."""

    __tablename__ = "workflows"

    id = Column(String(), primary_key=True, default=_uuid)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(), nullable=True)
    project_id = Column(String(), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    deliverable_id = Column(String(), nullable=True)
    kind = Column(String(20), nullable=False)
    goal = Column(Text(), nullable=False)
    payload = Column(JSONType, nullable=True)
    plan = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False, default="queued")
    result = Column(JSONType, nullable=True)
    error = Column(Text(), nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Task(Base):
    """One executed plan assignment; unique per (plan, assignment)."""

    __tablename__ = "tasks"

    id = Column(String(), primary_key=True, default=_uuid)
    plan_id = Column(String(), nullable=False)
    assignment_key = Column(String(), nullable=False)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String(), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)
    workflow_id = Column(String(), ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True)
    agent_id = Column(String(), nullable=False)
    phase = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="running")
    error = Column(Text(), nullable=True)
    deliverable_count = Column(Integer(), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("plan_id", "assignment_key", name="uix_task_plan_assignment"),
    )

    project = relationship("Project", back_populates="tasks")


class Deliverable(Base):
    """Produced artifact; the unit of mutation for revisions and publication."""

    __tablename__ = "deliverables"

    id = Column(String(), primary_key=True, default=_uuid)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String(), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)
    task_id = Column(String(), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    campaign_id = Column(String(), nullable=True)
    plan_id = Column(String(), nullable=True)
    assignment_key = Column(String(), nullable=True)
    slot = Column(Integer(), nullable=True)
    agent_id = Column(String(), nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=True)
    content = Column(Text(), nullable=False, default="")
    content_format = Column(String(20), nullable=False, default="text")
    file_path = Column(String(), nullable=True)
    meta = Column("metadata", JSONType, nullable=True)  # "metadata" is reserved on declarative classes
    iteration_count = Column(Integer(), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="draft")
    revision_locked_at = Column(DateTime(timezone=True), nullable=True)
    revision_holder = Column(String(), nullable=True)
    revision_prior_status = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("plan_id", "assignment_key", "slot", name="uix_deliverable_plan_slot"),
    )


class ModificationRecord(Base):
    """Append-only trail of instructions applied to a deliverable."""

    __tablename__ = "modification_records"

    id = Column(String(), primary_key=True, default=_uuid)
    deliverable_id = Column(String(), ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String(), nullable=True)
    instruction = Column(Text(), nullable=False)
    mode = Column(String(20), nullable=False)
    action = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    new_deliverable_id = Column(String(), nullable=True)
    workflow_id = Column(String(), nullable=True)
    previous_content = Column(Text(), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class InteractionRecord(Base):
    """Long-term memory of approvals, revisions and modifications."""

    __tablename__ = "interaction_records"

    id = Column(Integer(), primary_key=True, autoincrement=True)
    organization_id = Column(String(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    interaction_type = Column(String(50), nullable=False)
    outcome = Column(String(50), nullable=False)
    deliverable_id = Column(String(), nullable=True)
    deliverable_type = Column(String(50), nullable=True)
    campaign_id = Column(String(), nullable=True)
    user_id = Column(String(), nullable=True)
    original_content = Column(Text(), nullable=True)
    feedback_content = Column(Text(), nullable=True)
    iteration_count = Column(Integer(), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
