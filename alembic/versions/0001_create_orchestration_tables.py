"""create orchestration tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("brand_guidelines", JSONB, nullable=True),
        _created_at(),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False, unique=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("objective", sa.String(100), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="draft"),
        _created_at(),
    )
    op.create_table(
        "campaign_metrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("campaign_id", sa.String(), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("channel", sa.String(50), nullable=False),
        sa.Column("spend", sa.Float(), nullable=False, server_default="0"),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_campaign_metrics_org_channel", "campaign_metrics", ["organization_id", "channel"])
    op.create_table(
        "campaign_predictions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("campaign_id", sa.String(), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inputs", JSONB, nullable=False),
        sa.Column("predicted_roi", sa.Float(), nullable=False),
        sa.Column("predicted_ctr", sa.Float(), nullable=False),
        sa.Column("predicted_cpc", sa.Float(), nullable=False),
        sa.Column("predicted_conversions", sa.Float(), nullable=False),
        sa.Column("predicted_revenue", sa.Float(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("details", JSONB, nullable=False),
        sa.Column("model_version", sa.String(50), nullable=False),
        sa.Column("superseded_by", sa.String(), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_metrics", JSONB, nullable=True),
        sa.Column("accuracy", JSONB, nullable=True),
        _created_at(),
    )
    op.create_index("ix_campaign_predictions_campaign", "campaign_predictions", ["campaign_id", "created_at"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", sa.String(), sa.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("request", sa.Text(), nullable=False),
        sa.Column("context", JSONB, nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="planning"),
        sa.Column("project_type", sa.String(50), nullable=True),
        sa.Column("complexity", sa.String(20), nullable=True),
        sa.Column("analysis", JSONB, nullable=True),
        sa.Column("execution_plan", JSONB, nullable=True),
        sa.Column("total_agents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_deliverables", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_result", JSONB, nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_projects_organization", "projects", ["organization_id"])

    op.create_table(
        "workflows",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("deliverable_id", sa.String(), nullable=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("goal", sa.Text(), nullable=False),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column("plan", JSONB, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("result", JSONB, nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_workflows_status_scheduled", "workflows", ["status", "scheduled_for"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("assignment_key", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("workflow_id", sa.String(), sa.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("phase", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("deliverable_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("plan_id", "assignment_key", name="uix_task_plan_assignment"),
    )

    op.create_table(
        "deliverables",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("task_id", sa.String(), sa.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("campaign_id", sa.String(), nullable=True),
        sa.Column("plan_id", sa.String(), nullable=True),
        sa.Column("assignment_key", sa.String(), nullable=True),
        sa.Column("slot", sa.Integer(), nullable=True),
        sa.Column("agent_id", sa.String(), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("content_format", sa.String(20), nullable=False, server_default="text"),
        sa.Column("file_path", sa.String(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("iteration_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("revision_locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision_holder", sa.String(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("plan_id", "assignment_key", "slot", name="uix_deliverable_plan_slot"),
    )
    op.create_index("ix_deliverables_org_project", "deliverables", ["organization_id", "project_id"])

    op.create_table(
        "modification_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("deliverable_id", sa.String(), sa.ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("instruction", sa.Text(), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("new_deliverable_id", sa.String(), nullable=True),
        sa.Column("workflow_id", sa.String(), nullable=True),
        sa.Column("previous_content", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_modification_records_deliverable", "modification_records", ["deliverable_id", "created_at"])

    op.create_table(
        "interaction_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("interaction_type", sa.String(50), nullable=False),
        sa.Column("outcome", sa.String(50), nullable=False),
        sa.Column("deliverable_id", sa.String(), nullable=True),
        sa.Column("deliverable_type", sa.String(50), nullable=True),
        sa.Column("campaign_id", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("original_content", sa.Text(), nullable=True),
        sa.Column("feedback_content", sa.Text(), nullable=True),
        sa.Column("iteration_count", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_interaction_records_org_type", "interaction_records", ["organization_id", "deliverable_type"])


def downgrade() -> None:
    op.drop_index("ix_interaction_records_org_type", table_name="interaction_records")
    op.drop_table("interaction_records")
    op.drop_index("ix_modification_records_deliverable", table_name="modification_records")
    op.drop_table("modification_records")
    op.drop_index("ix_deliverables_org_project", table_name="deliverables")
    op.drop_table("deliverables")
    op.drop_table("tasks")
    op.drop_index("ix_workflows_status_scheduled", table_name="workflows")
    op.drop_table("workflows")
    op.drop_index("ix_projects_organization", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_campaign_predictions_campaign", table_name="campaign_predictions")
    op.drop_table("campaign_predictions")
    op.drop_index("ix_campaign_metrics_org_channel", table_name="campaign_metrics")
    op.drop_table("campaign_metrics")
    op.drop_table("campaigns")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("organizations")
