"""add revision prior status

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("deliverables", sa.Column("revision_prior_status", sa.String(20), nullable=True))


def downgrade() -> None:
    op.drop_column("deliverables", "revision_prior_status")
