"""Create pipeline core tables: deals, proposals, proposal views, webhooks, webhook logs.

Revision ID: 001_pipeline_core
Revises:
Create Date: 2026-10-19

Every table carries team_id (directly, or through its parent for
proposal_views) with a composite index for the team-scoped queries.
Webhook delivery counters are not stored; they are aggregated from
webhook_logs on read.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001_pipeline_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=None if nullable else sa.text("now()"),
        nullable=nullable,
    )


def upgrade() -> None:
    # ── deals ───────────────────────────────────────────────────────────

    op.create_table(
        "deals",
        _id_column(),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("value", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("stage", sa.String(50), server_default=sa.text("'lead'"), nullable=False),
        sa.Column("contact_id", UUID(as_uuid=True), nullable=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=True),
        _timestamp("expected_close_date", nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_deals_team_stage", "deals", ["team_id", "stage"])

    # ── proposals ───────────────────────────────────────────────────────

    op.create_table(
        "proposals",
        _id_column(),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("deal_id", UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("public_url", sa.Text(), nullable=True),
        _timestamp("signed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_proposals_team_created", "proposals", ["team_id", "created_at"])

    op.create_table(
        "proposal_views",
        _id_column(),
        sa.Column(
            "proposal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_proposal_views_proposal", "proposal_views", ["proposal_id"])

    # ── webhooks ────────────────────────────────────────────────────────

    op.create_table(
        "webhooks",
        _id_column(),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("secret_key", sa.String(64), nullable=False),
        sa.Column("events", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        _timestamp("last_triggered_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_webhooks_team_active", "webhooks", ["team_id", "active"])

    op.create_table(
        "webhook_logs",
        _id_column(),
        sa.Column(
            "webhook_id",
            UUID(as_uuid=True),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_webhook_logs_team_created", "webhook_logs", ["team_id", "created_at"])
    op.create_index("ix_webhook_logs_webhook_success", "webhook_logs", ["webhook_id", "success"])


def downgrade() -> None:
    op.drop_table("webhook_logs")
    op.drop_table("webhooks")
    op.drop_table("proposal_views")
    op.drop_table("proposals")
    op.drop_table("deals")
