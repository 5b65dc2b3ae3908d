"""job deferral gate column and notification preferences

Revision ID: 20261020_000002
Revises: 20261019_000001
Create Date: 2026-10-20 00:00:02.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261020_000002"
down_revision = "20261019_000001"
branch_labels = None
depends_on = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    """Add the indexed deferral gate and the per-user preferences table."""
    op.add_column("automation_jobs", sa.Column("not_before", sa.DateTime(timezone=True), nullable=True))
    op.create_index("ix_automation_jobs_not_before", "automation_jobs", ["not_before"])
    op.execute(
        """
        UPDATE automation_jobs
        SET not_before = (delivery_log ->> 'not_before')::timestamptz
        WHERE status = 'pending' AND delivery_log ? 'not_before'
        """
    )

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("email_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("push_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "categories",
            _jsonb(),
            nullable=False,
            server_default=sa.text(
                """'{"leads": true, "quotes": true, "orders": true, "reviews": true}'::jsonb"""
            ),
        ),
        sa.Column("system", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("orders", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("marketing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("notification_preferences")
    op.drop_index("ix_automation_jobs_not_before", table_name="automation_jobs")
    op.drop_column("automation_jobs", "not_before")
