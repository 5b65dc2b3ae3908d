"""initial communications schema

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19 00:00:01.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


user_role_enum = postgresql.ENUM("client", "supplier", "admin", name="user_role", create_type=False)
trigger_event_enum = postgresql.ENUM(
    "lead_new",
    "quote_sent_no_open",
    "quote_viewed_no_accept",
    "payment_due",
    "order_completed_review",
    name="automation_trigger_event",
    create_type=False,
)
channel_enum = postgresql.ENUM(
    "email", "sms", "notification", "whatsapp", name="automation_channel", create_type=False
)
job_status_enum = postgresql.ENUM(
    "pending", "processing", "sent", "failed", "cancelled", name="automation_job_status", create_type=False
)
entity_kind_enum = postgresql.ENUM("lead", "quote", "order", name="automation_entity_kind", create_type=False)

ENUMS = (user_role_enum, trigger_event_enum, channel_enum, job_status_enum, entity_kind_enum)


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    """Create users, suppliers, automation, constraint, and notification tables."""
    for enum in ENUMS:
        enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role_enum, nullable=False, server_default="client"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "suppliers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("owner_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_suppliers_owner_id", "suppliers", ["owner_id"])

    op.create_table(
        "communication_automations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("supplier_id", _uuid(), sa.ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("trigger_event", trigger_event_enum, nullable=False),
        sa.Column("trigger_conditions", _jsonb(), nullable=True),
        sa.Column("delay_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("channel", channel_enum, nullable=False),
        sa.Column("template_id", sa.String(length=120), nullable=True),
        sa.Column("message_template", _jsonb(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", _uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("delay_hours >= 0", name="ck_communication_automations_delay_hours"),
    )
    op.create_index("ix_communication_automations_supplier_id", "communication_automations", ["supplier_id"])
    op.create_index("ix_communication_automations_trigger_event", "communication_automations", ["trigger_event"])

    # Jobs keep automation_id without a foreign key so they outlive their rule.
    op.create_table(
        "automation_jobs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("automation_id", _uuid(), nullable=False),
        sa.Column("entity_type", entity_kind_enum, nullable=False),
        sa.Column("entity_id", _uuid(), nullable=False),
        sa.Column("recipient_user_id", _uuid(), nullable=True),
        sa.Column("supplier_id", _uuid(), nullable=True),
        sa.Column("automation_name", sa.String(length=200), nullable=False),
        sa.Column("trigger_event", trigger_event_enum, nullable=False),
        sa.Column("channel", channel_enum, nullable=False),
        sa.Column("template_id", sa.String(length=120), nullable=True),
        sa.Column("message_template", _jsonb(), nullable=True),
        sa.Column("context", _jsonb(), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", job_status_enum, nullable=False, server_default="pending"),
        sa.Column("delivery_log", _jsonb(), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_automation_jobs_automation_id", "automation_jobs", ["automation_id"])
    op.create_index("ix_automation_jobs_recipient_user_id", "automation_jobs", ["recipient_user_id"])
    op.create_index("ix_automation_jobs_supplier_id", "automation_jobs", ["supplier_id"])
    op.create_index("ix_automation_jobs_scheduled_for", "automation_jobs", ["scheduled_for"])
    op.create_index("ix_automation_jobs_status", "automation_jobs", ["status"])

    op.create_table(
        "quiet_hours_config",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("supplier_id", _uuid(), sa.ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=True),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("days_of_week", _jsonb(), nullable=False, server_default=sa.text("'[0,1,2,3,4,5,6]'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("supplier_id", name="uq_quiet_hours_supplier"),
    )

    op.create_table(
        "rate_limits_config",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("supplier_id", _uuid(), sa.ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=True),
        sa.Column("channel", channel_enum, nullable=False),
        sa.Column("max_per_hour", sa.Integer(), nullable=False),
        sa.Column("max_per_day", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("supplier_id", "channel", name="uq_rate_limits_supplier_channel"),
    )

    op.create_table(
        "communication_opt_outs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("supplier_id", _uuid(), sa.ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=True),
        sa.Column("channel", channel_enum, nullable=False),
        sa.Column("automation_type", sa.String(length=64), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("opted_out_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_communication_opt_outs_user_id", "communication_opt_outs", ["user_id"])
    op.create_index("ix_communication_opt_outs_supplier_id", "communication_opt_outs", ["supplier_id"])

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("action_url", sa.String(length=500), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop all communication tables and enum types."""
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_communication_opt_outs_supplier_id", table_name="communication_opt_outs")
    op.drop_index("ix_communication_opt_outs_user_id", table_name="communication_opt_outs")
    op.drop_table("communication_opt_outs")
    op.drop_table("rate_limits_config")
    op.drop_table("quiet_hours_config")
    for index in ("status", "scheduled_for", "supplier_id", "recipient_user_id", "automation_id"):
        op.drop_index(f"ix_automation_jobs_{index}", table_name="automation_jobs")
    op.drop_table("automation_jobs")
    op.drop_index("ix_communication_automations_trigger_event", table_name="communication_automations")
    op.drop_index("ix_communication_automations_supplier_id", table_name="communication_automations")
    op.drop_table("communication_automations")
    op.drop_index("ix_suppliers_owner_id", table_name="suppliers")
    op.drop_table("suppliers")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    for enum in reversed(ENUMS):
        enum.drop(op.get_bind(), checkfirst=True)
