"""create crm core tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "app_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("needs_password_change", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "crm_client",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_name", sa.String(length=200), nullable=False),
        sa.Column("primary_contact", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("mobile", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("lifetime_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("estimated_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("account_manager_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_client_account_manager_id", "crm_client", ["account_manager_id"], unique=False)

    op.create_table(
        "crm_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("company_name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("mobile", sa.String(length=20), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_details", sa.Text(), nullable=True),
        sa.Column("pipeline_stage", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("is_converted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "converted_client_id",
            sa.Uuid(),
            sa.ForeignKey("crm_client.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("estimated_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("last_contacted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_follow_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("initial_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("converted_client_id"),
    )
    op.create_index("ix_crm_lead_owner_converted", "crm_lead", ["owner_id", "is_converted"], unique=False)
    op.create_index("ix_crm_lead_is_converted", "crm_lead", ["is_converted"], unique=False)

    op.create_table(
        "crm_deal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("value", sa.Numeric(14, 2), nullable=False),
        sa.Column("budget", sa.Numeric(14, 2), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("deal_type", sa.String(length=50), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_steps", sa.Text(), nullable=True),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=True),
        sa.Column("deletion_reason", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_deal_client_id", "crm_deal", ["client_id"], unique=False)
    op.create_index("ix_crm_deal_owner_stage", "crm_deal", ["owner_id", "stage"], unique=False)
    op.create_index("ix_crm_deal_owner_deleted", "crm_deal", ["owner_id", "is_deleted"], unique=False)
    op.create_index("ix_crm_deal_deleted_at", "crm_deal", ["is_deleted", "deleted_at"], unique=False)

    op.create_table(
        "crm_task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_to_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_task_client_id", "crm_task", ["client_id"], unique=False)

    op.create_table(
        "crm_meeting",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("meeting_url", sa.String(length=500), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organizer_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="CASCADE"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_meeting_organizer_id", "crm_meeting", ["organizer_id"], unique=False)

    op.create_table(
        "crm_note",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("author_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_note_client_id", "crm_note", ["client_id"], unique=False)

    op.create_table(
        "crm_document",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("file_type", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("is_link", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_document_client_id", "crm_document", ["client_id"], unique=False)

    op.create_table(
        "crm_activity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.Uuid(), sa.ForeignKey("app_user.id"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("crm_client.id", ondelete="CASCADE"), nullable=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("crm_lead.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_activity_client_id", "crm_activity", ["client_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_activity_client_id", table_name="crm_activity")
    op.drop_table("crm_activity")
    op.drop_index("ix_crm_document_client_id", table_name="crm_document")
    op.drop_table("crm_document")
    op.drop_index("ix_crm_note_client_id", table_name="crm_note")
    op.drop_table("crm_note")
    op.drop_index("ix_crm_meeting_organizer_id", table_name="crm_meeting")
    op.drop_table("crm_meeting")
    op.drop_index("ix_crm_task_client_id", table_name="crm_task")
    op.drop_table("crm_task")
    op.drop_index("ix_crm_deal_deleted_at", table_name="crm_deal")
    op.drop_index("ix_crm_deal_owner_deleted", table_name="crm_deal")
    op.drop_index("ix_crm_deal_owner_stage", table_name="crm_deal")
    op.drop_index("ix_crm_deal_client_id", table_name="crm_deal")
    op.drop_table("crm_deal")
    op.drop_index("ix_crm_lead_is_converted", table_name="crm_lead")
    op.drop_index("ix_crm_lead_owner_converted", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_index("ix_crm_client_account_manager_id", table_name="crm_client")
    op.drop_table("crm_client")
    op.drop_table("app_user")
