"""create media extractor schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("entry_type", sa.String(), nullable=False),
        sa.Column("delta_credits", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("refund_of_id", sa.String(), nullable=True),
        sa.Column("period_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["refund_of_id"], ["credit_ledger.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("refund_of_id"),
    )
    op.create_index(op.f("ix_credit_ledger_user_id"), "credit_ledger", ["user_id"], unique=False)
    op.create_index(op.f("ix_credit_ledger_reference_id"), "credit_ledger", ["reference_id"], unique=False)
    op.create_index(op.f("ix_credit_ledger_period_key"), "credit_ledger", ["period_key"], unique=False)
    op.create_index(op.f("ix_credit_ledger_created_at"), "credit_ledger", ["created_at"], unique=False)

    op.create_table(
        "media_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("output_type", sa.String(), nullable=False),
        sa.Column("source_url", sa.String(), nullable=False),
        sa.Column("target_lang", sa.String(), nullable=True),
        sa.Column("video_url", sa.String(length=2000), nullable=True),
        sa.Column("video_url_internal", sa.String(length=2000), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subtitle_raw", sa.Text(), nullable=True),
        sa.Column("subtitle_char_count", sa.Integer(), nullable=True),
        sa.Column("subtitle_line_count", sa.Integer(), nullable=True),
        sa.Column("rewritten_scripts", sa.JSON(), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=True),
        sa.Column("author", sa.String(length=255), nullable=True),
        sa.Column("likes", sa.Integer(), nullable=True),
        sa.Column("views", sa.Integer(), nullable=True),
        sa.Column("shares", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=1000), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_lang", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("credit_id", sa.String(), nullable=True),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("queue_job_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["credit_id"], ["credit_ledger.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_media_tasks_user_id"), "media_tasks", ["user_id"], unique=False)
    op.create_index(op.f("ix_media_tasks_status"), "media_tasks", ["status"], unique=False)
    op.create_index(op.f("ix_media_tasks_platform"), "media_tasks", ["platform"], unique=False)
    op.create_index(op.f("ix_media_tasks_credit_id"), "media_tasks", ["credit_id"], unique=False)
    op.create_index(op.f("ix_media_tasks_queue_job_id"), "media_tasks", ["queue_job_id"], unique=False)

    op.create_table(
        "video_cache",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("original_url", sa.String(length=2000), nullable=False),
        sa.Column("download_url", sa.String(length=4000), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_video_cache_platform"), "video_cache", ["platform"], unique=False)
    op.create_index(op.f("ix_video_cache_expires_at"), "video_cache", ["expires_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_video_cache_expires_at"), table_name="video_cache")
    op.drop_index(op.f("ix_video_cache_platform"), table_name="video_cache")
    op.drop_table("video_cache")

    op.drop_index(op.f("ix_media_tasks_queue_job_id"), table_name="media_tasks")
    op.drop_index(op.f("ix_media_tasks_credit_id"), table_name="media_tasks")
    op.drop_index(op.f("ix_media_tasks_platform"), table_name="media_tasks")
    op.drop_index(op.f("ix_media_tasks_status"), table_name="media_tasks")
    op.drop_index(op.f("ix_media_tasks_user_id"), table_name="media_tasks")
    op.drop_table("media_tasks")

    op.drop_index(op.f("ix_credit_ledger_created_at"), table_name="credit_ledger")
    op.drop_index(op.f("ix_credit_ledger_period_key"), table_name="credit_ledger")
    op.drop_index(op.f("ix_credit_ledger_reference_id"), table_name="credit_ledger")
    op.drop_index(op.f("ix_credit_ledger_user_id"), table_name="credit_ledger")
    op.drop_table("credit_ledger")

    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
