"""Initial schema: subscriptions, content view, dedup ledger, email queue, history, job runs

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "alert_subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("cadence", sa.String(20), nullable=False, index=True),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("sources", sa.JSON(), nullable=False),
        sa.Column("domains", sa.JSON(), nullable=False),
        sa.Column("include_articles", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_events", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_publications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("team_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("team", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("send_hour", sa.Integer(), nullable=False, server_default="9"),
        sa.Column("send_weekday", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sent_at", sa.DateTime(), nullable=True),
        sa.Column("next_due_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "cadence IN ('immediate', 'hourly_digest', 'daily_digest', 'weekly_digest')",
            name="ck_alert_subscriptions_cadence",
        ),
        sa.CheckConstraint("send_hour BETWEEN 0 AND 23", name="ck_alert_subscriptions_send_hour"),
        sa.CheckConstraint(
            "send_weekday BETWEEN 0 AND 6", name="ck_alert_subscriptions_send_weekday"
        ),
    )

    op.create_table(
        "content_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("domain", sa.String(50), nullable=False, index=True),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("source", sa.String(255), nullable=True, index=True),
        sa.Column("link", sa.String(2048), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("saved_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_content_items_domain_saved", "content_items", ["domain", "saved_at"])

    op.create_table(
        "content_likes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("content_id", sa.Integer(), nullable=False, index=True),
        sa.Column("domain", sa.String(50), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("team", sa.String(100), nullable=True, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "alert_content_sent",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.Uuid(),
            sa.ForeignKey("alert_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("domain", sa.String(50), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=False, index=True),
        sa.UniqueConstraint(
            "subscription_id",
            "domain",
            "content_type",
            "content_id",
            name="uq_alert_content_sent_key",
        ),
    )

    op.create_table(
        "email_queue",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.Uuid(),
            sa.ForeignKey("alert_subscriptions.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("html_body", sa.Text(), nullable=True),
        sa.Column("alert_type", sa.String(50), nullable=True),
        sa.Column("content_keys", sa.JSON(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_by", sa.String(255), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'sent', 'failed', 'cancelled')",
            name="ck_email_queue_status",
        ),
        sa.CheckConstraint("attempts <= max_attempts", name="ck_email_queue_attempts"),
    )
    op.create_index(
        "ix_email_queue_claim", "email_queue", ["status", "priority", "scheduled_for"]
    )

    op.create_table(
        "alert_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "queue_item_id",
            sa.Uuid(),
            sa.ForeignKey("email_queue.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("subscription_id", sa.Uuid(), nullable=True, index=True),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("alert_type", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("opened_at", sa.DateTime(), nullable=True),
        sa.Column("clicked_at", sa.DateTime(), nullable=True),
        sa.Column("open_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.String(100), nullable=False),
        sa.Column("trigger", sa.String(20), nullable=False, server_default="cron"),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("stats", sa.JSON(), nullable=True),
        sa.CheckConstraint("outcome IN ('success', 'error')", name="ck_job_runs_outcome"),
    )
    op.create_index("ix_job_runs_job_started", "job_runs", ["job_id", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_started", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("alert_history")
    op.drop_index("ix_email_queue_claim", table_name="email_queue")
    op.drop_table("email_queue")
    op.drop_table("alert_content_sent")
    op.drop_table("content_likes")
    op.drop_index("ix_content_items_domain_saved", table_name="content_items")
    op.drop_table("content_items")
    op.drop_table("alert_subscriptions")
