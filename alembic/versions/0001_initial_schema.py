"""Initial schema (schema version 1)

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-14

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Enums are stored as VARCHAR(32) (native_enum=False) so SQLite and Postgres match
ENUM = sa.String(32)


def upgrade() -> None:
    op.create_table(
        "parishes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("logo_url", sa.String(512), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("email_from", sa.String(255), nullable=True),
        sa.Column("email_reply_to", sa.String(255), nullable=True),
        sa.Column("birthday_greeting_template", sa.Text(), nullable=True),
        sa.Column("anniversary_greeting_template", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("birthday_month", sa.Integer(), nullable=True),
        sa.Column("birthday_day", sa.Integer(), nullable=True),
        sa.Column("anniversary_month", sa.Integer(), nullable=True),
        sa.Column("anniversary_day", sa.Integer(), nullable=True),
        sa.Column("greetings_opt_in", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("notify_message_in_app", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("notify_task_in_app", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "notify_announcement_in_app", sa.Boolean(), server_default="true", nullable=False
        ),
        sa.Column("notify_event_in_app", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("notify_request_in_app", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("notify_email_enabled", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("weekly_digest_enabled", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "memberships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role", ENUM, server_default="MEMBER", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("parish_id", "user_id", name="uq_membership_parish_user"),
    )
    op.create_index("ix_memberships_parish_id", "memberships", ["parish_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])

    op.create_table(
        "groups",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("visibility", ENUM, server_default="PUBLIC", nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_groups_parish_id", "groups", ["parish_id"])

    op.create_table(
        "group_memberships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("status", ENUM, server_default="ACTIVE", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_membership"),
    )
    op.create_index("ix_group_memberships_group_id", "group_memberships", ["group_id"])
    op.create_index("ix_group_memberships_user_id", "group_memberships", ["user_id"])

    op.create_table(
        "chat_channels",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", ENUM, nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "type != 'GROUP' OR group_id IS NOT NULL",
            name="ck_chat_channel_group_has_group_id",
        ),
    )
    op.create_index("ix_chat_channels_parish_id", "chat_channels", ["parish_id"])
    op.create_index("ix_chat_channels_group_id", "chat_channels", ["group_id"])

    op.create_table(
        "chat_channel_memberships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("channel_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["chat_channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", "user_id", name="uq_channel_membership"),
    )
    op.create_index(
        "ix_chat_channel_memberships_channel_id", "chat_channel_memberships", ["channel_id"]
    )
    op.create_index("ix_chat_channel_memberships_user_id", "chat_channel_memberships", ["user_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("channel_id", sa.Uuid(), nullable=False),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["channel_id"], ["chat_channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_messages_channel_id", "chat_messages", ["channel_id"])
    op.create_index("ix_chat_messages_author_id", "chat_messages", ["author_id"])
    op.create_index("ix_chat_messages_created_at", "chat_messages", ["created_at"])

    op.create_table(
        "chat_read_states",
        sa.Column("channel_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("last_read_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["chat_channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("channel_id", "user_id"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("visibility", ENUM, server_default="PUBLIC", nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_parish_id", "events", ["parish_id"])

    op.create_table(
        "event_rsvps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_rsvp"),
    )
    op.create_index("ix_event_rsvps_event_id", "event_rsvps", ["event_id"])
    op.create_index("ix_event_rsvps_user_id", "event_rsvps", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_parish_id", "tasks", ["parish_id"])

    op.create_table(
        "task_volunteers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "user_id", name="uq_task_volunteer"),
    )
    op.create_index("ix_task_volunteers_task_id", "task_volunteers", ["task_id"])
    op.create_index("ix_task_volunteers_user_id", "task_volunteers", ["user_id"])

    op.create_table(
        "announcements",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("audience_user_ids", sa.JSON(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_announcements_parish_id", "announcements", ["parish_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("type", ENUM, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("href", sa.String(512), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_parish_id", "notifications", ["parish_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("endpoint", sa.String(1024), nullable=False),
        sa.Column("p256dh", sa.String(255), nullable=False),
        sa.Column("auth", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("endpoint"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])
    op.create_index("ix_push_subscriptions_parish_id", "push_subscriptions", ["parish_id"])

    op.create_table(
        "delivery_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("channel", ENUM, nullable=False),
        sa.Column("dedupe_key", sa.String(512), nullable=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("parish_id", sa.Uuid(), nullable=True),
        sa.Column("target", sa.String(1024), nullable=False),
        sa.Column("template", sa.String(128), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        # The claim protocol depends on this constraint
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index("ix_delivery_records_type", "delivery_records", ["type"])
    op.create_index("ix_delivery_records_status", "delivery_records", ["status"])
    op.create_index("ix_delivery_records_user_id", "delivery_records", ["user_id"])
    op.create_index("ix_delivery_records_parish_id", "delivery_records", ["parish_id"])

    op.create_table(
        "delivery_attempts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("channel", ENUM, nullable=False),
        sa.Column("status", ENUM, nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("target", sa.String(512), nullable=False),
        sa.Column("template", sa.String(128), nullable=False),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_attempts_parish_id", "delivery_attempts", ["parish_id"])
    op.create_index("ix_delivery_attempts_created_at", "delivery_attempts", ["created_at"])

    op.create_table(
        "greeting_log_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parish_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("type", ENUM, nullable=False),
        sa.Column("date_key", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parish_id"], ["parishes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "parish_id", "user_id", "type", "date_key", name="uq_greeting_parish_user_type_date"
        ),
    )
    op.create_index("ix_greeting_log_entries_parish_id", "greeting_log_entries", ["parish_id"])
    op.create_index("ix_greeting_log_entries_user_id", "greeting_log_entries", ["user_id"])
    op.create_index("ix_greeting_log_entries_date_key", "greeting_log_entries", ["date_key"])

    op.create_table(
        "greeting_run_logs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("request_id", sa.String(100), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("status", ENUM, server_default="RUNNING", nullable=False),
        sa.Column("planned_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("sent_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("failed_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("skipped_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("missing_env", sa.JSON(), nullable=True),
        sa.Column("reason_counts", sa.JSON(), nullable=True),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_greeting_run_logs_request_id", "greeting_run_logs", ["request_id"])


def downgrade() -> None:
    op.drop_table("greeting_run_logs")
    op.drop_table("greeting_log_entries")
    op.drop_table("delivery_attempts")
    op.drop_table("delivery_records")
    op.drop_table("push_subscriptions")
    op.drop_table("notifications")
    op.drop_table("announcements")
    op.drop_table("task_volunteers")
    op.drop_table("tasks")
    op.drop_table("event_rsvps")
    op.drop_table("events")
    op.drop_table("chat_read_states")
    op.drop_table("chat_messages")
    op.drop_table("chat_channel_memberships")
    op.drop_table("chat_channels")
    op.drop_table("group_memberships")
    op.drop_table("groups")
    op.drop_table("memberships")
    op.drop_table("users")
    op.drop_table("parishes")
