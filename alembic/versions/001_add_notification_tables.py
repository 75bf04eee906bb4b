"""Add notification channels, rules, rule-channel links, log and known values.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notification_channels",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("channel_type", sa.String(20), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_notification_channels_app_id", "notification_channels", ["app_id"])

    op.create_table(
        "notification_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("rule_type", sa.String(30), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_notification_rules_app_id", "notification_rules", ["app_id"])
    # The schedulers select enabled rules by type on every tick
    op.create_index(
        "ix_notification_rules_enabled_rule_type",
        "notification_rules",
        ["rule_type"],
        postgresql_where=sa.text("enabled"),
    )

    op.create_table(
        "notification_rule_channels",
        sa.Column(
            "rule_id",
            sa.Uuid(),
            sa.ForeignKey("notification_rules.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "channel_id",
            sa.Uuid(),
            sa.ForeignKey("notification_channels.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index(
        "ix_notification_rule_channels_channel_id", "notification_rule_channels", ["channel_id"]
    )

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("channel_id", sa.Uuid(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("dedup_key", sa.String(200), nullable=True),
    )
    op.create_index("ix_notification_log_app_id_sent_at", "notification_log", ["app_id", "sent_at"])
    op.create_index("ix_notification_log_dedup_key", "notification_log", ["dedup_key"])

    op.create_table(
        "notification_known_values",
        sa.Column("app_id", sa.String(64), primary_key=True),
        sa.Column("value_type", sa.String(20), primary_key=True),
        sa.Column("value", sa.String(200), primary_key=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_notification_known_values_app_id_value_type",
        "notification_known_values",
        ["app_id", "value_type"],
    )


def downgrade() -> None:
    op.drop_table("notification_known_values")
    op.drop_table("notification_log")
    op.drop_table("notification_rule_channels")
    op.drop_table("notification_rules")
    op.drop_table("notification_channels")
