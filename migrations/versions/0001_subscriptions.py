"""subscriptions

Revision ID: 0001_subscriptions
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_subscriptions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("tier", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_event_created", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("tier IN ('free', 'power_user', 'team')", name="ck_subscriptions_tier"),
        sa.CheckConstraint("status IN ('active', 'past_due', 'canceled', 'unpaid')", name="ck_subscriptions_status"),
        sa.CheckConstraint(
            "(tier = 'free') = (external_subscription_id IS NULL)",
            name="ck_subscriptions_paid_tier_has_subscription",
        ),
    )
    op.create_index(
        "ix_subscriptions_external_subscription_id",
        "subscriptions",
        ["external_subscription_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_subscriptions_external_subscription_id", table_name="subscriptions")
    op.drop_table("subscriptions")
