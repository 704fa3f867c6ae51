from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Subscription(Base):
    """Entitlement record, one row per user."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("tier IN ('free', 'power_user', 'team')", name="ck_subscriptions_tier"),
        CheckConstraint("status IN ('active', 'past_due', 'canceled', 'unpaid')", name="ck_subscriptions_status"),
        CheckConstraint(
            "(tier = 'free') = (external_subscription_id IS NULL)",
            name="ck_subscriptions_paid_tier_has_subscription",
        ),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tier: Mapped[str] = mapped_column(String(32), default="free")
    status: Mapped[str] = mapped_column(String(32), default="active")
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # `created` of the newest provider event applied to this row (epoch seconds)
    provider_event_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


Index(
    "ix_subscriptions_external_subscription_id",
    Subscription.external_subscription_id,
    unique=True,
)
