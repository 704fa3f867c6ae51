from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PersistenceError
from app.db import models
from app.services.subscriptions.tiers import Status, Tier

logger = logging.getLogger(__name__)

subscriptions = models.Subscription.__table__

# Columns handlers may write. The key columns and bookkeeping are managed here.
WRITABLE_FIELDS = frozenset(
    {"external_customer_id", "external_subscription_id", "tier", "status", "current_period_end"}
)


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"  # an equal-or-newer event is already stored; nothing written
    MISSING = "missing"  # no row for the lookup key


def default_subscription(user_id: str) -> models.Subscription:
    """Transient free record for a user with nothing stored. Never added to the session."""
    return models.Subscription(
        user_id=user_id,
        external_customer_id=None,
        external_subscription_id=None,
        tier=Tier.FREE.value,
        status=Status.ACTIVE.value,
        current_period_end=None,
        provider_event_created=None,
    )


def _check_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Not writable: {', '.join(sorted(unknown))}")
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


def _not_newer_than(event_created: int):
    """Guard for conditional writes.

    An equal timestamp re-applies, except over a cancellation: a stored
    cancellation wins ties with events from the same second.
    """
    column = subscriptions.c.provider_event_created
    return or_(
        column.is_(None),
        column < event_created,
        and_(column == event_created, subscriptions.c.status != Status.CANCELED.value),
    )


class SubscriptionStore:
    """Persistence boundary for entitlement records.

    Writes are single conditional statements so concurrent deliveries for the
    same row are serialized by the database, and an event older than the one
    already applied is a no-op instead of a revert.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> models.Subscription:
        try:
            q = (
                select(models.Subscription)
                .where(models.Subscription.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            res = await self.session.execute(q)
            sub = res.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load subscription for {user_id}") from e
        return sub or default_subscription(user_id)

    async def find_by_external_subscription_id(self, external_subscription_id: str) -> models.Subscription | None:
        try:
            q = (
                select(models.Subscription)
                .where(models.Subscription.external_subscription_id == external_subscription_id)
                .execution_options(populate_existing=True)
            )
            res = await self.session.execute(q)
            return res.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load subscription {external_subscription_id}") from e

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise PersistenceError(f"Upsert not supported on {dialect}")

    async def upsert(self, user_id: str, fields: dict[str, Any], *, event_created: int) -> WriteOutcome:
        """Insert-or-update keyed on user_id, skipped when the stored event is newer."""
        values = _check_fields(fields)
        now = models.utcnow()
        insert = self._insert()
        stmt = insert(subscriptions).values(
            user_id=user_id,
            provider_event_created=event_created,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[subscriptions.c.user_id],
            set_={**values, "provider_event_created": event_created, "updated_at": now},
            where=_not_newer_than(event_created),
        )
        try:
            res = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert subscription for {user_id}") from e
        if res.rowcount == 0:
            logger.info("Skipped stale write for user %s (event created %s)", user_id, event_created)
            return WriteOutcome.STALE
        return WriteOutcome.APPLIED

    async def upsert_by_external_subscription_id(
        self,
        external_subscription_id: str,
        fields: dict[str, Any],
        *,
        event_created: int,
    ) -> WriteOutcome:
        """Update the row holding ``external_subscription_id``. Never inserts."""
        values = _check_fields(fields)
        stmt = (
            update(subscriptions)
            .where(
                subscriptions.c.external_subscription_id == external_subscription_id,
                _not_newer_than(event_created),
            )
            .values(**values, provider_event_created=event_created, updated_at=models.utcnow())
        )
        try:
            res = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update subscription {external_subscription_id}") from e
        if res.rowcount:
            return WriteOutcome.APPLIED

        existing = await self.find_by_external_subscription_id(external_subscription_id)
        if existing is None:
            return WriteOutcome.MISSING
        logger.info(
            "Skipped stale write for subscription %s (event created %s, stored %s)",
            external_subscription_id,
            event_created,
            existing.provider_event_created,
        )
        return WriteOutcome.STALE

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("Failed to commit subscription changes") from e
