from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from app.core.errors import NotFoundError, ValidationError
from app.services.billing.events import (
    CheckoutSessionObject,
    EventEnvelope,
    InvoiceObject,
    SubscriptionObject,
    load,
)
from app.services.email.queue import Notice, NoticeKind
from app.services.payments.service import BillingProvider
from app.services.subscriptions.store import SubscriptionStore, WriteOutcome
from app.services.subscriptions.tiers import Status, Tier, map_status, resolve_tier

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    store: SubscriptionStore
    provider: BillingProvider
    price_table: Mapping[str, str]
    # sent only after the write is committed
    notices: list[Notice] = field(default_factory=list)


EventHandler = Callable[[EventEnvelope, BaseModel, HandlerContext], Awaitable[WriteOutcome | None]]


@dataclass(frozen=True)
class Registration:
    schema: type[BaseModel]
    handler: EventHandler


HANDLERS: dict[str, Registration] = {}


def handles(event_type: str, schema: type[BaseModel]):
    def decorator(fn: EventHandler) -> EventHandler:
        if event_type in HANDLERS:
            raise RuntimeError(f"Duplicate handler for {event_type}")
        HANDLERS[event_type] = Registration(schema=schema, handler=fn)
        return fn

    return decorator


async def _missing_or_stale(event: EventEnvelope, sub: SubscriptionObject, ctx: HandlerContext) -> WriteOutcome:
    """No row holds this subscription id.

    A newer cancellation clears the id, so consult the user echoed in the
    subscription metadata before calling it unknown.
    """
    user_id = sub.metadata.get("user_id")
    if user_id:
        current = await ctx.store.get(user_id)
        if current.provider_event_created is not None and current.provider_event_created >= event.created:
            logger.info(
                "%s %s: subscription %s already superseded for user %s",
                event.type,
                event.id,
                sub.id,
                user_id,
            )
            return WriteOutcome.STALE
    logger.warning("%s %s: subscription %s not found", event.type, event.id, sub.id)
    raise NotFoundError(f"Subscription {sub.id} not found")


@handles("checkout.session.completed", CheckoutSessionObject)
async def checkout_completed(event: EventEnvelope, session: CheckoutSessionObject, ctx: HandlerContext) -> WriteOutcome:
    user_id = session.metadata.get("user_id")
    if not user_id:
        logger.error("checkout.session.completed %s: missing user_id in metadata", event.id)
        raise ValidationError("Missing user_id in session metadata")
    if session.subscription is None:
        logger.error("checkout.session.completed %s: session %s has no subscription", event.id, session.id)
        raise ValidationError("Missing subscription in checkout session")

    subscription = session.subscription
    if isinstance(subscription, str):
        raw = await run_in_threadpool(ctx.provider.retrieve_subscription, subscription)
        subscription = load(SubscriptionObject, raw)

    tier = resolve_tier(subscription.price_id, ctx.price_table)
    if tier is None:
        logger.error("checkout.session.completed %s: unknown price ID %s", event.id, subscription.price_id)
        raise ValidationError(f"Unknown price ID: {subscription.price_id}")

    fields: dict = {
        "external_subscription_id": subscription.id,
        "tier": tier,
        "status": map_status(subscription.status),
        "current_period_end": subscription.period_end,
    }
    customer = subscription.customer or session.customer
    if customer:
        # never erase a known billing customer
        fields["external_customer_id"] = customer
    outcome = await ctx.store.upsert(user_id, fields, event_created=event.created)
    logger.info("checkout.session.completed: %s subscription for user %s, tier: %s", outcome.value, user_id, tier.value)
    return outcome


@handles("customer.subscription.updated", SubscriptionObject)
async def subscription_updated(event: EventEnvelope, sub: SubscriptionObject, ctx: HandlerContext) -> WriteOutcome:
    fields: dict = {"status": map_status(sub.status)}
    period_end = sub.period_end
    if period_end is not None:
        fields["current_period_end"] = period_end
    tier = resolve_tier(sub.price_id, ctx.price_table)
    if tier is None:
        # Fail-soft: a price we cannot map keeps whatever tier is stored.
        logger.warning("customer.subscription.updated: unknown price ID %s, keeping existing tier for %s", sub.price_id, sub.id)
    else:
        fields["tier"] = tier

    outcome = await ctx.store.upsert_by_external_subscription_id(sub.id, fields, event_created=event.created)
    if outcome is WriteOutcome.MISSING:
        return await _missing_or_stale(event, sub, ctx)
    logger.info("customer.subscription.updated: %s for subscription %s", outcome.value, sub.id)
    return outcome


@handles("customer.subscription.deleted", SubscriptionObject)
async def subscription_deleted(event: EventEnvelope, sub: SubscriptionObject, ctx: HandlerContext) -> WriteOutcome:
    outcome = await ctx.store.upsert_by_external_subscription_id(
        sub.id,
        {
            "tier": Tier.FREE,
            "status": Status.CANCELED,
            "external_subscription_id": None,
            "current_period_end": None,
        },
        event_created=event.created,
    )
    if outcome is WriteOutcome.MISSING:
        return await _missing_or_stale(event, sub, ctx)
    if outcome is WriteOutcome.APPLIED:
        logger.info("customer.subscription.deleted: downgraded subscription %s to free tier", sub.id)
        email = sub.metadata.get("email")
        if email:
            ctx.notices.append(Notice(kind=NoticeKind.SUBSCRIPTION_CANCELED, to_email=email))
    return outcome


@handles("invoice.payment_failed", InvoiceObject)
async def invoice_payment_failed(event: EventEnvelope, invoice: InvoiceObject, ctx: HandlerContext) -> WriteOutcome | None:
    subscription_id = invoice.subscription_id
    if not subscription_id:
        logger.info("invoice.payment_failed: invoice %s has no subscription", invoice.id)
        return None

    outcome = await ctx.store.upsert_by_external_subscription_id(
        subscription_id,
        {"status": Status.PAST_DUE},
        event_created=event.created,
    )
    if outcome is WriteOutcome.MISSING:
        # A late invoice for a subscription that is already gone.
        logger.info("invoice.payment_failed: subscription %s not found, ignoring", subscription_id)
        return outcome
    if outcome is WriteOutcome.APPLIED:
        logger.info("invoice.payment_failed: marked subscription %s as past_due", subscription_id)
        if invoice.customer_email:
            ctx.notices.append(Notice(kind=NoticeKind.PAYMENT_FAILED, to_email=invoice.customer_email))
    return outcome
