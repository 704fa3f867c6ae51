from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import stripe
from starlette.concurrency import run_in_threadpool

from app.core.errors import ConfigurationError, UpstreamError, ValidationError
from app.core.settings import settings
from app.services.subscriptions.store import SubscriptionStore
from app.services.subscriptions.tiers import PAID_TIERS, parse_tier, price_for_tier

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    url: str
    session_id: str


class BillingProvider(Protocol):
    """The payment provider calls the billing core makes."""

    def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_id: str | None,
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> Mapping[str, Any]: ...

    def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]: ...


class StripeBillingProvider:
    """Stripe client bound to one secret key, passed per request instead of set globally."""

    def __init__(self, api_key: str | None) -> None:
        self.api_key = api_key

    def _key(self) -> str:
        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY is not configured")
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        return self.api_key

    def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_id: str | None,
        customer_email: str | None,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> Mapping[str, Any]:
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            # echoed on every customer.subscription.* event
            "subscription_data": {"metadata": metadata},
        }
        # Stripe rejects customer and customer_email together.
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email
        try:
            return stripe.checkout.Session.create(api_key=self._key(), **params)
        except stripe.StripeError as e:
            raise UpstreamError(e.user_message or "Stripe error", provider_status=e.http_status) from e

    def retrieve_subscription(self, subscription_id: str) -> Mapping[str, Any]:
        try:
            return stripe.Subscription.retrieve(subscription_id, api_key=self._key())
        except stripe.StripeError as e:
            raise UpstreamError(f"Failed to retrieve subscription {subscription_id}", provider_status=e.http_status) from e


def build_billing_provider() -> BillingProvider:
    return StripeBillingProvider(settings.stripe_secret_key)


async def create_checkout(
    store: SubscriptionStore,
    provider: BillingProvider,
    *,
    user_id: str,
    email: str,
    tier: str,
    price_table: Mapping[str, str] | None = None,
    site_url: str | None = None,
) -> CheckoutResult:
    """Open a provider-hosted checkout for a paid tier.

    Nothing is written here: the entitlement only changes once the
    ``checkout.session.completed`` webhook arrives, so an abandoned checkout
    leaves no trace.
    """
    requested = parse_tier(tier)
    if requested not in PAID_TIERS:
        raise ValidationError(f"Unsupported tier: {tier}")
    price_id = price_for_tier(requested, settings.price_tier_table() if price_table is None else price_table)
    if not price_id:
        raise ValidationError(f"No price ID configured for tier: {requested.value}")

    current = await store.get(user_id)
    base_url = (site_url or settings.site_url).rstrip("/")
    session = await run_in_threadpool(
        lambda: provider.create_checkout_session(
            price_id=price_id,
            customer_id=current.external_customer_id,
            customer_email=email or None,
            success_url=f"{base_url}/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/billing?canceled=true",
            metadata={"user_id": user_id, "email": email, "tier": requested.value},
        )
    )
    logger.info("Created checkout session %s for user %s (tier %s)", session["id"], user_id, requested.value)
    return CheckoutResult(url=session["url"], session_id=session["id"])
