"""Builders for provider objects and webhook signatures used across the tests."""
import hashlib
import hmac
import time
from typing import Any

WEBHOOK_SECRET = "whsec_test_123"
PRICE_TABLE = {"power_user": "price_power", "team": "price_team"}
PERIOD_END = 1735689600  # 2025-01-01T00:00:00Z


class FakeBillingProvider:
    """Stands in for StripeBillingProvider; records every call."""

    def __init__(self) -> None:
        self.checkout_calls: list[dict] = []
        self.retrieve_calls: list[str] = []
        self.subscriptions: dict[str, dict] = {}
        self.error: Exception | None = None

    def create_checkout_session(self, **kwargs) -> dict:
        self.checkout_calls.append(kwargs)
        if self.error:
            raise self.error
        n = len(self.checkout_calls)
        return {"id": f"cs_test_{n}", "url": f"https://checkout.stripe.test/c/cs_test_{n}"}

    def retrieve_subscription(self, subscription_id: str) -> dict:
        self.retrieve_calls.append(subscription_id)
        if self.error:
            raise self.error
        return self.subscriptions[subscription_id]


class RecordingNotifier:
    def __init__(self) -> None:
        self.notices: list = []

    def enqueue(self, notice) -> None:
        self.notices.append(notice)


def subscription_object(
    sub_id: str = "sub_123",
    *,
    price_id: str = "price_power",
    status: str = "active",
    customer: str | None = "cus_123",
    period_end: int | None = PERIOD_END,
    user_id: str | None = "u1",
    email: str | None = "u1@example.com",
) -> dict[str, Any]:
    metadata = {}
    if user_id:
        metadata["user_id"] = user_id
    if email:
        metadata["email"] = email
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_end": period_end,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price_id, "object": "price"}}]},
        "metadata": metadata,
    }


def checkout_session_object(
    *,
    user_id: str | None = "u1",
    subscription: Any = "sub_123",
    customer: str | None = "cus_123",
) -> dict[str, Any]:
    metadata = {"email": "u1@example.com", "tier": "power_user"}
    if user_id:
        metadata["user_id"] = user_id
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "customer": customer,
        "subscription": subscription,
        "metadata": metadata,
    }


def invoice_object(subscription: str | None = "sub_123", email: str | None = "u1@example.com") -> dict[str, Any]:
    return {"id": "in_123", "object": "invoice", "subscription": subscription, "customer_email": email}


def make_event(event_type: str, obj: dict, *, created: int = 1_700_000_000, event_id: str | None = None) -> dict:
    return {
        "id": event_id or f"evt_{event_type.replace('.', '_')}_{created}",
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": obj},
    }


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


