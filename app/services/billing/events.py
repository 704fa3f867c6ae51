"""Shapes of the provider payloads the handlers rely on.

Only the fields we read are declared; everything else in the provider's
objects is ignored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from app.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def load(schema: type[ModelT], raw: Mapping[str, Any]) -> ModelT:
    try:
        return schema.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Malformed {schema.__name__}: {e.error_count()} invalid field(s)") from e


def parse_event(payload: bytes) -> EventEnvelope:
    try:
        return EventEnvelope.model_validate_json(payload)
    except pydantic.ValidationError as e:
        # covers invalid JSON as well as a wrong envelope shape
        raise ValidationError("Invalid webhook payload") from e


class _ProviderObject(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EventData(_ProviderObject):
    object_: dict[str, Any] = Field(alias="object")


class EventEnvelope(_ProviderObject):
    id: str
    type: str
    created: int
    data: EventData


class Price(_ProviderObject):
    id: str


class SubscriptionItem(_ProviderObject):
    price: Price
    current_period_end: int | None = None


class SubscriptionItems(_ProviderObject):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(_ProviderObject):
    id: str
    customer: str | None = None
    status: str
    current_period_end: int | None = None
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def price_id(self) -> str | None:
        return self.items.data[0].price.id if self.items.data else None

    @property
    def period_end(self) -> datetime | None:
        # Newer API versions only report the period on the items.
        ts = self.current_period_end
        if ts is None and self.items.data:
            ts = self.items.data[0].current_period_end
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)


class CheckoutSessionObject(_ProviderObject):
    id: str
    customer: str | None = None
    subscription: str | SubscriptionObject | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class InvoiceSubscriptionDetails(_ProviderObject):
    subscription: str | None = None


class InvoiceParent(_ProviderObject):
    subscription_details: InvoiceSubscriptionDetails | None = None


class InvoiceObject(_ProviderObject):
    id: str
    subscription: str | None = None
    parent: InvoiceParent | None = None
    customer_email: str | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None
