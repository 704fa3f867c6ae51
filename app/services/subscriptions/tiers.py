from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class Tier(str, Enum):
    FREE = "free"
    POWER_USER = "power_user"
    TEAM = "team"


class Status(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


PAID_TIERS: tuple[Tier, ...] = (Tier.POWER_USER, Tier.TEAM)

# Provider lifecycle state -> internal status. Anything not listed maps to active.
STATUS_MAP: dict[str, Status] = {
    "active": Status.ACTIVE,
    "trialing": Status.ACTIVE,
    "past_due": Status.PAST_DUE,
    "canceled": Status.CANCELED,
    "unpaid": Status.UNPAID,
    "incomplete": Status.ACTIVE,
    "incomplete_expired": Status.CANCELED,
}

# Statuses that keep the paid tier's features switched on.
ENTITLED_STATUSES = frozenset({Status.ACTIVE, Status.PAST_DUE})


@dataclass(frozen=True)
class TierFeatures:
    tier: Tier
    name: str
    max_chats: int | None
    cloud_sync: bool
    vector_search: bool
    team_members: int = 0


TIER_FEATURES: dict[Tier, TierFeatures] = {
    Tier.FREE: TierFeatures(tier=Tier.FREE, name="Hobbyist", max_chats=50, cloud_sync=False, vector_search=False),
    Tier.POWER_USER: TierFeatures(tier=Tier.POWER_USER, name="Power User", max_chats=None, cloud_sync=True, vector_search=True),
    Tier.TEAM: TierFeatures(tier=Tier.TEAM, name="Team", max_chats=None, cloud_sync=True, vector_search=True, team_members=5),
}


def parse_tier(value: str | None) -> Tier | None:
    try:
        return Tier(value)
    except ValueError:
        return None


def resolve_tier(price_id: str | None, table: Mapping[str, str]) -> Tier | None:
    """Map a provider price id to a tier using a tier -> price id table.

    Returns None when the price is not configured for any tier; callers decide
    whether that is fatal.
    """
    if not price_id:
        return None
    for tier_name, tier_price_id in table.items():
        if tier_price_id and price_id == tier_price_id:
            return parse_tier(tier_name)
    return None


def price_for_tier(tier: Tier, table: Mapping[str, str]) -> str | None:
    return table.get(tier.value) or None


def map_status(provider_status: str | None) -> Status:
    # Unknown states fail open so a new benign provider state never locks users out.
    return STATUS_MAP.get(provider_status or "", Status.ACTIVE)


def effective_tier(tier: str | Tier, status: str | Status) -> Tier:
    if Status(status) not in ENTITLED_STATUSES:
        return Tier.FREE
    return parse_tier(tier) or Tier.FREE


def get_tier_features(tier: Tier | str | None) -> TierFeatures:
    if isinstance(tier, str):
        tier = parse_tier(tier)
    return TIER_FEATURES.get(tier or Tier.FREE, TIER_FEATURES[Tier.FREE])
