"""
Pricing tiers for participant capacity.

Tiers are a fixed ascending table; a requested capacity resolves to the
smallest tier that can hold it and anything above the largest tier
resolves to the largest tier.  All amounts are in cents.
"""
from __future__ import annotations

from dataclasses import dataclass

from .exceptions import InvalidInput

FREE_CAPACITY = 10
FREE_TIER_KEY = "free"
DEFAULT_TIER_KEY = "50"

INTERVAL_MONTH = "month"
INTERVAL_YEAR = "year"
INTERVALS = (INTERVAL_MONTH, INTERVAL_YEAR)


@dataclass(frozen=True)
class Tier:
    key: str
    capacity: int
    single_price: int
    recurring_price: int  # monthly


TIERS: tuple[Tier, ...] = (
    Tier(key="50", capacity=50, single_price=4900, recurring_price=9900),
    Tier(key="200", capacity=200, single_price=9900, recurring_price=19900),
    Tier(key="500", capacity=500, single_price=19900, recurring_price=39900),
    Tier(key="1000", capacity=1000, single_price=34900, recurring_price=69900),
    Tier(key="5000", capacity=5000, single_price=79900, recurring_price=149900),
)

_BY_KEY = {tier.key: tier for tier in TIERS}

TIER_CHOICES = [(tier.key, f"Up to {tier.capacity} participants") for tier in TIERS]


def resolve_tier(requested_capacity) -> Tier:
    """Return the smallest tier whose capacity covers ``requested_capacity``."""
    if isinstance(requested_capacity, bool) or not isinstance(requested_capacity, int):
        raise InvalidInput("Capacity must be an integer.")
    if requested_capacity < 1:
        raise InvalidInput("Capacity must be at least 1.")
    for tier in TIERS:
        if requested_capacity <= tier.capacity:
            return tier
    return TIERS[-1]


def get_tier(key: str) -> Tier:
    try:
        return _BY_KEY[str(key)]
    except KeyError:
        raise InvalidInput(f"Unknown capacity tier '{key}'.")


def is_known_tier(key) -> bool:
    return str(key) in _BY_KEY


def tier_capacity(key) -> int:
    """Capacity of the tier with ``key``, 0 when the key is unknown."""
    tier = _BY_KEY.get(str(key))
    return tier.capacity if tier else 0


def recurring_amount(tier: Tier, interval: str) -> int:
    if interval == INTERVAL_MONTH:
        return tier.recurring_price
    if interval == INTERVAL_YEAR:
        return tier.recurring_price * 12
    raise InvalidInput(f"Unsupported billing interval '{interval}'.")
