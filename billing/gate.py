"""
Capacity authorization.

``authorize`` answers whether an organizer may run a session for a
given number of participants.  It only reads: consuming a credit is a
separate step taken by the registration flow.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass

from django.utils import timezone

from .exceptions import InvalidInput
from .ledger import get_credits
from .subscriptions import get_subscription, has_access
from .tiers import FREE_CAPACITY, FREE_TIER_KEY, tier_capacity

SOURCE_FREE = "free"
SOURCE_SUBSCRIPTION = "subscription"
SOURCE_CREDIT = "credit"


@dataclass(frozen=True)
class Authorization:
    allowed: bool
    reason: str
    current_tier: str
    suggestion: str | None = None
    source: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def authorize(user, requested_capacity: int, now: dt.datetime | None = None) -> Authorization:
    if isinstance(requested_capacity, bool) or not isinstance(requested_capacity, int) or requested_capacity < 1:
        raise InvalidInput("Capacity must be a positive integer.")

    if requested_capacity <= FREE_CAPACITY:
        return Authorization(True, "Free tier", FREE_TIER_KEY, source=SOURCE_FREE)

    # An active plan decides on its own so a purchased credit is never
    # spent while the organizer is already paying for a subscription.
    subscription = get_subscription(user)
    if has_access(subscription, now or timezone.now()):
        capacity = tier_capacity(subscription.capacity_tier)
        if requested_capacity <= capacity:
            return Authorization(
                True,
                f"Active subscription (up to {capacity} participants)",
                subscription.capacity_tier,
                source=SOURCE_SUBSCRIPTION,
            )
        return Authorization(
            False,
            f"Your subscription allows up to {capacity} participants",
            subscription.capacity_tier,
            suggestion=f"Upgrade to a higher tier to support {requested_capacity} participants",
        )

    credits = get_credits(user)
    if credits.balance > 0:
        capacity = tier_capacity(credits.capacity_tier)
        if requested_capacity <= capacity:
            return Authorization(
                True,
                f"Event credit available (up to {capacity} participants)",
                credits.capacity_tier,
                source=SOURCE_CREDIT,
            )
        return Authorization(
            False,
            f"Your event credit allows up to {capacity} participants",
            credits.capacity_tier,
            suggestion=f"Purchase a higher tier credit for {requested_capacity} participants",
        )

    return Authorization(
        False,
        "No active subscription or event credits",
        FREE_TIER_KEY,
        suggestion="Purchase a single event credit or subscribe to Premium",
    )

