"""
Subscription record lifecycle.

The local ``Subscription`` row is a mirror of Stripe: webhooks copy the
provider's status onto it and nothing else changes ``status`` except the
admin tooling for locally granted plans.  Organizer cancellation only
records intent (``cancel_at_period_end``); access lasts until the paid
period ends and the provider's deletion event performs the transition.
"""
from __future__ import annotations

import datetime as dt
import logging

from django.utils import timezone

from .exceptions import NotFound, UpstreamUnavailable
from .models import ADMIN_GRANTED_CUSTOMER, ADMIN_SUBSCRIPTION_PREFIX, Subscription
from .tiers import get_tier

logger = logging.getLogger(__name__)

ACCESS_STATUSES = (Subscription.STATUS_ACTIVE, Subscription.STATUS_TRIALING)
VISIBLE_STATUSES = ACCESS_STATUSES + (Subscription.STATUS_PAST_DUE,)


def normalize_status(status: str) -> str:
    # Stripe spells it "canceled"
    if status == "canceled":
        return Subscription.STATUS_CANCELLED
    return status


# -- persistence ------------------------------------------------------------


def get_subscription(user) -> Subscription | None:
    return Subscription.objects.filter(user=user).first()


def get_subscription_by_stripe_id(subscription_ref: str) -> Subscription | None:
    if not subscription_ref:
        return None
    return Subscription.objects.filter(stripe_subscription_id=subscription_ref).first()


def upsert_subscription(user, **fields) -> Subscription:
    subscription, _ = Subscription.objects.update_or_create(user=user, defaults=fields)
    return subscription


def update_subscription(user, **fields) -> Subscription | None:
    subscription = get_subscription(user)
    if subscription is None:
        return None
    _save(subscription, **fields)
    return subscription


def _save(subscription: Subscription, **fields) -> None:
    for name, value in fields.items():
        setattr(subscription, name, value)
    subscription.save(update_fields=[*fields, "updated_at"])


# -- access -----------------------------------------------------------------


def has_access(subscription: Subscription | None, now: dt.datetime | None = None) -> bool:
    """Active/trialing, or cancelled with paid time left (grace period)."""
    if subscription is None or not subscription.stripe_subscription_id:
        return False
    if subscription.status in ACCESS_STATUSES:
        return True
    now = now or timezone.now()
    return bool(
        subscription.status == Subscription.STATUS_CANCELLED
        and subscription.current_period_end
        and subscription.current_period_end > now
    )


def has_visible_subscription(subscription: Subscription | None, now: dt.datetime | None = None) -> bool:
    """Whether the billing page should present the plan as current."""
    if subscription is None:
        return False
    if subscription.status in VISIBLE_STATUSES:
        return True
    return has_access(subscription, now)


# -- provider-driven transitions ---------------------------------------------


def activate_from_checkout(user, *, customer_ref: str, subscription_ref: str, tier_key: str) -> Subscription:
    existing = get_subscription(user)
    period_end = None
    if existing is not None and existing.stripe_subscription_id == subscription_ref:
        period_end = existing.current_period_end
    return upsert_subscription(
        user,
        stripe_customer_id=customer_ref or "",
        stripe_subscription_id=subscription_ref or "",
        capacity_tier=tier_key,
        status=Subscription.STATUS_ACTIVE,
        plan="premium",
        current_period_end=period_end,
        cancel_at_period_end=False,
    )


def mirror_provider_state(
    subscription: Subscription,
    *,
    status: str,
    cancel_at_period_end: bool,
    current_period_end: dt.datetime | None,
    subscription_ref: str = "",
    tier_key: str | None = None,
) -> bool:
    if subscription.is_admin_granted:
        logger.info("Ignoring provider update for admin-granted subscription of user %s", subscription.user_id)
        return False
    fields = {
        "status": normalize_status(status),
        "cancel_at_period_end": bool(cancel_at_period_end),
        "current_period_end": current_period_end,
    }
    if subscription_ref and not subscription.stripe_subscription_id:
        fields["stripe_subscription_id"] = subscription_ref
    if tier_key:
        fields["capacity_tier"] = tier_key
    _save(subscription, **fields)
    return True


def mark_cancelled(subscription: Subscription) -> bool:
    if subscription.is_admin_granted:
        logger.info("Ignoring provider deletion for admin-granted subscription of user %s", subscription.user_id)
        return False
    _save(subscription, status=Subscription.STATUS_CANCELLED, cancel_at_period_end=False)
    return True


def mark_past_due(subscription: Subscription) -> bool:
    if subscription.is_admin_granted or subscription.status not in ACCESS_STATUSES:
        return False
    _save(subscription, status=Subscription.STATUS_PAST_DUE)
    return True


def refresh_from_provider(subscription: Subscription, gateway) -> Subscription:
    """Pull the live status from Stripe; falls back to the local row on failure."""
    if not subscription.stripe_subscription_id or subscription.is_admin_granted:
        return subscription
    try:
        remote = gateway.retrieve_subscription(subscription.stripe_subscription_id)
    except UpstreamUnavailable as exc:
        logger.warning(
            "Could not verify Stripe subscription %s, using local state: %s",
            subscription.stripe_subscription_id,
            exc,
        )
        return subscription
    status = normalize_status(remote.status)
    if (
        status != subscription.status
        or remote.cancel_at_period_end != subscription.cancel_at_period_end
        or remote.current_period_end != subscription.current_period_end
    ):
        _save(
            subscription,
            status=status,
            cancel_at_period_end=remote.cancel_at_period_end,
            current_period_end=remote.current_period_end,
        )
    return subscription


# -- organizer / admin requests ---------------------------------------------


def request_cancellation(user, gateway) -> Subscription:
    """Cancel at period end; status is left for the provider to change."""
    subscription = get_subscription(user)
    if subscription is None or not subscription.stripe_subscription_id:
        raise NotFound("No active subscription found")
    if not subscription.is_admin_granted:
        gateway.set_cancel_at_period_end(subscription.stripe_subscription_id, True)
    subscription = update_subscription(user, cancel_at_period_end=True)
    logger.info("Subscription cancelled at period end for user %s", user.pk)
    return subscription


def grant_subscription(user, tier_key: str, *, plan: str = "premium", period_days: int | None = None) -> Subscription:
    tier = get_tier(tier_key)
    period_end = timezone.now() + dt.timedelta(days=period_days) if period_days else None
    subscription = upsert_subscription(
        user,
        stripe_customer_id=ADMIN_GRANTED_CUSTOMER,
        stripe_subscription_id=f"{ADMIN_SUBSCRIPTION_PREFIX}{user.pk}",
        capacity_tier=tier.key,
        status=Subscription.STATUS_ACTIVE,
        plan=plan,
        current_period_end=period_end,
        cancel_at_period_end=False,
    )
    logger.info("Granted %s subscription (tier %s) to user %s", plan, tier.key, user.pk)
    return subscription


def revoke_subscription(user, gateway) -> Subscription:
    """Admin cancellation.

    Granted plans are cancelled locally and lose access immediately.
    Real subscriptions are cancelled at Stripe right away; the local row
    follows when the deletion webhook arrives.
    """
    subscription = get_subscription(user)
    if subscription is None or not subscription.stripe_subscription_id:
        raise NotFound("No subscription found")
    if subscription.is_admin_granted:
        _save(
            subscription,
            status=Subscription.STATUS_CANCELLED,
            cancel_at_period_end=False,
            current_period_end=timezone.now(),
        )
    else:
        gateway.cancel_subscription(subscription.stripe_subscription_id)
    logger.info("Admin revoked subscription for user %s", user.pk)
    return subscription


def describe_subscription(subscription: Subscription | None, now: dt.datetime | None = None) -> dict:
    """Payload of ``GET /api/billing/subscription/``."""
    if subscription is None:
        return {"hasSubscription": False}
    return {
        "hasSubscription": has_visible_subscription(subscription, now),
        "subscription": {
            "plan": subscription.plan or "premium",
            "capacityTier": subscription.capacity_tier,
            "status": subscription.status,
            "currentPeriodEnd": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
            "stripeCustomerId": subscription.stripe_customer_id,
            "stripeSubscriptionId": subscription.stripe_subscription_id,
            "cancelAtPeriodEnd": subscription.cancel_at_period_end,
        },
    }
