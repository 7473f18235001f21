"""
Checkout orchestration.

Creates Stripe Checkout Sessions for subscriptions and single-event
credits.  Nothing is written locally: the ``CheckoutIntent`` travels to
Stripe as session metadata and comes back on
``checkout.session.completed``, which is when the webhook processor
grants the purchase.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings

from .models import ADMIN_GRANTED_CUSTOMER
from .subscriptions import get_subscription
from .tiers import INTERVAL_MONTH, Tier, recurring_amount, resolve_tier

logger = logging.getLogger(__name__)

PAYMENT_SUBSCRIPTION = "subscription"
PAYMENT_SINGLE_EVENT = "single_event"


@dataclass(frozen=True)
class CheckoutIntent:
    user_id: str
    tier_key: str
    payment_type: str

    def as_metadata(self) -> dict:
        return {
            "userId": self.user_id,
            "capacityTier": self.tier_key,
            "paymentType": self.payment_type,
        }


@dataclass(frozen=True)
class CheckoutResult:
    checkout_url: str
    session_id: str


def _redirect_urls() -> dict:
    return {
        "success_url": f"{settings.APP_URL}/billing?payment=success",
        "cancel_url": f"{settings.APP_URL}/billing?payment=cancelled",
    }


def get_or_create_customer(user, gateway) -> str:
    """Stored Stripe customer for ``user``, creating one when there is none.

    The ``admin_granted`` placeholder is not a Stripe customer and is never
    sent to Stripe.
    """
    subscription = get_subscription(user)
    customer_id = subscription.stripe_customer_id if subscription else ""
    if customer_id and customer_id != ADMIN_GRANTED_CUSTOMER:
        return customer_id
    return gateway.create_customer(
        email=user.email,
        metadata={
            "userId": str(user.pk),
            "organizerName": user.get_full_name() or user.get_username(),
        },
    )


def _create_session(gateway, params: dict, intent: CheckoutIntent) -> CheckoutResult:
    url, session_id = gateway.create_checkout_session(params)
    logger.info("Created Stripe checkout session %s (%s) for user %s", session_id, intent.payment_type, intent.user_id)
    return CheckoutResult(checkout_url=url, session_id=session_id)


def create_subscription_checkout(user, capacity: int, interval: str = INTERVAL_MONTH, *, gateway) -> CheckoutResult:
    tier: Tier = resolve_tier(capacity)
    amount = recurring_amount(tier, interval)
    intent = CheckoutIntent(user_id=str(user.pk), tier_key=tier.key, payment_type=PAYMENT_SUBSCRIPTION)
    params = {
        "customer": get_or_create_customer(user, gateway),
        "mode": "subscription",
        "line_items": [
            {
                "price_data": {
                    "currency": settings.BILLING_CURRENCY,
                    "product_data": {
                        "name": f"Wonderelo Premium - Up to {tier.capacity} participants",
                        "description": "Unlimited networking events with premium features",
                    },
                    "unit_amount": amount,
                    "recurring": {"interval": interval},
                },
                "quantity": 1,
            }
        ],
        "subscription_data": {
            "metadata": {
                "userId": intent.user_id,
                "capacityTier": intent.tier_key,
                "type": PAYMENT_SUBSCRIPTION,
            },
        },
        "metadata": intent.as_metadata(),
        **_redirect_urls(),
    }
    return _create_session(gateway, params, intent)


def create_event_payment_checkout(user, capacity: int, *, gateway) -> CheckoutResult:
    tier: Tier = resolve_tier(capacity)
    intent = CheckoutIntent(user_id=str(user.pk), tier_key=tier.key, payment_type=PAYMENT_SINGLE_EVENT)
    params = {
        "customer": get_or_create_customer(user, gateway),
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": settings.BILLING_CURRENCY,
                    "product_data": {
                        "name": f"Wonderelo Single Event - Up to {tier.capacity} participants",
                        "description": "One networking event credit",
                    },
                    "unit_amount": tier.single_price,
                },
                "quantity": 1,
            }
        ],
        "metadata": intent.as_metadata(),
        **_redirect_urls(),
    }
    return _create_session(gateway, params, intent)
