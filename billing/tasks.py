"""
Celery tasks for the billing app.

Webhooks keep subscriptions current, but a missed or failed delivery
would leave a row stale until the organizer next opens the billing
page.  ``reconcile_subscriptions`` runs on Celery beat and re-reads
every live Stripe subscription so local state converges regardless.
"""
from __future__ import annotations

import logging

from celery import shared_task
from django.contrib.auth import get_user_model

from .apps import get_gateway
from .models import ADMIN_GRANTED_CUSTOMER, ADMIN_SUBSCRIPTION_PREFIX, Subscription
from .subscriptions import get_subscription, refresh_from_provider

logger = logging.getLogger(__name__)


@shared_task
def refresh_subscription(user_id: int) -> str | None:
    """Refresh one organizer's subscription from Stripe; returns the resulting status."""
    user = get_user_model().objects.filter(pk=user_id).first()
    subscription = get_subscription(user) if user else None
    if subscription is None:
        return None
    return refresh_from_provider(subscription, get_gateway()).status


@shared_task
def reconcile_subscriptions() -> int:
    """Queue a refresh for every subscription still backed by Stripe."""
    user_ids = list(
        Subscription.objects.exclude(stripe_subscription_id="")
        .exclude(stripe_subscription_id__startswith=ADMIN_SUBSCRIPTION_PREFIX)
        .exclude(stripe_customer_id=ADMIN_GRANTED_CUSTOMER)
        .exclude(status=Subscription.STATUS_CANCELLED)
        .values_list("user_id", flat=True)
    )
    for user_id in user_ids:
        refresh_subscription.delay(user_id)
    logger.info("Queued %d subscription refreshes", len(user_ids))
    return len(user_ids)
