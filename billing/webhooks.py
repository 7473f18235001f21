"""
Stripe webhook processing.

``handle`` verifies the signature, turns the JSON body into one of a
closed set of event dataclasses and applies it.  Stripe delivers at
least once, so each delivery is recorded in ``WebhookEvent`` under its
event id inside the same transaction as its effects: a replay of a
processed event is acknowledged without touching state, and a handler
failure rolls the record back so Stripe's retry gets a clean run.

Events the billing app does not act on are acknowledged too; only a bad
signature or an unreadable body is refused, which is what makes Stripe
retry.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass
from typing import ClassVar, Union

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from .checkout import PAYMENT_SINGLE_EVENT, PAYMENT_SUBSCRIPTION
from .exceptions import InvalidPayload
from .ledger import add_credits
from .models import CreditTransaction, WebhookEvent
from .stripe_gateway import subscription_period_end
from .subscriptions import (
    activate_from_checkout,
    get_subscription,
    get_subscription_by_stripe_id,
    mark_cancelled,
    mark_past_due,
    mirror_provider_state,
)
from .tiers import is_known_tier

logger = logging.getLogger(__name__)

RESULT_PROCESSED = "processed"
RESULT_IGNORED = "ignored"
RESULT_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_type: ClassVar[str] = "checkout.session.completed"

    event_id: str
    session_id: str
    customer_ref: str
    subscription_ref: str
    user_id: str
    tier_key: str
    payment_type: str


@dataclass(frozen=True)
class SubscriptionChanged:
    event_type: ClassVar[str] = "customer.subscription.updated"

    event_id: str
    subscription_ref: str
    user_id: str
    status: str
    cancel_at_period_end: bool
    current_period_end: dt.datetime | None
    tier_key: str


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_type: ClassVar[str] = "customer.subscription.deleted"

    event_id: str
    subscription_ref: str
    user_id: str


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_type: ClassVar[str] = "invoice.payment_failed"

    event_id: str
    invoice_id: str
    subscription_ref: str


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str


ProviderEvent = Union[CheckoutCompleted, SubscriptionChanged, SubscriptionDeleted, InvoicePaymentFailed, IgnoredEvent]


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    result: str


# -- parsing ------------------------------------------------------------------


def _ref(value) -> str:
    """Id of a possibly-expanded Stripe reference."""
    if isinstance(value, dict):
        return str(value.get("id") or "")
    return str(value) if value else ""


def _metadata(obj: dict) -> dict:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _parse_checkout_completed(event_id: str, obj: dict) -> CheckoutCompleted:
    metadata = _metadata(obj)
    return CheckoutCompleted(
        event_id=event_id,
        session_id=_ref(obj.get("id")),
        customer_ref=_ref(obj.get("customer")),
        subscription_ref=_ref(obj.get("subscription")),
        user_id=str(metadata.get("userId") or ""),
        tier_key=str(metadata.get("capacityTier") or ""),
        payment_type=str(metadata.get("paymentType") or ""),
    )


def _parse_subscription_changed(event_id: str, obj: dict) -> SubscriptionChanged:
    metadata = _metadata(obj)
    return SubscriptionChanged(
        event_id=event_id,
        subscription_ref=_ref(obj.get("id")),
        user_id=str(metadata.get("userId") or ""),
        status=str(obj.get("status") or ""),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        current_period_end=subscription_period_end(obj),
        tier_key=str(metadata.get("capacityTier") or ""),
    )


def _parse_subscription_deleted(event_id: str, obj: dict) -> SubscriptionDeleted:
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_ref=_ref(obj.get("id")),
        user_id=str(_metadata(obj).get("userId") or ""),
    )


def _parse_invoice_payment_failed(event_id: str, obj: dict) -> InvoicePaymentFailed:
    subscription_ref = _ref(obj.get("subscription"))
    if not subscription_ref:
        # API versions from 2025 nest it under parent.subscription_details
        parent = obj.get("parent")
        details = parent.get("subscription_details") if isinstance(parent, dict) else None
        if isinstance(details, dict):
            subscription_ref = _ref(details.get("subscription"))
    return InvoicePaymentFailed(event_id=event_id, invoice_id=_ref(obj.get("id")), subscription_ref=subscription_ref)


PARSERS = {
    CheckoutCompleted.event_type: _parse_checkout_completed,
    SubscriptionChanged.event_type: _parse_subscription_changed,
    SubscriptionDeleted.event_type: _parse_subscription_deleted,
    InvoicePaymentFailed.event_type: _parse_invoice_payment_failed,
}


def parse_event(payload) -> ProviderEvent:
    if not isinstance(payload, dict):
        raise InvalidPayload()
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
        raise InvalidPayload("Webhook payload is missing its event id or type.")
    parser = PARSERS.get(event_type)
    if parser is None:
        return IgnoredEvent(event_id=event_id, event_type=event_type)
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise InvalidPayload(f"{event_type} event has no data object.")
    return parser(event_id, obj)


# -- handlers -----------------------------------------------------------------


def _organizer(user_id: str):
    if not user_id:
        return None
    try:
        return get_user_model().objects.filter(pk=user_id).first()
    except (ValueError, TypeError):
        return None


def _on_checkout_completed(event: CheckoutCompleted) -> str:
    if not event.user_id or not event.tier_key:
        logger.error("Missing metadata in checkout session %s", event.session_id)
        return RESULT_IGNORED
    if not is_known_tier(event.tier_key):
        logger.error("Unknown capacity tier %r in checkout session %s", event.tier_key, event.session_id)
        return RESULT_IGNORED
    user = _organizer(event.user_id)
    if user is None:
        logger.error("Checkout session %s references unknown user %s", event.session_id, event.user_id)
        return RESULT_IGNORED

    if event.payment_type == PAYMENT_SUBSCRIPTION:
        activate_from_checkout(
            user,
            customer_ref=event.customer_ref,
            subscription_ref=event.subscription_ref,
            tier_key=event.tier_key,
        )
        logger.info("Subscription created for user %s (tier %s)", user.pk, event.tier_key)
        return RESULT_PROCESSED
    if event.payment_type == PAYMENT_SINGLE_EVENT:
        tx = add_credits(
            user,
            1,
            type=CreditTransaction.TYPE_PURCHASE,
            capacity_tier=event.tier_key,
            stripe_session_id=event.session_id,
            stripe_customer_id=event.customer_ref,
            description="Single event purchase",
        )
        if tx is None:
            return RESULT_DUPLICATE
        logger.info("Event credit added for user %s (tier %s)", user.pk, event.tier_key)
        return RESULT_PROCESSED

    logger.warning("Checkout session %s has unknown payment type %r", event.session_id, event.payment_type)
    return RESULT_IGNORED


def _subscription_for(user_id: str, subscription_ref: str):
    user = _organizer(user_id)
    if user is not None:
        return get_subscription(user)
    return get_subscription_by_stripe_id(subscription_ref)


def _is_stale(subscription, subscription_ref: str) -> bool:
    """True when the event is about a subscription the record has since replaced."""
    current = subscription.stripe_subscription_id
    if not subscription_ref or not current or subscription_ref == current:
        return False
    logger.info(
        "Ignoring event for %s; user %s is now on %s", subscription_ref, subscription.user_id, current
    )
    return True


def _on_subscription_changed(event: SubscriptionChanged) -> str:
    subscription = _subscription_for(event.user_id, event.subscription_ref)
    if subscription is None:
        logger.warning("No local subscription for %s (user %r)", event.subscription_ref, event.user_id)
        return RESULT_IGNORED
    if _is_stale(subscription, event.subscription_ref):
        return RESULT_IGNORED
    updated = mirror_provider_state(
        subscription,
        status=event.status,
        cancel_at_period_end=event.cancel_at_period_end,
        current_period_end=event.current_period_end,
        subscription_ref=event.subscription_ref,
        tier_key=event.tier_key if is_known_tier(event.tier_key) else None,
    )
    if updated:
        logger.info("Subscription updated for user %s: %s", subscription.user_id, subscription.status)
    return RESULT_PROCESSED if updated else RESULT_IGNORED


def _on_subscription_deleted(event: SubscriptionDeleted) -> str:
    subscription = _subscription_for(event.user_id, event.subscription_ref)
    if subscription is None:
        logger.warning("No local subscription to cancel for %s (user %r)", event.subscription_ref, event.user_id)
        return RESULT_IGNORED
    if _is_stale(subscription, event.subscription_ref):
        return RESULT_IGNORED
    if not mark_cancelled(subscription):
        return RESULT_IGNORED
    logger.info("Subscription deleted for user %s", subscription.user_id)
    return RESULT_PROCESSED


def _on_invoice_payment_failed(event: InvoicePaymentFailed) -> str:
    subscription = get_subscription_by_stripe_id(event.subscription_ref)
    if subscription is None:
        logger.info("Invoice %s failed for unknown subscription %r", event.invoice_id, event.subscription_ref)
        return RESULT_IGNORED
    if not mark_past_due(subscription):
        return RESULT_IGNORED
    logger.warning("Payment failed for subscription %s (user %s)", event.subscription_ref, subscription.user_id)
    return RESULT_PROCESSED


def _on_ignored(event: IgnoredEvent) -> str:
    logger.debug("Unhandled webhook event: %s", event.event_type)
    return RESULT_IGNORED


HANDLERS = {
    CheckoutCompleted: _on_checkout_completed,
    SubscriptionChanged: _on_subscription_changed,
    SubscriptionDeleted: _on_subscription_deleted,
    InvoicePaymentFailed: _on_invoice_payment_failed,
    IgnoredEvent: _on_ignored,
}


def dispatch(event: ProviderEvent) -> str:
    return HANDLERS[type(event)](event)


def handle(raw_body: bytes | str, signature: str | None, gateway) -> WebhookOutcome:
    body = gateway.verify_webhook(raw_body, signature)
    try:
        payload = json.loads(body)
    except ValueError:
        raise InvalidPayload("Webhook body is not valid JSON.")
    event = parse_event(payload)
    logger.info("Stripe webhook event %s (%s)", event.event_type, event.event_id)

    with transaction.atomic():
        record, created = WebhookEvent.objects.select_for_update().get_or_create(
            stripe_event_id=event.event_id,
            defaults={"event_type": event.event_type, "payload": payload},
        )
        if not created and record.processed_at is not None:
            logger.info("Webhook event %s already processed", event.event_id)
            return WebhookOutcome(event.event_id, event.event_type, RESULT_DUPLICATE)
        result = dispatch(event)
        record.processed_at = timezone.now()
        record.save(update_fields=["processed_at"])
    return WebhookOutcome(event.event_id, event.event_type, result)
