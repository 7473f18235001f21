"""
Session lifecycle rules that touch billing.

Creating a session checks the requested capacity against the
organizer's plan.  The first registration is where a pay-per-event
organizer actually spends a credit, and an emptied session hands it
back when it is deleted or unpublished.
"""
from __future__ import annotations

import logging

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError

from billing.exceptions import InsufficientBalance
from billing.gate import SOURCE_CREDIT, Authorization, authorize
from billing.ledger import consume_event_credit, get_balance, refund_event_credit

from .models import Event, EventRegistration

logger = logging.getLogger(__name__)


class CapacityDenied(APIException):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Capacity not covered by your plan."
    default_code = "capacity_exceeded"

    def __init__(self, result: Authorization):
        super().__init__(
            detail={
                "error": self.default_code,
                "message": result.reason,
                "suggestion": result.suggestion or "",
                "currentTier": result.current_tier,
            }
        )


def check_capacity(organizer, capacity: int) -> Authorization:
    result = authorize(organizer, capacity)
    if not result.allowed:
        logger.info("Capacity %s denied for user %s: %s", capacity, organizer.pk, result.reason)
        raise CapacityDenied(result)
    return result


def create_event(organizer, **fields) -> Event:
    check_capacity(organizer, fields["capacity"])
    return Event.objects.create(organizer=organizer, **fields)


def _charge_first_registration(event: Event) -> None:
    result = check_capacity(event.organizer, event.capacity)
    if result.source != SOURCE_CREDIT:
        return
    if not consume_event_credit(event.organizer, event.pk):
        raise InsufficientBalance(1, get_balance(event.organizer))
    event.credit_consumed = True
    event.save(update_fields=["credit_consumed", "updated_at"])


def register_participant(event_id, *, name: str, email: str) -> EventRegistration:
    with transaction.atomic():
        event = get_object_or_404(Event.objects.select_for_update().select_related("organizer"), pk=event_id)
        if event.status != Event.STATUS_PUBLISHED:
            raise ValidationError({"detail": "This session is not open for registration."})
        registrations = event.registrations.all()
        if registrations.filter(email__iexact=email).exists():
            raise ValidationError({"email": "This email is already registered for the session."})
        count = registrations.count()
        if count >= event.capacity:
            raise ValidationError({"detail": "This session is full."})
        if count == 0 and not event.credit_consumed:
            _charge_first_registration(event)
        registration = EventRegistration.objects.create(event=event, name=name, email=email)
    logger.info("Registered %s for session %s", email, event.pk)
    return registration


def release_credit(event: Event) -> bool:
    """Refund the session's credit if it has no registrations left."""
    if not event.credit_consumed or event.registrations.exists():
        return False
    refunded = refund_event_credit(event.organizer, event.pk)
    if refunded:
        event.credit_consumed = False
        event.save(update_fields=["credit_consumed", "updated_at"])
    return refunded


def delete_event(event: Event) -> bool:
    """Delete the session; returns whether its credit was refunded."""
    with transaction.atomic():
        refunded = release_credit(event)
        event.delete()
    return refunded
