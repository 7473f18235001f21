"""
Database models for the billing app.

A ``Subscription`` mirrors the organizer's Stripe subscription locally
(one per organizer, never deleted).  Event credits bought one at a time
are tracked by an append-only ``CreditTransaction`` log whose running
sum is cached on ``CreditAccount``.  ``WebhookEvent`` records every
Stripe delivery by its event id so replays are acknowledged without
being applied twice.
"""
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .tiers import DEFAULT_TIER_KEY

ADMIN_GRANTED_CUSTOMER = "admin_granted"
ADMIN_SUBSCRIPTION_PREFIX = "admin_"


class Subscription(models.Model):
    """Local mirror of an organizer's subscription."""

    STATUS_INACTIVE = "inactive"
    STATUS_ACTIVE = "active"
    STATUS_TRIALING = "trialing"
    STATUS_PAST_DUE = "past_due"
    STATUS_CANCELLED = "cancelled"
    STATUS_INCOMPLETE = "incomplete"
    STATUS_INCOMPLETE_EXPIRED = "incomplete_expired"
    STATUS_UNPAID = "unpaid"
    STATUS_PAUSED = "paused"
    STATUS_CHOICES = [
        (STATUS_INACTIVE, "Inactive"),
        (STATUS_ACTIVE, "Active"),
        (STATUS_TRIALING, "Trialing"),
        (STATUS_PAST_DUE, "Past due"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_INCOMPLETE, "Incomplete"),
        (STATUS_INCOMPLETE_EXPIRED, "Incomplete expired"),
        (STATUS_UNPAID, "Unpaid"),
        (STATUS_PAUSED, "Paused"),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="subscription",
    )
    stripe_customer_id = models.CharField(max_length=255, blank=True)
    stripe_subscription_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Stripe subscription identifier, or admin_<id> for granted plans",
    )
    capacity_tier = models.CharField(max_length=16, default=DEFAULT_TIER_KEY)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_INACTIVE,
    )
    plan = models.CharField(max_length=32, default="premium")
    current_period_end = models.DateTimeField(null=True, blank=True)
    cancel_at_period_end = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]

    def __str__(self) -> str:
        return f"Subscription {self.user_id} ({self.capacity_tier}, {self.status})"

    @property
    def is_admin_granted(self) -> bool:
        return self.stripe_customer_id == ADMIN_GRANTED_CUSTOMER or self.stripe_subscription_id.startswith(
            ADMIN_SUBSCRIPTION_PREFIX
        )


class CreditAccount(models.Model):
    """Cached balance of an organizer's event credits."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="credit_account",
    )
    balance = models.IntegerField(default=0)
    capacity_tier = models.CharField(max_length=16, default=DEFAULT_TIER_KEY)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(balance__gte=0), name="credit_balance_non_negative"),
        ]

    def __str__(self) -> str:
        return f"Credits {self.user_id}: {self.balance} ({self.capacity_tier})"


class CreditTransaction(models.Model):
    """One entry of the append-only credit ledger."""

    TYPE_PURCHASE = "purchase"
    TYPE_CONSUMED = "consumed"
    TYPE_REFUND = "refund"
    TYPE_CHOICES = [
        (TYPE_PURCHASE, "Purchase"),
        (TYPE_CONSUMED, "Consumed"),
        (TYPE_REFUND, "Refund"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="credit_transactions",
    )
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    amount = models.IntegerField(help_text="Signed credit delta; consumption is negative")
    capacity_tier = models.CharField(max_length=16, blank=True)
    stripe_session_id = models.CharField(max_length=255, blank=True, db_index=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True)
    session_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Networking session the credit was used for (not a Stripe session)",
    )
    description = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=["user", "-created_at"], name="credit_tx_user_created_idx"),
        ]
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.type} {self.amount:+d} for {self.user_id}"


class WebhookEvent(models.Model):
    """A Stripe webhook delivery, keyed by the provider's event id."""

    stripe_event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField(default=dict)
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-received_at"]

    def __str__(self) -> str:
        return f"{self.event_type} ({self.stripe_event_id})"
