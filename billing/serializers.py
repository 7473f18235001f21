"""
Serializers for the billing app.

Request serializers validate organizer and admin input before it
reaches the billing services.  Response payloads use the camelCase keys
the web client already consumes.
"""
from __future__ import annotations

from rest_framework import serializers

from .models import CreditTransaction
from .tiers import INTERVAL_MONTH, INTERVALS, TIER_CHOICES


class CheckoutRequestSerializer(serializers.Serializer):
    """Body of the create-subscription and create-event-payment endpoints."""

    capacity = serializers.IntegerField(min_value=1)
    interval = serializers.ChoiceField(choices=INTERVALS, default=INTERVAL_MONTH)


class CapacityQuerySerializer(serializers.Serializer):
    capacity = serializers.IntegerField(min_value=1, default=10)


class GrantSubscriptionSerializer(serializers.Serializer):
    capacityTier = serializers.ChoiceField(choices=TIER_CHOICES)
    plan = serializers.CharField(max_length=32, default="premium")
    periodDays = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class AddCreditsSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    capacityTier = serializers.ChoiceField(choices=TIER_CHOICES)
    description = serializers.CharField(max_length=255, required=False, default="Credits added by admin")


class CreditTransactionSerializer(serializers.ModelSerializer):
    """Read-only view of a ledger entry."""

    capacityTier = serializers.CharField(source="capacity_tier", read_only=True)
    stripeSessionId = serializers.CharField(source="stripe_session_id", read_only=True)
    sessionId = serializers.CharField(source="session_id", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = CreditTransaction
        fields = [
            "id",
            "type",
            "amount",
            "capacityTier",
            "stripeSessionId",
            "sessionId",
            "description",
            "createdAt",
        ]
        read_only_fields = fields
