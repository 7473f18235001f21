"""
Django admin registration for the billing app.

Ledger entries and webhook deliveries are read-only here: credits are
changed through the staff API so every change goes through the ledger.
"""
from django.contrib import admin

from .models import CreditAccount, CreditTransaction, Subscription, WebhookEvent


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = (
        "user",
        "capacity_tier",
        "status",
        "plan",
        "current_period_end",
        "cancel_at_period_end",
        "updated_at",
    )
    list_filter = ("status", "capacity_tier", "cancel_at_period_end")
    search_fields = ("user__username", "user__email", "stripe_customer_id", "stripe_subscription_id")
    ordering = ("-updated_at",)


@admin.register(CreditAccount)
class CreditAccountAdmin(admin.ModelAdmin):
    list_display = ("user", "balance", "capacity_tier", "updated_at")
    search_fields = ("user__username", "user__email")
    readonly_fields = ("balance",)


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "type", "amount", "capacity_tier", "session_id", "created_at")
    list_filter = ("type", "capacity_tier")
    search_fields = ("user__username", "stripe_session_id", "session_id")
    ordering = ("-created_at",)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("stripe_event_id", "event_type", "received_at", "processed_at")
    list_filter = ("event_type",)
    search_fields = ("stripe_event_id",)
    readonly_fields = ("stripe_event_id", "event_type", "payload", "received_at", "processed_at")
