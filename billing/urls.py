"""
URL configuration for the billing app.

Organizer endpoints, the Stripe webhook and the staff ``admin/``
endpoints.  Include this module under ``/api/billing/`` in the
project-level URL config.
"""
from django.urls import path

from .views import (
    AdminBillingView,
    AdminCreditsView,
    AdminResetCreditsView,
    AdminSubscriptionView,
    CancelSubscriptionView,
    CapacityCheckView,
    CreateEventPaymentView,
    CreateSubscriptionView,
    CreditsView,
    InvoicesView,
    StripeWebhookView,
    SubscriptionView,
)

app_name = "billing"

urlpatterns = [
    path("subscription/", SubscriptionView.as_view(), name="subscription"),
    path("create-subscription/", CreateSubscriptionView.as_view(), name="create-subscription"),
    path("create-event-payment/", CreateEventPaymentView.as_view(), name="create-event-payment"),
    path("cancel-subscription/", CancelSubscriptionView.as_view(), name="cancel-subscription"),
    path("credits/", CreditsView.as_view(), name="credits"),
    path("invoices/", InvoicesView.as_view(), name="invoices"),
    path("capacity-check/", CapacityCheckView.as_view(), name="capacity-check"),
    path("stripe-webhook/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("admin/users/<int:user_id>/billing/", AdminBillingView.as_view(), name="admin-billing"),
    path("admin/users/<int:user_id>/subscription/", AdminSubscriptionView.as_view(), name="admin-subscription"),
    path("admin/users/<int:user_id>/credits/", AdminCreditsView.as_view(), name="admin-credits"),
    path("admin/users/<int:user_id>/credits/reset/", AdminResetCreditsView.as_view(), name="admin-credits-reset"),
]
