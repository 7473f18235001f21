"""
Views for the billing app.

Organizer endpoints read and change the caller's own subscription and
credits and start Stripe Checkout.  Staff endpoints under ``admin/``
manage any organizer's billing by hand.  The Stripe webhook endpoint is
unauthenticated and relies solely on signature verification.

Service errors are ``APIException`` subclasses, so DRF renders them
with their own status codes; views only translate validated input and
shape the response.
"""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import permissions, status, views
from rest_framework.response import Response

from . import webhooks
from .apps import get_gateway
from .checkout import create_event_payment_checkout, create_subscription_checkout
from .exceptions import InvalidInput, SignatureInvalid
from .gate import authorize
from .invoices import collect_invoices
from .ledger import add_credits, get_credit_transactions, get_credits, reset_credits
from .models import CreditTransaction
from .serializers import (
    AddCreditsSerializer,
    CapacityQuerySerializer,
    CheckoutRequestSerializer,
    CreditTransactionSerializer,
    GrantSubscriptionSerializer,
)
from .subscriptions import (
    describe_subscription,
    get_subscription,
    grant_subscription,
    refresh_from_provider,
    request_cancellation,
    revoke_subscription,
)

logger = logging.getLogger(__name__)


def _credits_payload(user) -> dict:
    credits = get_credits(user)
    return {
        "credits": {"balance": credits.balance, "capacityTier": credits.capacity_tier},
        "transactions": CreditTransactionSerializer(get_credit_transactions(user), many=True).data,
    }


def _checkout_payload(result) -> dict:
    return {"checkoutUrl": result.checkout_url, "sessionId": result.session_id}


class SubscriptionView(views.APIView):
    """Current subscription of the caller, refreshed from Stripe when possible."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        subscription = get_subscription(request.user)
        if subscription is not None:
            subscription = refresh_from_provider(subscription, get_gateway())
        return Response(describe_subscription(subscription))


class CreateSubscriptionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = create_subscription_checkout(
            request.user,
            serializer.validated_data["capacity"],
            serializer.validated_data["interval"],
            gateway=get_gateway(),
        )
        return Response(_checkout_payload(result))


class CreateEventPaymentView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = create_event_payment_checkout(
            request.user,
            serializer.validated_data["capacity"],
            gateway=get_gateway(),
        )
        return Response(_checkout_payload(result))


class CancelSubscriptionView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        request_cancellation(request.user, get_gateway())
        return Response(
            {
                "success": True,
                "message": "Subscription will be cancelled at the end of your current billing period",
            }
        )


class CreditsView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response({"success": True, **_credits_payload(request.user)})


class InvoicesView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        invoices = collect_invoices(get_subscription(request.user), get_gateway())
        return Response({"invoices": invoices})


class CapacityCheckView(views.APIView):
    """Whether the caller may run a session for ``?capacity=N`` participants."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        serializer = CapacityQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        capacity = serializer.validated_data["capacity"]
        result = authorize(request.user, capacity)
        return Response(
            {
                "allowed": result.allowed,
                "reason": result.reason,
                "currentTier": result.current_tier,
                "suggestion": result.suggestion,
                "requestedCapacity": capacity,
            }
        )


@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(views.APIView):
    """Handle incoming Stripe webhook events."""

    permission_classes = []  # no authentication
    authentication_classes = []
    throttle_classes = []

    def post(self, request):
        payload = request.body
        sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
        try:
            outcome = webhooks.handle(payload, sig_header, get_gateway())
        except (SignatureInvalid, InvalidInput) as exc:
            return Response({"error": str(exc.detail)}, status=status.HTTP_400_BAD_REQUEST)
        except Exception:
            # Stripe retries on 5xx; the delivery record was rolled back with the handler
            logger.exception("Webhook handler failed")
            return Response({"error": "Webhook handler failed"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({"received": True, "eventId": outcome.event_id, "result": outcome.result})


# -- staff --------------------------------------------------------------------


def _organizer_or_404(user_id):
    return get_object_or_404(get_user_model(), pk=user_id)


class AdminBillingView(views.APIView):
    """Subscription, credits and ledger of one organizer."""

    permission_classes = [permissions.IsAdminUser]

    def get(self, request, user_id):
        organizer = _organizer_or_404(user_id)
        return Response(
            {
                "userId": organizer.pk,
                **describe_subscription(get_subscription(organizer)),
                **_credits_payload(organizer),
            }
        )


class AdminSubscriptionView(views.APIView):
    """Grant (POST) or revoke (DELETE) an organizer's subscription."""

    permission_classes = [permissions.IsAdminUser]

    def post(self, request, user_id):
        organizer = _organizer_or_404(user_id)
        serializer = GrantSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        subscription = grant_subscription(
            organizer,
            data["capacityTier"],
            plan=data["plan"],
            period_days=data.get("periodDays"),
        )
        logger.info("Staff user %s granted a subscription to user %s", request.user.pk, organizer.pk)
        return Response(describe_subscription(subscription), status=status.HTTP_201_CREATED)

    def delete(self, request, user_id):
        organizer = _organizer_or_404(user_id)
        subscription = revoke_subscription(organizer, get_gateway())
        logger.info("Staff user %s revoked the subscription of user %s", request.user.pk, organizer.pk)
        return Response(describe_subscription(subscription))


class AdminCreditsView(views.APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, user_id):
        organizer = _organizer_or_404(user_id)
        serializer = AddCreditsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        add_credits(
            organizer,
            data["amount"],
            type=CreditTransaction.TYPE_PURCHASE,
            capacity_tier=data["capacityTier"],
            description=data["description"],
        )
        logger.info("Staff user %s added %d credit(s) to user %s", request.user.pk, data["amount"], organizer.pk)
        return Response({"success": True, **_credits_payload(organizer)}, status=status.HTTP_201_CREATED)


class AdminResetCreditsView(views.APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, user_id):
        organizer = _organizer_or_404(user_id)
        removed = reset_credits(organizer)
        logger.info("Staff user %s reset %d credit(s) of user %s", request.user.pk, removed, organizer.pk)
        return Response({"success": True, "removed": removed, **_credits_payload(organizer)})
