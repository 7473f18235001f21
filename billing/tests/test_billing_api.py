"""
API tests for the billing endpoints.

Covers authentication, the organizer endpoints and the staff
``admin/`` endpoints.  Stripe is the mock gateway from ``conftest``.
"""
from datetime import timedelta

import pytest
from django.test import Client
from django.utils import timezone

from billing.exceptions import UpstreamUnavailable
from billing.ledger import add_credits, get_balance
from billing.models import Subscription
from billing.stripe_gateway import ProviderSubscription


@pytest.mark.django_db
@pytest.mark.parametrize(
    "method,url",
    [
        ("get", "/api/billing/subscription/"),
        ("post", "/api/billing/create-subscription/"),
        ("post", "/api/billing/create-event-payment/"),
        ("post", "/api/billing/cancel-subscription/"),
        ("get", "/api/billing/credits/"),
        ("get", "/api/billing/invoices/"),
        ("get", "/api/billing/capacity-check/"),
    ],
)
def test_organizer_endpoints_require_token(method, url):
    resp = getattr(Client(), method)(url)
    assert resp.status_code == 401


@pytest.mark.django_db
def test_invalid_token_is_unauthorized():
    resp = Client().get("/api/billing/credits/", HTTP_AUTHORIZATION="Bearer not-a-token")
    assert resp.status_code == 401


@pytest.mark.django_db
def test_subscription_without_record(auth_client):
    resp = auth_client.get("/api/billing/subscription/")
    assert resp.status_code == 200
    assert resp.json() == {"hasSubscription": False}


@pytest.mark.django_db
def test_subscription_is_refreshed_from_stripe(auth_client, user, gateway):
    Subscription.objects.create(user=user, stripe_customer_id="cus_1", stripe_subscription_id="sub_1", status="active")
    period_end = timezone.now() + timedelta(days=3)
    gateway.retrieve_subscription.side_effect = None
    gateway.retrieve_subscription.return_value = ProviderSubscription(
        id="sub_1", status="canceled", cancel_at_period_end=False, current_period_end=period_end
    )

    body = auth_client.get("/api/billing/subscription/").json()
    assert body["hasSubscription"] is True
    assert body["subscription"]["status"] == "cancelled"
    assert Subscription.objects.get(user=user).status == "cancelled"


@pytest.mark.django_db
def test_subscription_falls_back_when_stripe_is_down(auth_client, user, gateway):
    Subscription.objects.create(user=user, stripe_customer_id="cus_1", stripe_subscription_id="sub_1", status="active")
    resp = auth_client.get("/api/billing/subscription/")
    assert resp.status_code == 200
    assert resp.json()["subscription"]["status"] == "active"


@pytest.mark.django_db
def test_create_subscription_returns_checkout_url(auth_client, gateway):
    resp = auth_client.post(
        "/api/billing/create-subscription/",
        {"capacity": 300, "interval": "year"},
        content_type="application/json",
    )
    assert resp.status_code == 200
    assert resp.json() == {"checkoutUrl": "https://checkout.stripe.test/c/cs_test_1", "sessionId": "cs_test_1"}
    (params,), _ = gateway.create_checkout_session.call_args
    assert params["metadata"]["capacityTier"] == "500"


@pytest.mark.django_db
@pytest.mark.parametrize(
    "body",
    [{}, {"capacity": 0}, {"capacity": "many"}, {"capacity": 50, "interval": "week"}],
)
def test_create_subscription_rejects_bad_input(auth_client, gateway, body):
    resp = auth_client.post("/api/billing/create-subscription/", body, content_type="application/json")
    assert resp.status_code == 400
    gateway.create_checkout_session.assert_not_called()


@pytest.mark.django_db
def test_create_event_payment(auth_client, gateway):
    resp = auth_client.post("/api/billing/create-event-payment/", {"capacity": 40}, content_type="application/json")
    assert resp.status_code == 200
    (params,), _ = gateway.create_checkout_session.call_args
    assert params["mode"] == "payment"


@pytest.mark.django_db
def test_checkout_reports_stripe_outage(auth_client, gateway):
    gateway.create_checkout_session.side_effect = UpstreamUnavailable("Stripe timed out")
    resp = auth_client.post("/api/billing/create-event-payment/", {"capacity": 40}, content_type="application/json")
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Stripe timed out"


@pytest.mark.django_db
def test_cancel_subscription(auth_client, user, gateway):
    resp = auth_client.post("/api/billing/cancel-subscription/")
    assert resp.status_code == 404

    Subscription.objects.create(user=user, stripe_customer_id="cus_1", stripe_subscription_id="sub_1", status="active")
    resp = auth_client.post("/api/billing/cancel-subscription/")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    sub = Subscription.objects.get(user=user)
    assert sub.cancel_at_period_end
    assert sub.status == "active"


@pytest.mark.django_db
def test_credits_endpoint(auth_client, user):
    add_credits(user, 2, capacity_tier="200", stripe_session_id="cs_1")
    body = auth_client.get("/api/billing/credits/").json()
    assert body["success"] is True
    assert body["credits"] == {"balance": 2, "capacityTier": "200"}
    assert body["transactions"][0]["type"] == "purchase"
    assert body["transactions"][0]["stripeSessionId"] == "cs_1"


@pytest.mark.django_db
def test_capacity_check(auth_client, user):
    body = auth_client.get("/api/billing/capacity-check/").json()
    assert body["allowed"] is True
    assert body["currentTier"] == "free"
    assert body["requestedCapacity"] == 10

    body = auth_client.get("/api/billing/capacity-check/?capacity=25").json()
    assert body["allowed"] is False
    assert body["suggestion"]

    add_credits(user, 1, capacity_tier="50")
    body = auth_client.get("/api/billing/capacity-check/?capacity=25").json()
    assert body["allowed"] is True
    assert body["currentTier"] == "50"


@pytest.mark.django_db
def test_capacity_check_rejects_bad_capacity(auth_client):
    assert auth_client.get("/api/billing/capacity-check/?capacity=abc").status_code == 400
    assert auth_client.get("/api/billing/capacity-check/?capacity=0").status_code == 400


@pytest.mark.django_db
def test_invoices_without_customer_are_empty(auth_client, gateway):
    assert auth_client.get("/api/billing/invoices/").json() == {"invoices": []}
    gateway.list_invoices.assert_not_called()


@pytest.mark.django_db
def test_invoices_merge_charges(auth_client, user, gateway):
    Subscription.objects.create(user=user, stripe_customer_id="cus_1", stripe_subscription_id="sub_1", status="active")
    gateway.list_invoices.return_value = [
        {
            "id": "in_1",
            "amount_paid": 9900,
            "currency": "usd",
            "status": "paid",
            "created": 1_700_000_000,
            "lines": {"data": [{"description": "Premium (up to 50)"}]},
            "invoice_pdf": "https://stripe.test/in_1.pdf",
            "hosted_invoice_url": "https://stripe.test/in_1",
            "number": "W-0001",
            "payments": {"data": [{"payment": {"type": "payment_intent", "payment_intent": "pi_sub"}}]},
        },
        {
            "id": "in_0",
            "amount_paid": 9900,
            "currency": "usd",
            "status": "paid",
            "created": 1_690_000_000,
            "payments": {"data": [{"payment": {"type": "charge", "charge": {"id": "ch_old"}}}]},
        },
    ]
    gateway.list_charges.return_value = [
        {"id": "ch_sub", "payment_intent": "pi_sub", "paid": True, "amount": 9900, "currency": "usd", "created": 1_700_000_000},
        {"id": "ch_old", "paid": True, "amount": 9900, "currency": "usd", "created": 1_690_000_000},
        {
            "id": "ch_single",
            "paid": True,
            "amount": 4900,
            "currency": "usd",
            "created": 1_700_100_000,
            "receipt_url": "https://stripe.test/receipt",
        },
        {"id": "ch_failed", "paid": False, "amount": 4900, "currency": "usd", "created": 1_700_200_000},
    ]

    invoices = auth_client.get("/api/billing/invoices/").json()["invoices"]

    assert [item["id"] for item in invoices] == ["ch_single", "in_1", "in_0"]
    single, invoice, _ = invoices
    assert single["type"] == "single_event"
    assert single["description"] == "Single event payment"
    assert single["pdfUrl"] == "https://stripe.test/receipt"
    assert invoice["type"] == "subscription"
    assert invoice["amount"] == 9900
    assert invoice["description"] == "Premium (up to 50)"
    assert invoice["number"] == "W-0001"


@pytest.mark.django_db
def test_invoices_for_granted_plan_are_empty(auth_client, staff_client, user, gateway):
    staff_client.post(
        f"/api/billing/admin/users/{user.pk}/subscription/",
        {"capacityTier": "200"},
        content_type="application/json",
    )
    assert auth_client.get("/api/billing/invoices/").json() == {"invoices": []}
    gateway.list_invoices.assert_not_called()


# -- staff ---------------------------------------------------------------------


@pytest.mark.django_db
def test_admin_endpoints_require_staff(auth_client, user):
    assert auth_client.get(f"/api/billing/admin/users/{user.pk}/billing/").status_code == 403
    resp = auth_client.post(
        f"/api/billing/admin/users/{user.pk}/credits/",
        {"amount": 5, "capacityTier": "50"},
        content_type="application/json",
    )
    assert resp.status_code == 403
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_admin_grant_and_revoke_subscription(staff_client, user, gateway):
    url = f"/api/billing/admin/users/{user.pk}/subscription/"
    resp = staff_client.post(url, {"capacityTier": "1000", "periodDays": 30}, content_type="application/json")
    assert resp.status_code == 201
    assert resp.json()["subscription"]["capacityTier"] == "1000"
    sub = Subscription.objects.get(user=user)
    assert sub.is_admin_granted
    assert sub.status == "active"

    resp = staff_client.delete(url)
    assert resp.status_code == 200
    assert resp.json()["hasSubscription"] is False
    gateway.cancel_subscription.assert_not_called()
    assert Subscription.objects.get(user=user).status == "cancelled"


@pytest.mark.django_db
def test_admin_grant_rejects_unknown_tier(staff_client, user):
    resp = staff_client.post(
        f"/api/billing/admin/users/{user.pk}/subscription/",
        {"capacityTier": "75"},
        content_type="application/json",
    )
    assert resp.status_code == 400


@pytest.mark.django_db
def test_admin_revoke_without_subscription(staff_client, user):
    assert staff_client.delete(f"/api/billing/admin/users/{user.pk}/subscription/").status_code == 404


@pytest.mark.django_db
def test_admin_credit_management(staff_client, user):
    resp = staff_client.post(
        f"/api/billing/admin/users/{user.pk}/credits/",
        {"amount": 3, "capacityTier": "500"},
        content_type="application/json",
    )
    assert resp.status_code == 201
    assert resp.json()["credits"] == {"balance": 3, "capacityTier": "500"}

    overview = staff_client.get(f"/api/billing/admin/users/{user.pk}/billing/").json()
    assert overview["userId"] == user.pk
    assert overview["hasSubscription"] is False
    assert overview["credits"]["balance"] == 3

    resp = staff_client.post(f"/api/billing/admin/users/{user.pk}/credits/reset/")
    assert resp.status_code == 200
    assert resp.json()["removed"] == 3
    assert get_balance(user) == 0


@pytest.mark.django_db
def test_admin_unknown_user(staff_client):
    assert staff_client.get("/api/billing/admin/users/424242/billing/").status_code == 404
