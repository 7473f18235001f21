"""
Common test fixtures for Django REST Framework API tests.

Provides fixtures for creating an organizer and a staff user and
authenticating clients with JWT tokens.  Stripe is replaced by a mock
gateway for every test; webhook requests are still signed and verified
with the real Stripe signature scheme.
"""
import hashlib
import hmac
import json
import time
import uuid
from unittest.mock import MagicMock

import pytest
from django.apps import apps
from django.conf import settings
from django.contrib.auth.models import User
from django.test import Client

from billing.exceptions import UpstreamUnavailable
from billing.stripe_gateway import StripeGateway

WEBHOOK_URL = "/api/billing/stripe-webhook/"


def _jwt_client(username, password):
    client = Client()
    resp = client.post(
        "/api/token/",
        {"username": username, "password": password},
        content_type="application/json",
    )
    assert resp.status_code == 200
    client.defaults["HTTP_AUTHORIZATION"] = f"Bearer {resp.json()['access']}"
    return client


@pytest.fixture
def user(db):
    """Create a test organizer."""
    return User.objects.create_user(username="u1", password="pass12345", email="u1@example.com")


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username="u2", password="pass12345", email="u2@example.com")


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(username="staff", password="pass12345", email="staff@example.com", is_staff=True)


@pytest.fixture
def auth_client(db, user):
    """Client authenticated as ``user`` with a JWT access token."""
    return _jwt_client("u1", "pass12345")


@pytest.fixture
def staff_client(db, staff_user):
    return _jwt_client("staff", "pass12345")


@pytest.fixture(autouse=True)
def gateway(monkeypatch):
    """Mock Stripe gateway installed on the billing app config."""
    real = StripeGateway("", settings.STRIPE_WEBHOOK_SECRET)
    mock = MagicMock(spec=StripeGateway)
    mock.verify_webhook.side_effect = real.verify_webhook
    mock.create_customer.return_value = "cus_test"
    mock.create_checkout_session.return_value = ("https://checkout.stripe.test/c/cs_test_1", "cs_test_1")
    mock.retrieve_subscription.side_effect = UpstreamUnavailable("Stripe is not reachable in tests")
    mock.list_invoices.return_value = []
    mock.list_charges.return_value = []
    monkeypatch.setattr(apps.get_app_config("billing"), "gateway", mock)
    return mock


def sign_payload(body: str, secret: str = None, timestamp: int = None) -> str:
    """``Stripe-Signature`` header value for ``body``."""
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_type: str, obj: dict, event_id: str = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture
def post_webhook(db):
    """Post a signed Stripe event to the webhook endpoint."""

    def _post(event: dict, signature: str = None):
        body = json.dumps(event)
        return Client().post(
            WEBHOOK_URL,
            data=body,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=signature if signature is not None else sign_payload(body),
        )

    return _post


@pytest.fixture
def make_event():
    return stripe_event


@pytest.fixture
def signer():
    return sign_payload
