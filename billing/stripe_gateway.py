"""
Thin wrapper around the Stripe SDK.

``StripeGateway`` owns a single ``stripe.StripeClient`` configured with a
bounded timeout.  One gateway is built per process by
``BillingConfig.ready()`` (see ``billing.apps.get_gateway``) and passed
explicitly to the services that talk to Stripe, which keeps the client
out of module globals and lets tests hand in a mock.

Every SDK failure is translated to ``UpstreamUnavailable`` so callers
deal with one error type regardless of whether Stripe timed out,
rejected the request or is not configured at all.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

import stripe
from django.conf import settings

from .exceptions import SignatureInvalid, UpstreamUnavailable

logger = logging.getLogger(__name__)


def stripe_value(obj, name, default=None):
    """Read ``name`` from a Stripe object or a plain dict."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def from_timestamp(value) -> dt.datetime | None:
    if not value:
        return None
    return dt.datetime.fromtimestamp(int(value), tz=dt.timezone.utc)


@dataclass
class ProviderSubscription:
    id: str
    status: str
    cancel_at_period_end: bool
    current_period_end: dt.datetime | None
    metadata: dict = field(default_factory=dict)


def subscription_period_end(sub) -> dt.datetime | None:
    """Period end of a subscription payload.

    Newer API versions moved ``current_period_end`` onto the subscription
    items, so fall back to the first item when the top-level field is gone.
    """
    period_end = stripe_value(sub, "current_period_end")
    if not period_end:
        items = stripe_value(stripe_value(sub, "items"), "data") or []
        if items:
            period_end = stripe_value(items[0], "current_period_end")
    return from_timestamp(period_end)


def to_provider_subscription(sub) -> ProviderSubscription:
    metadata = stripe_value(sub, "metadata") or {}
    return ProviderSubscription(
        id=stripe_value(sub, "id", ""),
        status=stripe_value(sub, "status", ""),
        cancel_at_period_end=bool(stripe_value(sub, "cancel_at_period_end", False)),
        current_period_end=subscription_period_end(sub),
        metadata=dict(metadata),
    )


class StripeGateway:
    """Stripe operations used by the billing app."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        *,
        timeout: int = 10,
        max_network_retries: int = 1,
        webhook_tolerance: int = 300,
    ):
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self._client = None
        if api_key:
            self._client = stripe.StripeClient(
                api_key,
                max_network_retries=max_network_retries,
                http_client=stripe.RequestsClient(timeout=timeout),
            )

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            settings.STRIPE_SECRET_KEY,
            settings.STRIPE_WEBHOOK_SECRET,
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
            max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
            webhook_tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )

    @property
    def client(self):
        if self._client is None:
            raise UpstreamUnavailable("STRIPE_SECRET_KEY is not configured")
        return self._client

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", action, exc)
            raise UpstreamUnavailable(getattr(exc, "user_message", None) or str(exc)) from exc

    # -- customers / checkout -------------------------------------------

    def create_customer(self, *, email: str, metadata: dict) -> str:
        params = {"metadata": metadata}
        if email:
            params["email"] = email
        customer = self._call("customer create", self.client.v1.customers.create, params=params)
        return customer.id

    def create_checkout_session(self, params: dict):
        """Create a Checkout Session; returns ``(url, session_id)``."""
        session = self._call("checkout session create", self.client.v1.checkout.sessions.create, params=params)
        return session.url, session.id

    # -- subscriptions ---------------------------------------------------

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        sub = self._call("subscription retrieve", self.client.v1.subscriptions.retrieve, subscription_id)
        return to_provider_subscription(sub)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool = True) -> ProviderSubscription:
        sub = self._call(
            "subscription update",
            self.client.v1.subscriptions.update,
            subscription_id,
            params={"cancel_at_period_end": cancel},
        )
        return to_provider_subscription(sub)

    def cancel_subscription(self, subscription_id: str) -> ProviderSubscription:
        sub = self._call("subscription cancel", self.client.v1.subscriptions.cancel, subscription_id)
        return to_provider_subscription(sub)

    # -- history ---------------------------------------------------------

    def list_invoices(self, customer_id: str, limit: int = 50) -> list:
        result = self._call(
            "invoice list",
            self.client.v1.invoices.list,
            params={"customer": customer_id, "limit": limit, "expand": ["data.payments"]},
        )
        return list(result.data)

    def list_charges(self, customer_id: str, limit: int = 50) -> list:
        result = self._call(
            "charge list",
            self.client.v1.charges.list,
            params={"customer": customer_id, "limit": limit},
        )
        return list(result.data)

    # -- webhooks --------------------------------------------------------

    def verify_webhook(self, payload: bytes | str, signature: str | None) -> str:
        """Check the ``Stripe-Signature`` header; returns the body as text."""
        if not signature or not self.webhook_secret:
            raise SignatureInvalid("Missing signature or webhook secret")
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                raise SignatureInvalid("Webhook body is not valid UTF-8")
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, tolerance=self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise SignatureInvalid() from exc
        return payload
