"""
Error taxonomy for the billing app.

HTTP-facing failures are DRF ``APIException`` subclasses so views and
services can raise them and let DRF render ``{"detail": ...}`` with the
right status code.  ``InsufficientBalance`` is a pure domain error: the
ledger reports insufficient funds through a boolean result and only
callers that prefer raising use it.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidInput(APIException):
    """Bad capacity, unknown tier or malformed body."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "invalid_input"


class InvalidPayload(InvalidInput):
    """Webhook body that cannot be parsed into a provider event."""

    default_detail = "Invalid webhook payload."
    default_code = "invalid_payload"


class SignatureInvalid(APIException):
    """Webhook signature did not verify against the shared secret."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid signature."
    default_code = "signature_invalid"


class NotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class UpstreamUnavailable(APIException):
    """The payment provider failed, timed out or is not configured."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment provider is unavailable, please try again later."
    default_code = "upstream_unavailable"


class InsufficientBalance(Exception):
    def __init__(self, requested: int, balance: int):
        super().__init__(f"Requested {requested} credit(s) but only {balance} available")
        self.requested = requested
        self.balance = balance
