"""
Billing history shown to organizers.

Subscription payments come from Stripe invoices; single-event
purchases are plain charges.  A subscription invoice also produces a
charge, so charges already referenced by an invoice are skipped.
"""
from __future__ import annotations

from .models import ADMIN_GRANTED_CUSTOMER, Subscription
from .stripe_gateway import from_timestamp, stripe_value


def _iso(timestamp) -> str | None:
    when = from_timestamp(timestamp)
    return when.isoformat() if when else None


def _invoice_item(inv) -> dict:
    lines = stripe_value(stripe_value(inv, "lines"), "data") or []
    description = stripe_value(lines[0], "description") if lines else None
    return {
        "id": stripe_value(inv, "id"),
        "type": "subscription",
        "amount": stripe_value(inv, "amount_paid", 0),
        "currency": stripe_value(inv, "currency"),
        "status": stripe_value(inv, "status"),
        "date": _iso(stripe_value(inv, "created")),
        "description": description or "Subscription payment",
        "pdfUrl": stripe_value(inv, "invoice_pdf"),
        "hostedUrl": stripe_value(inv, "hosted_invoice_url"),
        "number": stripe_value(inv, "number"),
    }


def _charge_item(charge) -> dict:
    receipt_url = stripe_value(charge, "receipt_url")
    return {
        "id": stripe_value(charge, "id"),
        "type": "single_event",
        "amount": stripe_value(charge, "amount", 0),
        "currency": stripe_value(charge, "currency"),
        "status": "paid",
        "date": _iso(stripe_value(charge, "created")),
        "description": stripe_value(charge, "description") or "Single event payment",
        "pdfUrl": receipt_url,
        "hostedUrl": receipt_url,
        "number": None,
    }


def _object_id(value):
    # expandable fields arrive either as an id or as the full object
    if isinstance(value, str) or value is None:
        return value
    return stripe_value(value, "id")


def _invoice_payment_refs(inv) -> set:
    """Payment intents and charges that settled ``inv``."""
    refs = set()
    for invoice_payment in stripe_value(stripe_value(inv, "payments"), "data") or []:
        payment = stripe_value(invoice_payment, "payment")
        refs.add(_object_id(stripe_value(payment, "payment_intent")))
        refs.add(_object_id(stripe_value(payment, "charge")))
    return refs - {None}


def _is_invoiced(charge, refs: set) -> bool:
    return (
        stripe_value(charge, "id") in refs
        or _object_id(stripe_value(charge, "payment_intent")) in refs
    )


def collect_invoices(subscription: Subscription | None, gateway) -> list[dict]:
    """Invoices and one-time charges for the organizer, newest first."""
    customer_id = subscription.stripe_customer_id if subscription else ""
    if not customer_id or customer_id == ADMIN_GRANTED_CUSTOMER:
        return []

    invoices = gateway.list_invoices(customer_id)
    charges = gateway.list_charges(customer_id)

    invoiced = set()
    for inv in invoices:
        invoiced |= _invoice_payment_refs(inv)
    items = [_invoice_item(inv) for inv in invoices]
    items += [
        _charge_item(ch)
        for ch in charges
        if stripe_value(ch, "paid", False) and not _is_invoiced(ch, invoiced)
    ]
    # ISO-8601 UTC strings sort chronologically
    items.sort(key=lambda item: item["date"] or "", reverse=True)
    return items
