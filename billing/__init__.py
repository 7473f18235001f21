"""
Billing app package for the Wonderelo backend.

Gates participant capacity behind Stripe subscriptions or one-time event
credits.  It mirrors subscription state pushed by Stripe webhooks, keeps
an append-only credit ledger and answers whether an organizer may run a
session of a given size.  See billing/views.py for the API surface.
"""
