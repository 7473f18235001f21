"""Networking sessions app package

Organizers create networking sessions sized by participant capacity;
participants register for published sessions.  Capacity above the free
allowance is authorized by ``billing.gate.authorize`` and, for
organizers paying per event, the first registration uses one event
credit from the billing ledger.
"""
