"""
Event credit ledger.

Credits are never edited in place: every change appends a
``CreditTransaction`` and the organizer's ``CreditAccount`` caches the
running balance.  Appends run inside ``transaction.atomic()`` holding a
row lock on the account so concurrent purchases and consumptions for one
organizer are serialized and the cached balance cannot lose an update.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction

from .exceptions import InvalidInput
from .models import CreditAccount, CreditTransaction
from .tiers import DEFAULT_TIER_KEY

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class CreditSummary:
    balance: int
    capacity_tier: str


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise InvalidInput("Credit amount must be a positive integer.")


def _locked_account(user) -> CreditAccount:
    account, _ = CreditAccount.objects.select_for_update().get_or_create(user=user)
    return account


def _append(
    account: CreditAccount, tx_type: str, amount: int, capacity_tier: str, update_tier: bool = True, **fields
) -> CreditTransaction:
    account.balance += amount
    if update_tier:
        account.capacity_tier = capacity_tier
    account.save(update_fields=["balance", "capacity_tier", "updated_at"])
    return CreditTransaction.objects.create(
        user_id=account.user_id,
        type=tx_type,
        amount=amount,
        capacity_tier=capacity_tier,
        **fields,
    )


def get_credits(user) -> CreditSummary:
    account = CreditAccount.objects.filter(user=user).first()
    if account is None:
        return CreditSummary(balance=0, capacity_tier=DEFAULT_TIER_KEY)
    return CreditSummary(balance=account.balance, capacity_tier=account.capacity_tier or DEFAULT_TIER_KEY)


def get_balance(user) -> int:
    return get_credits(user).balance


def get_credit_transactions(user, limit: int | None = DEFAULT_HISTORY_LIMIT) -> list[CreditTransaction]:
    """Newest-first ledger entries for ``user``."""
    qs = CreditTransaction.objects.filter(user=user).order_by("-created_at", "-id")
    if limit:
        qs = qs[:limit]
    return list(qs)


def add_credits(
    user,
    amount: int,
    *,
    type: str = CreditTransaction.TYPE_PURCHASE,
    capacity_tier: str | None = None,
    stripe_session_id: str = "",
    stripe_customer_id: str = "",
    session_id: str = "",
    description: str = "",
) -> CreditTransaction | None:
    """Append a positive entry and return it.

    A purchase whose Stripe checkout session is already in the ledger is
    a replayed notification: nothing is written and ``None`` is returned.
    """
    _check_amount(amount)
    with transaction.atomic():
        account = _locked_account(user)
        if (
            type == CreditTransaction.TYPE_PURCHASE
            and stripe_session_id
            and CreditTransaction.objects.filter(
                user=user, type=CreditTransaction.TYPE_PURCHASE, stripe_session_id=stripe_session_id
            ).exists()
        ):
            logger.info("Credit purchase for checkout %s already recorded, skipping", stripe_session_id)
            return None
        return _append(
            account,
            type,
            amount,
            capacity_tier or account.capacity_tier,
            stripe_session_id=stripe_session_id or "",
            stripe_customer_id=stripe_customer_id or "",
            session_id=session_id or "",
            description=description,
        )


def deduct_credit(user, amount: int, *, session_id: str = "", description: str = "") -> bool:
    """Consume ``amount`` credits.

    Returns ``False`` and leaves the ledger untouched when the balance is
    too small; the caller decides what an unpaid registration means.
    """
    _check_amount(amount)
    with transaction.atomic():
        account = _locked_account(user)
        if amount > account.balance:
            return False
        _append(
            account,
            CreditTransaction.TYPE_CONSUMED,
            -amount,
            account.capacity_tier,
            session_id=session_id or "",
            description=description,
        )
    return True


def consume_event_credit(user, session_id) -> bool:
    """Use one credit for a networking session's first registration."""
    consumed = deduct_credit(
        user,
        1,
        session_id=str(session_id),
        description="Event credit used for first participant registration",
    )
    if consumed:
        logger.info("Consumed event credit for user %s session %s", user.pk, session_id)
    return consumed


def refund_event_credit(user, session_id) -> bool:
    """Give back the credit consumed by ``session_id``.

    Precondition: the session has no registrations.  The registration
    flow owns that fact and must check it before calling; the ledger
    only verifies that a matching consumption exists and has not been
    refunded yet.
    """
    session_id = str(session_id)
    with transaction.atomic():
        account = _locked_account(user)
        entries = list(
            CreditTransaction.objects.filter(
                user=user,
                session_id=session_id,
                type__in=[CreditTransaction.TYPE_CONSUMED, CreditTransaction.TYPE_REFUND],
            ).order_by("-created_at", "-id")
        )
        consumed = [e for e in entries if e.type == CreditTransaction.TYPE_CONSUMED]
        refunds = len(entries) - len(consumed)
        if not consumed or refunds >= len(consumed):
            return False
        original = consumed[0]
        _append(
            account,
            CreditTransaction.TYPE_REFUND,
            abs(original.amount),
            original.capacity_tier or account.capacity_tier,
            session_id=session_id,
            update_tier=False,
            description="Credit refunded - session deleted with no registrations",
        )
    logger.info("Refunded event credit for user %s session %s", user.pk, session_id)
    return True


def reset_credits(user, description: str = "Credits reset by admin") -> int:
    """Zero the balance with a single consumption entry; returns the amount removed."""
    with transaction.atomic():
        account = _locked_account(user)
        removed = account.balance
        if removed:
            _append(account, CreditTransaction.TYPE_CONSUMED, -removed, account.capacity_tier, description=description)
    return removed
