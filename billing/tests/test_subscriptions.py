"""
Tests for the subscription record lifecycle.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from billing.exceptions import NotFound, UpstreamUnavailable
from billing.gate import authorize
from billing.models import Subscription
from billing.stripe_gateway import ProviderSubscription
from billing.subscriptions import (
    activate_from_checkout,
    describe_subscription,
    grant_subscription,
    has_access,
    mark_cancelled,
    mark_past_due,
    mirror_provider_state,
    normalize_status,
    refresh_from_provider,
    request_cancellation,
    revoke_subscription,
    update_subscription,
)


@pytest.fixture
def stripe_subscription(user):
    return activate_from_checkout(user, customer_ref="cus_1", subscription_ref="sub_1", tier_key="200")


@pytest.mark.django_db
def test_checkout_activation_creates_active_record(user):
    sub = activate_from_checkout(user, customer_ref="cus_1", subscription_ref="sub_1", tier_key="500")
    assert sub.status == Subscription.STATUS_ACTIVE
    assert sub.capacity_tier == "500"
    assert sub.stripe_customer_id == "cus_1"
    assert not sub.cancel_at_period_end


@pytest.mark.django_db
def test_activation_overwrites_previous_subscription(user, stripe_subscription):
    sub = activate_from_checkout(user, customer_ref="cus_1", subscription_ref="sub_2", tier_key="1000")
    assert Subscription.objects.filter(user=user).count() == 1
    assert sub.stripe_subscription_id == "sub_2"
    assert sub.capacity_tier == "1000"


@pytest.mark.django_db
def test_activation_keeps_known_period_end_for_same_subscription(user, stripe_subscription):
    period_end = timezone.now() + timedelta(days=30)
    mirror_provider_state(stripe_subscription, status="active", cancel_at_period_end=False, current_period_end=period_end)

    sub = activate_from_checkout(user, customer_ref="cus_1", subscription_ref="sub_1", tier_key="200")
    assert sub.current_period_end == period_end


@pytest.mark.django_db
def test_provider_state_is_mirrored(stripe_subscription):
    period_end = timezone.now() + timedelta(days=5)
    assert mirror_provider_state(
        stripe_subscription,
        status="canceled",
        cancel_at_period_end=True,
        current_period_end=period_end,
        tier_key="500",
    )
    stripe_subscription.refresh_from_db()
    assert stripe_subscription.status == Subscription.STATUS_CANCELLED
    assert stripe_subscription.cancel_at_period_end
    assert stripe_subscription.current_period_end == period_end
    assert stripe_subscription.capacity_tier == "500"


@pytest.mark.django_db
def test_admin_granted_record_ignores_provider_events(user):
    sub = grant_subscription(user, "1000")
    assert not mirror_provider_state(sub, status="past_due", cancel_at_period_end=True, current_period_end=None)
    assert not mark_cancelled(sub)
    assert not mark_past_due(sub)
    sub.refresh_from_db()
    assert sub.status == Subscription.STATUS_ACTIVE
    assert not sub.cancel_at_period_end


@pytest.mark.django_db
def test_deletion_cancels_and_clears_flag(stripe_subscription):
    stripe_subscription.cancel_at_period_end = True
    stripe_subscription.save()
    assert mark_cancelled(stripe_subscription)
    stripe_subscription.refresh_from_db()
    assert stripe_subscription.status == Subscription.STATUS_CANCELLED
    assert not stripe_subscription.cancel_at_period_end


@pytest.mark.django_db
def test_past_due_only_from_active_or_trialing(stripe_subscription):
    assert mark_past_due(stripe_subscription)
    assert stripe_subscription.status == Subscription.STATUS_PAST_DUE

    mark_cancelled(stripe_subscription)
    assert not mark_past_due(stripe_subscription)
    assert stripe_subscription.status == Subscription.STATUS_CANCELLED


def test_normalize_status():
    assert normalize_status("canceled") == "cancelled"
    assert normalize_status("active") == "active"


@pytest.mark.django_db
def test_has_access_rules(stripe_subscription):
    now = timezone.now()
    assert has_access(stripe_subscription, now)
    assert not has_access(None, now)

    stripe_subscription.status = Subscription.STATUS_PAST_DUE
    assert not has_access(stripe_subscription, now)

    stripe_subscription.status = Subscription.STATUS_CANCELLED
    stripe_subscription.current_period_end = now + timedelta(hours=1)
    assert has_access(stripe_subscription, now)
    stripe_subscription.current_period_end = now - timedelta(hours=1)
    assert not has_access(stripe_subscription, now)


@pytest.mark.django_db
def test_update_subscription_changes_only_given_fields(user, other_user, stripe_subscription):
    sub = update_subscription(user, capacity_tier="500", plan="team")

    assert sub.capacity_tier == "500"
    stored = Subscription.objects.get(user=user)
    assert (stored.capacity_tier, stored.plan, stored.status) == ("500", "team", Subscription.STATUS_ACTIVE)
    assert stored.stripe_subscription_id == "sub_1"
    assert update_subscription(other_user, plan="team") is None
    assert not Subscription.objects.filter(user=other_user).exists()


@pytest.mark.django_db
def test_cancellation_request_keeps_access_until_period_end(user, stripe_subscription, gateway):
    stripe_subscription.current_period_end = timezone.now() + timedelta(days=10)
    stripe_subscription.save()

    sub = request_cancellation(user, gateway)

    gateway.set_cancel_at_period_end.assert_called_once_with("sub_1", True)
    assert sub.cancel_at_period_end
    assert sub.status == Subscription.STATUS_ACTIVE
    assert authorize(user, 150).allowed


@pytest.mark.django_db
def test_cancellation_of_granted_plan_skips_stripe(user, gateway):
    grant_subscription(user, "200")
    sub = request_cancellation(user, gateway)
    gateway.set_cancel_at_period_end.assert_not_called()
    assert sub.cancel_at_period_end
    assert sub.status == Subscription.STATUS_ACTIVE


@pytest.mark.django_db
def test_cancellation_without_subscription_is_not_found(user, gateway):
    with pytest.raises(NotFound):
        request_cancellation(user, gateway)


@pytest.mark.django_db
def test_cancellation_surfaces_stripe_failure(user, stripe_subscription, gateway):
    gateway.set_cancel_at_period_end.side_effect = UpstreamUnavailable("timeout")
    with pytest.raises(UpstreamUnavailable):
        request_cancellation(user, gateway)
    stripe_subscription.refresh_from_db()
    assert not stripe_subscription.cancel_at_period_end


@pytest.mark.django_db
def test_refresh_copies_remote_state(stripe_subscription, gateway):
    period_end = timezone.now() + timedelta(days=20)
    gateway.retrieve_subscription.side_effect = None
    gateway.retrieve_subscription.return_value = ProviderSubscription(
        id="sub_1", status="past_due", cancel_at_period_end=False, current_period_end=period_end
    )

    sub = refresh_from_provider(stripe_subscription, gateway)
    assert sub.status == Subscription.STATUS_PAST_DUE
    assert sub.current_period_end == period_end


@pytest.mark.django_db
def test_refresh_falls_back_to_local_state(stripe_subscription, gateway):
    sub = refresh_from_provider(stripe_subscription, gateway)
    assert sub.status == Subscription.STATUS_ACTIVE


@pytest.mark.django_db
def test_refresh_skips_granted_plans(user, gateway):
    sub = grant_subscription(user, "200")
    refresh_from_provider(sub, gateway)
    gateway.retrieve_subscription.assert_not_called()


@pytest.mark.django_db
def test_grant_and_revoke(user, gateway):
    sub = grant_subscription(user, "500", plan="partner", period_days=30)
    assert sub.is_admin_granted
    assert sub.stripe_subscription_id == f"admin_{user.pk}"
    assert sub.plan == "partner"
    assert sub.current_period_end > timezone.now()

    sub = revoke_subscription(user, gateway)
    gateway.cancel_subscription.assert_not_called()
    assert sub.status == Subscription.STATUS_CANCELLED


@pytest.mark.django_db
def test_revoke_real_subscription_cancels_at_stripe(user, stripe_subscription, gateway):
    sub = revoke_subscription(user, gateway)
    gateway.cancel_subscription.assert_called_once_with("sub_1")
    # the deletion webhook performs the local transition
    assert sub.status == Subscription.STATUS_ACTIVE


@pytest.mark.django_db
def test_describe_subscription(user, stripe_subscription):
    assert describe_subscription(None) == {"hasSubscription": False}

    payload = describe_subscription(stripe_subscription)
    assert payload["hasSubscription"] is True
    assert payload["subscription"]["capacityTier"] == "200"
    assert payload["subscription"]["stripeSubscriptionId"] == "sub_1"

    mark_past_due(stripe_subscription)
    assert describe_subscription(stripe_subscription)["hasSubscription"] is True
    mark_cancelled(stripe_subscription)
    assert describe_subscription(stripe_subscription)["hasSubscription"] is False
