from datetime import datetime, timezone

import pytest
from app.billing.errors import UnmappedEvent
from app.billing.events import (
    CheckoutCompleted,
    CreditsPurchased,
    SubscriptionRemoved,
    SubscriptionUpserted,
    map_status,
    normalize,
    subscription_period_end,
)
from stripe_helpers import checkout_session, credit_session, envelope, subscription

PERIOD_END = 1893456000  # 2030-01-01T00:00:00Z

@pytest.mark.parametrize("raw, expected", [
    ("active", "active"),
    ("trialing", "trialing"),
    ("past_due", "past_due"),
    ("canceled", "canceled"),
    ("unpaid", "canceled"),
    ("incomplete_expired", "canceled"),
    ("incomplete", "none"),
    ("paused", "past_due"),
    ("something_new", "none"),
    (None, "none"),
])
def test_map_status(raw, expected):
    assert map_status(raw) == expected

def test_subscription_updated_normalizes_to_upsert():
    ev = normalize(envelope("evt_1", "customer.subscription.updated",
                            subscription(period_end=PERIOD_END, landlord_id=7)))
    assert isinstance(ev, SubscriptionUpserted)
    assert ev.subscription_id == "sub_1"
    assert ev.customer_id == "cus_1"
    assert ev.landlord_id == 7
    assert ev.period_end == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert ev.effective_status == "active"
    assert ev.object_id == "sub_1"

def test_cancel_at_period_end_maps_to_cancel_pending():
    ev = normalize(envelope("evt_2", "customer.subscription.updated",
                            subscription(cancel_at_period_end=True)))
    assert ev.effective_status == "active_cancel_pending"

def test_period_end_read_from_items_when_missing_on_subscription():
    sub = subscription()
    sub["items"]["data"] = [{"current_period_end": PERIOD_END - 10}, {"current_period_end": PERIOD_END}]
    assert subscription_period_end(sub) == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert subscription_period_end(subscription()) is None

def test_subscription_deleted_normalizes_to_removed():
    ev = normalize(envelope("evt_3", "customer.subscription.deleted", subscription(status="canceled")))
    assert isinstance(ev, SubscriptionRemoved)
    assert ev.subscription_id == "sub_1"

def test_checkout_completed_normalizes_with_landlord_metadata():
    ev = normalize(envelope("evt_4", "checkout.session.completed", checkout_session(landlord_id=3)))
    assert isinstance(ev, CheckoutCompleted)
    assert (ev.customer_id, ev.subscription_id, ev.landlord_id) == ("cus_1", "sub_1", 3)

def test_credit_purchase_checkout_normalizes_to_credits_purchased():
    ev = normalize(envelope("evt_5", "checkout.session.completed", credit_session(landlord_id=4, signatures=5)))
    assert isinstance(ev, CreditsPurchased)
    assert ev.landlord_id == 4
    assert ev.units == 5
    assert ev.checkout_session_id == "cs_credit_1"
    assert ev.amount_cents == 900

def test_unpaid_credit_purchase_is_unmapped():
    with pytest.raises(UnmappedEvent):
        normalize(envelope("evt_6", "checkout.session.completed", credit_session(paid=False)))

def test_unknown_event_type_is_unmapped():
    with pytest.raises(UnmappedEvent):
        normalize(envelope("evt_7", "invoice.paid", {"id": "in_1"}))

def test_checkout_without_subscription_is_unmapped():
    with pytest.raises(UnmappedEvent):
        normalize(envelope("evt_8", "checkout.session.completed", checkout_session(subscription_id=None)))
