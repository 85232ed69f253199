import hashlib
import hmac
import json

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from app.extensions import db
from app.models import BillingAccount, BillingEventLog, ConsumptionRecord, CreditLedgerEntry
from stripe_helpers import (
    ESIGN_CALLBACK_TOKEN,
    ESIGN_WEBHOOK_SECRET,
    WEBHOOK_SECRET,
    checkout_session,
    credit_session,
    envelope,
    stripe_signature,
    subscription,
)

def _event_count():
    return db.session.execute(select(func.count(BillingEventLog.id))).scalar_one()

def test_valid_webhook_updates_account(app, post_stripe, make_landlord):
    lid = make_landlord()
    resp = post_stripe(envelope("evt_1", "customer.subscription.updated", subscription(landlord_id=lid)))
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "outcome": "applied"}
    with app.app_context():
        assert db.session.get(BillingAccount, lid).status == "active"

def test_invalid_signature_rejected_without_side_effects(app, client, make_landlord):
    lid = make_landlord()
    body = json.dumps(envelope("evt_bad", "customer.subscription.updated", subscription(landlord_id=lid))).encode()
    resp = client.post("/webhooks/stripe", data=body,
                       headers={"Stripe-Signature": stripe_signature("whsec_wrong", body)})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_signature"
    with app.app_context():
        assert _event_count() == 0
        assert db.session.get(BillingAccount, lid).status == "none"

def test_missing_signature_header_rejected(app, client):
    resp = client.post("/webhooks/stripe", data=b"{}")
    assert resp.status_code == 400
    with app.app_context():
        assert _event_count() == 0

def test_missing_secret_is_server_error(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
    resp = client.post("/webhooks/stripe", data=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert resp.status_code == 500

def test_duplicate_delivery_acknowledged(app, post_stripe, make_landlord):
    lid = make_landlord()
    ev = envelope("evt_dup", "customer.subscription.updated", subscription(landlord_id=lid))
    assert post_stripe(ev).status_code == 200
    resp = post_stripe(ev)
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "duplicate": True}
    with app.app_context():
        assert _event_count() == 1

def test_unmapped_event_acknowledged(app, post_stripe):
    resp = post_stripe(envelope("evt_inv", "invoice.payment_succeeded", {"id": "in_1"}))
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "unmapped"

def test_malformed_envelope_rejected(post_stripe):
    resp = post_stripe({"type": "customer.subscription.updated", "data": {"object": {}}})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "malformed_event"

def test_store_failure_returns_5xx_and_commits_nothing(app, post_stripe, make_landlord, monkeypatch):
    lid = make_landlord()
    from app.billing import reconciler

    def _boom(ev):
        raise OperationalError("UPDATE billing_accounts", {}, Exception("database is locked"))
    monkeypatch.setattr(reconciler, "apply_event", _boom)

    resp = post_stripe(envelope("evt_retry", "customer.subscription.updated", subscription(landlord_id=lid)))
    assert resp.status_code == 500
    assert resp.get_json()["error"] == "transient_store_failure"
    with app.app_context():
        assert _event_count() == 0

    # Provider redelivers once the store is back
    monkeypatch.undo()
    resp = post_stripe(envelope("evt_retry", "customer.subscription.updated", subscription(landlord_id=lid)))
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "applied"

def test_checkout_then_subscription_over_http(app, post_stripe, make_landlord):
    lid = make_landlord()
    assert post_stripe(envelope("evt_co", "checkout.session.completed", checkout_session(landlord_id=lid))).status_code == 200
    assert post_stripe(envelope("evt_up", "customer.subscription.created", subscription())).status_code == 200
    with app.app_context():
        acct = db.session.get(BillingAccount, lid)
        assert acct.status == "active"
        assert acct.external_customer_id == "cus_1"

def test_customer_conflict_is_acknowledged_not_retried(app, post_stripe, make_landlord):
    make_landlord(external_customer_id="cus_1")
    other = make_landlord()
    resp = post_stripe(envelope("evt_co_conflict", "checkout.session.completed", checkout_session(landlord_id=other)))
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "outcome": "missing_account"}
    # Redelivery is a plain duplicate
    again = post_stripe(envelope("evt_co_conflict", "checkout.session.completed", checkout_session(landlord_id=other)))
    assert again.get_json() == {"ok": True, "duplicate": True}

def test_esign_purchase_webhook_credits_once(app, post_stripe, make_landlord):
    lid = make_landlord()
    ev = envelope("evt_buy", "checkout.session.completed", credit_session(landlord_id=lid, signatures=3))
    resp = post_stripe(ev, path="/webhooks/stripe/esign", secret=ESIGN_WEBHOOK_SECRET)
    assert resp.status_code == 200
    assert resp.get_json()["outcome"] == "applied"

    # Same checkout session replayed under a different event id
    replay = envelope("evt_buy_again", "checkout.session.completed", credit_session(landlord_id=lid, signatures=3))
    resp = post_stripe(replay, path="/webhooks/stripe/esign", secret=ESIGN_WEBHOOK_SECRET)
    assert resp.get_json()["outcome"] == "ignored"

    with app.app_context():
        total = db.session.execute(
            select(func.sum(CreditLedgerEntry.units_purchased)).where(CreditLedgerEntry.landlord_id == lid)
        ).scalar_one()
        assert total == 3

def test_esign_endpoint_rejects_subscription_secret(post_stripe, make_landlord):
    lid = make_landlord()
    ev = envelope("evt_buy", "checkout.session.completed", credit_session(landlord_id=lid))
    resp = post_stripe(ev, path="/webhooks/stripe/esign", secret=WEBHOOK_SECRET)
    assert resp.status_code == 400

def _esign_callback(client, payload: dict, token: str = ESIGN_CALLBACK_TOKEN):
    body = json.dumps(payload).encode("utf-8")
    sig = hmac.new(token.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return client.post("/webhooks/esign", data=body, headers={"X-HelloSign-Signature": sig})

def test_esign_callback_updates_signing_status(app, client, make_landlord):
    lid = make_landlord()
    with app.app_context():
        db.session.add(ConsumptionRecord(landlord_id=lid, status="sent", provider_request_id="sr_123"))
        db.session.commit()

    resp = _esign_callback(client, {
        "event": {"event_type": "signature_request_all_signed"},
        "signature_request": {"signature_request_id": "sr_123"},
    })
    assert resp.status_code == 200
    with app.app_context():
        rec = db.session.execute(
            select(ConsumptionRecord).where(ConsumptionRecord.provider_request_id == "sr_123")
        ).scalar_one()
        assert rec.signing_status == "completed"
        # Accounting untouched
        assert rec.status == "sent"

def test_esign_callback_bad_signature(client):
    resp = _esign_callback(client, {"event": {"event_type": "signature_request_signed"}}, token="wrong")
    assert resp.status_code == 400

def test_esign_callback_unknown_request_acknowledged(client):
    resp = _esign_callback(client, {
        "event": {"event_type": "signature_request_declined"},
        "signature_request": {"signature_request_id": "sr_missing"},
    })
    assert resp.status_code == 200
