import pytest
from app.extensions import db
from app.models import BillingAccount
from app.services import billing as billing_service
from stripe_helpers import subscription

@pytest.fixture()
def fake_stripe(monkeypatch):
    calls = []

    def _checkout(*, price_id, landlord_id, customer_id=None):
        calls.append(("checkout", price_id, landlord_id, customer_id))
        return {"id": "cs_sub_1", "url": "https://stripe.example/cs_sub_1"}

    def _portal(*, stripe_customer_id):
        calls.append(("portal", stripe_customer_id))
        return {"url": "https://stripe.example/portal"}

    def _cancel(*, subscription_id):
        calls.append(("cancel", subscription_id))
        return {"subscriptionId": subscription_id, "status": "active", "cancelAtPeriodEnd": True}

    def _fetch(*, subscription_id=None, customer_id=None):
        calls.append(("fetch", subscription_id, customer_id))
        return subscription(sub_id=subscription_id or "sub_1", customer=customer_id or "cus_1", status="past_due")

    monkeypatch.setattr(billing_service, "create_checkout_session", _checkout)
    monkeypatch.setattr(billing_service, "create_portal_session", _portal)
    monkeypatch.setattr(billing_service, "request_cancel_at_period_end", _cancel)
    monkeypatch.setattr(billing_service, "fetch_subscription", _fetch)
    return calls

def test_checkout_uses_configured_price(client, make_landlord, fake_stripe):
    lid = make_landlord()
    resp = client.post("/billing/checkout", json={"landlordId": lid})
    assert resp.status_code == 200
    assert resp.get_json() == {"sessionId": "cs_sub_1", "url": "https://stripe.example/cs_sub_1"}
    assert fake_stripe == [("checkout", "price_landlord_monthly", lid, None)]

def test_checkout_conflict_when_already_paid(client, make_landlord, fake_stripe):
    lid = make_landlord(status="active_cancel_pending")
    resp = client.post("/billing/checkout", json={"landlordId": lid})
    assert resp.status_code == 409
    assert fake_stripe == []

def test_checkout_requires_landlord(client, fake_stripe):
    assert client.post("/billing/checkout", json={}).status_code == 400
    assert client.post("/billing/checkout", json={"landlordId": 424242}).status_code == 404

def test_cancel_requests_period_end_without_touching_status(app, client, make_landlord, fake_stripe):
    lid = make_landlord(status="active", external_customer_id="cus_1", external_subscription_id="sub_1")
    resp = client.post("/billing/cancel", json={"landlordId": lid})
    assert resp.status_code == 200
    assert resp.get_json()["cancelAtPeriodEnd"] is True
    with app.app_context():
        assert db.session.get(BillingAccount, lid).status == "active"

def test_cancel_without_subscription(client, make_landlord, fake_stripe):
    lid = make_landlord()
    assert client.post("/billing/cancel", json={"landlordId": lid}).status_code == 404

def test_portal(client, make_landlord, fake_stripe):
    lid = make_landlord(external_customer_id="cus_9")
    resp = client.post("/billing/portal", json={"landlordId": lid})
    assert resp.status_code == 200
    assert resp.get_json() == {"url": "https://stripe.example/portal"}
    assert fake_stripe == [("portal", "cus_9")]

def test_status_reads_local_state(client, make_landlord, fake_stripe):
    lid = make_landlord(status="active")
    resp = client.post("/billing/status", json={"landlordId": lid})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["landlordId"] == lid
    assert body["status"] == "active"
    assert fake_stripe == []

def test_status_refresh_pulls_from_provider(client, make_landlord, fake_stripe):
    lid = make_landlord(status="active", external_customer_id="cus_1", external_subscription_id="sub_1")
    resp = client.post("/billing/status", json={"landlordId": lid, "refresh": True})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "past_due"
    assert fake_stripe == [("fetch", "sub_1", "cus_1")]

def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}

def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"
