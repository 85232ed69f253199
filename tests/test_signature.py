import json
import time

import pytest
from app.billing.errors import InvalidSignature
from app.billing.signature import verify_webhook
from stripe_helpers import WEBHOOK_SECRET, envelope, stripe_signature

def _body(event_id="evt_sig_1"):
    return json.dumps(envelope(event_id, "customer.subscription.updated", {"id": "sub_1"})).encode("utf-8")

def test_valid_signature_returns_envelope():
    body = _body()
    parsed = verify_webhook(body, stripe_signature(WEBHOOK_SECRET, body), WEBHOOK_SECRET)
    assert parsed["id"] == "evt_sig_1"
    assert parsed["type"] == "customer.subscription.updated"

def test_wrong_secret_rejected():
    body = _body()
    with pytest.raises(InvalidSignature):
        verify_webhook(body, stripe_signature("whsec_other", body), WEBHOOK_SECRET)

def test_tampered_body_rejected():
    body = _body()
    header = stripe_signature(WEBHOOK_SECRET, body)
    tampered = body.replace(b"sub_1", b"sub_2")
    with pytest.raises(InvalidSignature):
        verify_webhook(tampered, header, WEBHOOK_SECRET)

def test_stale_timestamp_rejected_as_replay():
    body = _body()
    old = int(time.time()) - 3600
    with pytest.raises(InvalidSignature):
        verify_webhook(body, stripe_signature(WEBHOOK_SECRET, body, timestamp=old), WEBHOOK_SECRET, tolerance=300)

@pytest.mark.parametrize("header", ["", "garbage", "t=123"])
def test_missing_or_malformed_header_rejected(header):
    with pytest.raises(InvalidSignature):
        verify_webhook(_body(), header, WEBHOOK_SECRET)

def test_missing_secret_rejected():
    body = _body()
    with pytest.raises(InvalidSignature):
        verify_webhook(body, stripe_signature(WEBHOOK_SECRET, body), "")

def test_signed_non_object_payload_rejected():
    body = b"[1, 2, 3]"
    with pytest.raises(InvalidSignature):
        verify_webhook(body, stripe_signature(WEBHOOK_SECRET, body), WEBHOOK_SECRET)
