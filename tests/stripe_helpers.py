import hashlib
import hmac
import time

WEBHOOK_SECRET = "whsec_test_subscriptions"
ESIGN_WEBHOOK_SECRET = "whsec_test_esign"
ESIGN_CALLBACK_TOKEN = "esign_callback_token"

def stripe_signature(secret: str, body: bytes, timestamp: int | None = None) -> str:
    # Stripe signs "<t>.<raw body>" with HMAC-SHA256
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"

def envelope(event_id: str, event_type: str, obj: dict, created: int | None = None) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }

def subscription(sub_id="sub_1", customer="cus_1", status="active", cancel_at_period_end=False,
                 period_end=None, landlord_id=None):
    obj = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": {"landlord_id": str(landlord_id)} if landlord_id else {},
        "items": {"data": []},
    }
    if period_end is not None:
        obj["current_period_end"] = period_end
    return obj

def checkout_session(session_id="cs_1", customer="cus_1", subscription_id="sub_1", landlord_id=None):
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "subscription",
        "customer": customer,
        "subscription": subscription_id,
        "payment_status": "paid",
        "metadata": {"landlord_id": str(landlord_id)} if landlord_id else {},
    }

def credit_session(session_id="cs_credit_1", landlord_id=1, signatures=3, amount_total=900, paid=True):
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "customer": None,
        "subscription": None,
        "payment_status": "paid" if paid else "unpaid",
        "amount_total": amount_total,
        "metadata": {"type": "esign_purchase", "landlord_id": str(landlord_id), "signatures": str(signatures)},
    }
