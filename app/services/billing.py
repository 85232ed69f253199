from typing import Dict, Any, Optional
from urllib.parse import urljoin
from flask import current_app
from stripe import StripeClient
import hashlib, json


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def _as_dict(obj) -> Dict[str, Any]:
    # Stripe objects may need converting to plain dicts
    if obj is None:
        return {}
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def create_checkout_session(*, price_id: str, landlord_id: int, customer_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for the landlord subscription.
    landlord_id rides on both the session and the subscription metadata so
    webhooks can find the landlord even before the customer id is attached.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client()
    meta = {"landlord_id": str(landlord_id)}
    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _absolute_url("landlord/subscription?checkout=success&session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": _absolute_url("landlord/subscription?checkout=cancelled"),
        "allow_promotion_codes": True,
        "metadata": meta,
        "subscription_data": {"metadata": meta},
    }
    if customer_id:
        params["customer"] = customer_id
    # Param-aware idempotency: new key whenever Checkout params change
    idem = make_idempotency_key("subscription", "v1", landlord_id, price_id, _params_hash(params))
    session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    return {"id": session.id, "url": getattr(session, "url", None)}


def create_credit_checkout_session(*, price_id: str, landlord_id: int, quantity: int) -> Dict[str, Any]:
    """One-off payment for ``quantity`` e-sign credits (price is per signature)."""
    client = _client()
    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": [{"price": price_id, "quantity": quantity}],
        "success_url": _absolute_url("landlord/documents?esign=success"),
        "cancel_url": _absolute_url("landlord/documents?esign=cancelled"),
        "metadata": {
            "type": "esign_purchase",
            "landlord_id": str(landlord_id),
            "signatures": str(quantity),
        },
    }
    session = client.checkout.sessions.create(params=params)
    return {"id": session.id, "url": getattr(session, "url", None)}


def create_portal_session(*, stripe_customer_id: str) -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for an existing Customer."""
    client = _client()
    params = {
        "customer": stripe_customer_id,
        "return_url": _absolute_url("landlord/subscription"),
    }
    session = client.billing_portal.sessions.create(params)
    return {"url": session.url}


def request_cancel_at_period_end(*, subscription_id: str) -> Dict[str, Any]:
    """
    Ask Stripe to cancel at period end. Local status is NOT touched here;
    customer.subscription.updated will carry the change back.
    """
    client = _client()
    sub = _as_dict(client.subscriptions.update(subscription_id, params={"cancel_at_period_end": True}))
    return {
        "subscriptionId": sub.get("id"),
        "status": sub.get("status"),
        "cancelAtPeriodEnd": bool(sub.get("cancel_at_period_end")),
    }


def fetch_subscription(*, subscription_id: Optional[str] = None, customer_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Retrieve by id, or the customer's most recent subscription. None if there is none."""
    client = _client()
    if subscription_id:
        return _as_dict(client.subscriptions.retrieve(subscription_id))
    if not customer_id:
        return None
    subs = client.subscriptions.list(params={"customer": customer_id, "status": "all", "limit": 1})
    data = getattr(subs, "data", None) or []
    return _as_dict(data[0]) if data else None
