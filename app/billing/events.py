"""
Provider event normalization.

Maps a verified Stripe event envelope onto the handful of internal event types
the reconciler and credit ledger understand. Anything else raises
``UnmappedEvent`` and is acknowledged without processing.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import UnmappedEvent

ESIGN_PURCHASE_TYPE = "esign_purchase"

# Provider subscription vocabulary -> BillingAccount.status
RAW_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "canceled",
    "incomplete_expired": "canceled",
    # Not yet paid for the first time; nothing to entitle
    "incomplete": "none",
    # Collection paused by the provider; recoverable like past_due
    "paused": "past_due",
}

SUBSCRIPTION_UPSERT_TYPES = ("customer.subscription.created", "customer.subscription.updated")
SUBSCRIPTION_REMOVED_TYPES = ("customer.subscription.deleted",)
CHECKOUT_COMPLETED_TYPES = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


@dataclass(frozen=True)
class NormalizedEvent:
    event_id: str
    occurred_at: Optional[datetime]

    @property
    def object_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class CheckoutCompleted(NormalizedEvent):
    customer_id: str
    subscription_id: str
    landlord_id: Optional[int] = None

    @property
    def object_id(self):
        return self.customer_id


@dataclass(frozen=True)
class SubscriptionUpserted(NormalizedEvent):
    subscription_id: str
    customer_id: Optional[str]
    raw_status: str
    cancel_at_period_end: bool = False
    period_end: Optional[datetime] = None
    landlord_id: Optional[int] = None

    @property
    def object_id(self):
        return self.subscription_id

    @property
    def effective_status(self) -> str:
        if self.cancel_at_period_end:
            return "active_cancel_pending"
        return map_status(self.raw_status)


@dataclass(frozen=True)
class SubscriptionRemoved(NormalizedEvent):
    subscription_id: str
    customer_id: Optional[str] = None
    landlord_id: Optional[int] = None

    @property
    def object_id(self):
        return self.subscription_id


@dataclass(frozen=True)
class CreditsPurchased(NormalizedEvent):
    landlord_id: int
    units: int
    checkout_session_id: str
    amount_cents: Optional[int] = None

    @property
    def object_id(self):
        return self.checkout_session_id


def map_status(raw_status: Optional[str]) -> str:
    return RAW_STATUS_MAP.get((raw_status or "").lower(), "none")


def from_unix(ts) -> Optional[datetime]:
    if ts is None or isinstance(ts, bool):
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _id_of(value) -> Optional[str]:
    # Stripe fields may be an id string or an expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def subscription_period_end(sub: Dict[str, Any]) -> Optional[datetime]:
    """
    ``current_period_end`` lives on the subscription in older API versions and
    on each subscription item in newer ones; take whichever is present.
    """
    top = from_unix(sub.get("current_period_end"))
    if top:
        return top
    items = (sub.get("items") or {}).get("data") or []
    ends = [from_unix(i.get("current_period_end")) for i in items if isinstance(i, dict)]
    ends = [e for e in ends if e]
    return max(ends) if ends else None


def subscription_event(event_id: str, occurred_at: Optional[datetime], sub: Dict[str, Any]) -> SubscriptionUpserted:
    """Build a SubscriptionUpserted from a provider subscription object."""
    sub_id = sub.get("id")
    if not sub_id:
        raise UnmappedEvent("Subscription object has no id.")
    return SubscriptionUpserted(
        event_id=event_id,
        occurred_at=occurred_at,
        subscription_id=sub_id,
        customer_id=_id_of(sub.get("customer")),
        raw_status=(sub.get("status") or ""),
        cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
        period_end=subscription_period_end(sub),
        landlord_id=_int_or_none((sub.get("metadata") or {}).get("landlord_id")),
    )


def _checkout_event(event_id, occurred_at, session: Dict[str, Any]) -> NormalizedEvent:
    meta = session.get("metadata") or {}

    if meta.get("type") == ESIGN_PURCHASE_TYPE:
        landlord_id = _int_or_none(meta.get("landlord_id"))
        units = _int_or_none(meta.get("signatures")) or 0
        if not landlord_id or units <= 0:
            raise UnmappedEvent("E-sign purchase is missing landlord_id or signatures metadata.")
        if session.get("payment_status") != "paid":
            raise UnmappedEvent("E-sign purchase checkout is not paid yet.")
        return CreditsPurchased(
            event_id=event_id,
            occurred_at=occurred_at,
            landlord_id=landlord_id,
            units=units,
            checkout_session_id=session.get("id"),
            amount_cents=_int_or_none(session.get("amount_total")),
        )

    customer_id = _id_of(session.get("customer"))
    subscription_id = _id_of(session.get("subscription"))
    if not customer_id or not subscription_id:
        raise UnmappedEvent("Checkout session carries no customer/subscription.")
    return CheckoutCompleted(
        event_id=event_id,
        occurred_at=occurred_at,
        customer_id=customer_id,
        subscription_id=subscription_id,
        landlord_id=_int_or_none(meta.get("landlord_id")),
    )


def normalize(envelope: Dict[str, Any]) -> NormalizedEvent:
    """
    Translate a provider envelope into an internal event.
    Raises UnmappedEvent for types (or shapes) this system does not act on.
    """
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not event_id or not event_type:
        raise UnmappedEvent("Envelope is missing id or type.")

    occurred_at = from_unix(envelope.get("created"))
    obj = (envelope.get("data") or {}).get("object") or {}

    if event_type in CHECKOUT_COMPLETED_TYPES:
        return _checkout_event(event_id, occurred_at, obj)

    if event_type in SUBSCRIPTION_UPSERT_TYPES:
        return subscription_event(event_id, occurred_at, obj)

    if event_type in SUBSCRIPTION_REMOVED_TYPES:
        sub_id = obj.get("id")
        if not sub_id:
            raise UnmappedEvent("Subscription object has no id.")
        return SubscriptionRemoved(
            event_id=event_id,
            occurred_at=occurred_at,
            subscription_id=sub_id,
            customer_id=_id_of(obj.get("customer")),
            landlord_id=_int_or_none((obj.get("metadata") or {}).get("landlord_id")),
        )

    raise UnmappedEvent(f"Unhandled event type: {event_type}")
