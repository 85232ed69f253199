"""
Subscription reconciler.

Applies normalized provider events to the landlord's ``BillingAccount``.
Every write is a full overwrite of derived fields, so replays and duplicate
deliveries converge on the same row. Delivery order is not trusted; the only
ordering rule is that a known period end is never replaced by a null one
(plus the opt-in stale-event guard, BILLING_REJECT_STALE_EVENTS).
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import BillingAccount, BillingEventLog
from app.models.billing_account import (
    STATUS_ACTIVE,
    STATUS_ACTIVE_CANCEL_PENDING,
    STATUS_CANCELED,
    STATUS_PAST_DUE,
    STATUS_TRIALING,
)
from app.models.billing_event import (
    OUTCOME_APPLIED,
    OUTCOME_IGNORED,
    OUTCOME_MISSING_ACCOUNT,
    OUTCOME_UNMAPPED,
)
from app.observability import log_event
from app.utils.helpers import as_utc, utcnow

from . import ledger
from .errors import MissingAccountMapping, TransientStoreFailure, UnmappedEvent
from .events import (
    CheckoutCompleted,
    CreditsPurchased,
    NormalizedEvent,
    SubscriptionRemoved,
    SubscriptionUpserted,
    normalize,
    subscription_event,
)

# Transitions worth telling the landlord about
NOTIFY_STATUSES = (STATUS_PAST_DUE, STATUS_CANCELED)

# A subscription other than the stored one may only take the account over in these
LIVE_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE, STATUS_ACTIVE_CANCEL_PENDING)


@dataclass
class ApplyResult:
    outcome: str
    landlord_id: Optional[int] = None
    notes: Optional[str] = None
    notifications: List[Dict[str, Any]] = field(default_factory=list)


# ----- account resolution -----

def _account_by_landlord(landlord_id: Optional[int]) -> Optional[BillingAccount]:
    if not landlord_id:
        return None
    return db.session.get(BillingAccount, landlord_id)


def _account_by_customer(customer_id: Optional[str]) -> Optional[BillingAccount]:
    if not customer_id:
        return None
    return db.session.execute(
        select(BillingAccount).where(BillingAccount.external_customer_id == customer_id)
    ).scalar_one_or_none()


def _resolve_subscription_account(ev) -> BillingAccount:
    """
    Subscription events are keyed by customer id, not the cached subscription
    id, so a landlord who re-subscribes is still found. When the customer is
    not attached yet (the event overtook its checkout), fall back to the
    landlord id stamped into the subscription metadata at checkout.
    """
    account = _account_by_customer(ev.customer_id)
    if account is not None:
        return account

    account = _account_by_landlord(ev.landlord_id)
    if account is None:
        raise MissingAccountMapping(customer_id=ev.customer_id, subscription_id=ev.subscription_id)
    if account.external_customer_id is None and ev.customer_id:
        account.external_customer_id = ev.customer_id
    return account


def _is_superseded(account: BillingAccount, ev) -> bool:
    """True when ``ev`` is about a subscription the account has moved past."""
    current_sub = account.external_subscription_id
    if not current_sub or current_sub == ev.subscription_id:
        return False
    if isinstance(ev, SubscriptionRemoved):
        return True
    # A re-subscription moves the pointer; a dying old one does not
    return ev.effective_status not in LIVE_STATUSES


def _is_stale(account: BillingAccount, ev: NormalizedEvent) -> bool:
    if not current_app.config.get("BILLING_REJECT_STALE_EVENTS"):
        return False
    last = as_utc(account.last_event_at)
    return bool(last and ev.occurred_at and ev.occurred_at < last)


def _touch_event_time(account: BillingAccount, ev: NormalizedEvent) -> None:
    last = as_utc(account.last_event_at)
    if ev.occurred_at and (last is None or ev.occurred_at > last):
        account.last_event_at = ev.occurred_at


def _status_change(account: BillingAccount, new_status: str, result: ApplyResult) -> None:
    previous = account.status
    account.status = new_status
    if previous != new_status and new_status in NOTIFY_STATUSES:
        result.notifications.append({
            "landlord_id": account.landlord_id,
            "template": "subscription_status",
            "context": {"previous_status": previous, "status": new_status},
        })


# ----- per-event application -----

def _apply_checkout(ev: CheckoutCompleted) -> ApplyResult:
    account = _account_by_landlord(ev.landlord_id) or _account_by_customer(ev.customer_id)
    if account is None:
        raise MissingAccountMapping(customer_id=ev.customer_id, landlord_id=ev.landlord_id)

    owner = _account_by_customer(ev.customer_id)
    if owner is not None and owner.landlord_id != account.landlord_id:
        # Customer already belongs to another landlord; redelivery cannot fix this
        raise MissingAccountMapping(
            "Checkout customer is attached to a different landlord.",
            customer_id=ev.customer_id,
            landlord_id=account.landlord_id,
            owner_landlord_id=owner.landlord_id,
        )

    changed = False
    # Attach ids only if missing; status comes from the subscription events
    if account.external_customer_id is None:
        account.external_customer_id = ev.customer_id
        changed = True
    if account.external_subscription_id is None:
        account.external_subscription_id = ev.subscription_id
        changed = True
    return ApplyResult(OUTCOME_APPLIED if changed else OUTCOME_IGNORED, landlord_id=account.landlord_id)


def _apply_upsert(ev: SubscriptionUpserted) -> ApplyResult:
    account = _resolve_subscription_account(ev)
    result = ApplyResult(OUTCOME_APPLIED, landlord_id=account.landlord_id)
    if _is_superseded(account, ev):
        result.outcome = OUTCOME_IGNORED
        result.notes = "superseded_subscription"
        return result
    if _is_stale(account, ev):
        result.outcome = OUTCOME_IGNORED
        result.notes = "stale_event"
        return result

    account.external_subscription_id = ev.subscription_id
    _status_change(account, ev.effective_status, result)
    # A malformed or stale event must not null-out a known period end
    if ev.period_end is not None:
        account.current_period_end = ev.period_end
    _touch_event_time(account, ev)
    return result


def _apply_removed(ev: SubscriptionRemoved) -> ApplyResult:
    account = _resolve_subscription_account(ev)
    result = ApplyResult(OUTCOME_APPLIED, landlord_id=account.landlord_id)

    if _is_superseded(account, ev):
        # An older subscription ending must not cancel the current one
        result.outcome = OUTCOME_IGNORED
        result.notes = "superseded_subscription"
        return result
    if _is_stale(account, ev):
        result.outcome = OUTCOME_IGNORED
        result.notes = "stale_event"
        return result

    _status_change(account, STATUS_CANCELED, result)
    _touch_event_time(account, ev)
    return result


def _apply_purchase(ev: CreditsPurchased) -> ApplyResult:
    entry = ledger.record_purchase(
        ev.landlord_id,
        ev.units,
        external_ref=ev.checkout_session_id,
        amount_cents=ev.amount_cents,
        purchased_at=ev.occurred_at,
    )
    if entry is None:
        return ApplyResult(OUTCOME_IGNORED, landlord_id=ev.landlord_id, notes="duplicate_purchase")
    return ApplyResult(
        OUTCOME_APPLIED,
        landlord_id=ev.landlord_id,
        notifications=[{
            "landlord_id": ev.landlord_id,
            "template": "credits_purchased",
            "context": {"units": ev.units, "amount_cents": ev.amount_cents},
        }],
    )


_HANDLERS = {
    CheckoutCompleted: _apply_checkout,
    SubscriptionUpserted: _apply_upsert,
    SubscriptionRemoved: _apply_removed,
    CreditsPurchased: _apply_purchase,
}


def apply_event(ev: NormalizedEvent) -> ApplyResult:
    """Apply one normalized event to the session. Does not commit."""
    handler = _HANDLERS.get(type(ev))
    if handler is None:
        raise UnmappedEvent(f"No handler for {type(ev).__name__}")
    return handler(ev)


# ----- webhook pipeline -----

def _dispatch_notifications(notifications: List[Dict[str, Any]]) -> None:
    if not notifications:
        return
    from app.services.email import notify_landlord
    for n in notifications:
        notify_landlord(n["landlord_id"], n["template"], n["context"])


def _already_logged(event_id) -> bool:
    return db.session.execute(
        select(BillingEventLog.id).where(BillingEventLog.provider_event_id == event_id)
    ).first() is not None


def process_envelope(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize + reconcile a verified provider envelope.

    The event log row and the reconciled state commit together; if the store
    fails, nothing is committed and TransientStoreFailure bubbles up so the
    handler answers 5xx and the provider redelivers. Unmapped events and events
    for unknown accounts are recorded and acknowledged.
    """
    event_id = envelope.get("id")
    event_type = envelope.get("type")

    try:
        if _already_logged(event_id):
            log_event("billing.webhook_duplicate", event_id=event_id, type=event_type)
            return {"ok": True, "duplicate": True}

        object_id = None
        try:
            ev = normalize(envelope)
            object_id = ev.object_id
            result = apply_event(ev)
        except UnmappedEvent as e:
            result = ApplyResult(OUTCOME_UNMAPPED, notes=e.message[:255])
            log_event("billing.webhook_unmapped", event_id=event_id, type=event_type, reason=e.message)
        except MissingAccountMapping as e:
            result = ApplyResult(OUTCOME_MISSING_ACCOUNT, notes=e.code)
            log_event("billing.webhook_missing_account", level=logging.WARNING,
                      event_id=event_id, type=event_type, **e.context)

        db.session.add(BillingEventLog(
            provider_event_id=event_id,
            type=event_type,
            object_id=object_id,
            payload=envelope,
            outcome=result.outcome,
            notes=result.notes,
            processed_at=utcnow(),
        ))
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if _already_logged(event_id):
            # Concurrent delivery of the same event won the insert; its write is identical
            log_event("billing.webhook_duplicate_race", event_id=event_id, type=event_type)
            return {"ok": True, "duplicate": True}
        log_event("billing.webhook_constraint_violation", level=logging.ERROR, exc_info=True,
                  event_id=event_id, type=event_type)
        raise TransientStoreFailure(event_id=event_id) from e
    except SQLAlchemyError as e:
        db.session.rollback()
        log_event("billing.webhook_store_failure", level=logging.ERROR, exc_info=True,
                  event_id=event_id, type=event_type)
        raise TransientStoreFailure(event_id=event_id) from e

    log_event("billing.reconcile", event_id=event_id, type=event_type,
              outcome=result.outcome, landlord_id=result.landlord_id, notes=result.notes)
    _dispatch_notifications(result.notifications)
    return {"ok": True, "outcome": result.outcome}


# ----- provider pull (reconcile-on-demand) -----

def refresh_from_provider(landlord_id: int) -> BillingAccount:
    """
    Pull the landlord's subscription from the provider and apply it through the
    same upsert path a webhook would take. The provider stays the source of truth.
    """
    from app.services import billing as billing_service

    account = db.session.get(BillingAccount, landlord_id)
    if account is None:
        raise MissingAccountMapping(landlord_id=landlord_id)

    sub = billing_service.fetch_subscription(
        subscription_id=account.external_subscription_id,
        customer_id=account.external_customer_id,
    )
    if not sub:
        log_event("billing.refresh_no_subscription", landlord_id=landlord_id)
        return account

    ev = subscription_event(f"sync:{sub.get('id')}", utcnow(), sub)
    # The pulled object belongs to this landlord even if metadata is missing
    if ev.landlord_id is None:
        ev = replace(ev, landlord_id=landlord_id)

    try:
        result = _apply_upsert(ev)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise TransientStoreFailure(landlord_id=landlord_id) from e

    log_event("billing.refresh", landlord_id=landlord_id, subscription_id=ev.subscription_id,
              status=account.status, outcome=result.outcome)
    _dispatch_notifications(result.notifications)
    return account
