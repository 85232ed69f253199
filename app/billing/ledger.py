"""
E-sign credit ledger.

Purchases are append-only ``CreditLedgerEntry`` rows; every consuming action
is a ``ConsumptionRecord`` that moves ``reserved -> sent | failed``.

    remaining = sum(units_purchased) - count(records in {reserved, sent})

A reservation is taken *before* the provider call, so a crash mid-call spends
the credit rather than giving a free envelope. ``failed`` records stay for
audit but never count, which is how a unit returns to the pool. Reservations
left in ``reserved`` longer than ESIGN_RESERVATION_TIMEOUT_SECONDS are flipped
to ``failed`` on the next ledger read.

Reserve-check-and-insert is serialized per landlord: an in-process lock keyed
by landlord id plus ``SELECT ... FOR UPDATE`` on the landlord row for
cross-process safety. Landlords never contend with each other.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import ConsumptionRecord, CreditLedgerEntry, Landlord
from app.models.consumption_record import (
    COUNTED_STATUSES,
    STATUS_FAILED,
    STATUS_RESERVED,
    STATUS_SENT,
)
from app.observability import log_event
from app.utils.helpers import utcnow

from .errors import MissingAccountMapping, NoCreditsRemaining, ProviderCallFailure, TransientStoreFailure

REASON_EXPIRED = "reservation_expired"

_locks_guard = threading.Lock()
# Entries vanish once no thread holds or waits on the landlord's lock
_landlord_locks = weakref.WeakValueDictionary()


@contextmanager
def landlord_lock(landlord_id: int):
    with _locks_guard:
        lock = _landlord_locks.setdefault(landlord_id, threading.Lock())
    with lock:
        yield


def _reservation_cutoff():
    seconds = int(current_app.config.get("ESIGN_RESERVATION_TIMEOUT_SECONDS", 900))
    return utcnow() - timedelta(seconds=seconds)


def expire_stale_reservations(landlord_id: Optional[int] = None) -> int:
    """Mark ``reserved`` records older than the reservation timeout as ``failed``. Does not commit."""
    stmt = (
        update(ConsumptionRecord)
        .where(
            ConsumptionRecord.status == STATUS_RESERVED,
            ConsumptionRecord.created_at < _reservation_cutoff(),
        )
        .values(status=STATUS_FAILED, failure_reason=REASON_EXPIRED, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if landlord_id is not None:
        stmt = stmt.where(ConsumptionRecord.landlord_id == landlord_id)
    expired = db.session.execute(stmt).rowcount or 0
    if expired:
        log_event("ledger.reservations_expired", level=logging.WARNING,
                  landlord_id=landlord_id, count=expired)
    return expired


def _purchased(landlord_id: int) -> int:
    total = db.session.execute(
        select(func.coalesce(func.sum(CreditLedgerEntry.units_purchased), 0))
        .where(CreditLedgerEntry.landlord_id == landlord_id)
    ).scalar_one()
    return int(total or 0)


def _used(landlord_id: int) -> int:
    return int(db.session.execute(
        select(func.count(ConsumptionRecord.id)).where(
            ConsumptionRecord.landlord_id == landlord_id,
            ConsumptionRecord.status.in_(COUNTED_STATUSES),
        )
    ).scalar_one())


def balance(landlord_id: int) -> Dict[str, int]:
    """Current purchased/used/remaining counts, after lazy expiry."""
    try:
        expire_stale_reservations(landlord_id)
        purchased = _purchased(landlord_id)
        used = _used(landlord_id)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise TransientStoreFailure(landlord_id=landlord_id) from e
    return {"purchased": purchased, "used": used, "remaining": purchased - used}


def record_purchase(landlord_id: int, units: int, external_ref: Optional[str] = None,
                    amount_cents: Optional[int] = None, purchased_at=None) -> Optional[CreditLedgerEntry]:
    """
    Append a purchase. Returns None when ``external_ref`` was already recorded
    (replayed purchase event). Does not commit; the caller owns the transaction.
    """
    if units <= 0:
        raise ValueError("units must be positive")
    if db.session.get(Landlord, landlord_id) is None:
        raise MissingAccountMapping("No landlord for credit purchase.", landlord_id=landlord_id)
    if external_ref:
        existing = db.session.execute(
            select(CreditLedgerEntry.id).where(CreditLedgerEntry.external_ref == external_ref)
        ).first()
        if existing:
            return None

    entry = CreditLedgerEntry(
        landlord_id=landlord_id,
        units_purchased=units,
        external_ref=external_ref,
        amount_cents=amount_cents,
        purchased_at=purchased_at or utcnow(),
    )
    db.session.add(entry)
    return entry


def reserve_credit(landlord_id: int, **details) -> ConsumptionRecord:
    """
    Atomically check the remaining budget and insert a ``reserved`` record.
    Raises NoCreditsRemaining without writing anything when the budget is spent.
    """
    with landlord_lock(landlord_id):
        try:
            landlord = db.session.execute(
                select(Landlord).where(Landlord.id == landlord_id).with_for_update()
            ).scalar_one_or_none()
            if landlord is None:
                db.session.rollback()
                raise MissingAccountMapping("Landlord not found.", landlord_id=landlord_id)

            expire_stale_reservations(landlord_id)
            remaining = _purchased(landlord_id) - _used(landlord_id)
            if remaining <= 0:
                # Persist any lazy expiry, release the row lock
                db.session.commit()
                log_event("ledger.no_credits", landlord_id=landlord_id)
                raise NoCreditsRemaining(landlord_id=landlord_id)

            record = ConsumptionRecord(landlord_id=landlord_id, status=STATUS_RESERVED, **details)
            db.session.add(record)
            db.session.flush()
            record_id = record.id
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            log_event("ledger.reserve_failed", level=logging.ERROR, exc_info=True, landlord_id=landlord_id)
            raise TransientStoreFailure(landlord_id=landlord_id) from e

    log_event("ledger.reserved", landlord_id=landlord_id, record_id=record_id, remaining=remaining - 1)
    return record


def _transition(record_id: int, to_status: str, **fields) -> Optional[ConsumptionRecord]:
    record = db.session.get(ConsumptionRecord, record_id, populate_existing=True)
    if record is None:
        return None
    if record.status != STATUS_RESERVED:
        # Already resolved (e.g. lazily expired); keep the first outcome
        log_event("ledger.transition_skipped", level=logging.WARNING,
                  record_id=record_id, current=record.status, requested=to_status, **fields)
        for key, value in fields.items():
            if getattr(record, key) is None:
                setattr(record, key, value)
        db.session.commit()
        return record
    record.status = to_status
    for key, value in fields.items():
        setattr(record, key, value)
    db.session.commit()
    return record


def mark_sent(record_id: int, provider_request_id: Optional[str] = None) -> Optional[ConsumptionRecord]:
    return _transition(record_id, STATUS_SENT, provider_request_id=provider_request_id)


def mark_failed(record_id: int, reason: str) -> Optional[ConsumptionRecord]:
    return _transition(record_id, STATUS_FAILED, failure_reason=(reason or "")[:255])


def spend_credit(landlord_id: int, action: Callable[[ConsumptionRecord], str], **details) -> Tuple[ConsumptionRecord, int]:
    """
    Full consuming protocol: reserve, run ``action`` (the provider call, which
    must be time-bounded and return the provider tracking id), then resolve the
    reservation. Any failure of ``action`` releases the reservation to
    ``failed`` before ProviderCallFailure reaches the caller.

    Returns ``(record, remaining_after)``.
    """
    record = reserve_credit(landlord_id, **details)
    record_id = record.id

    try:
        provider_request_id = action(record)
    except ProviderCallFailure as e:
        log_event("ledger.provider_call_failed", level=logging.ERROR, exc_info=True,
                  landlord_id=landlord_id, record_id=record_id, reason=e.message)
        _release(record_id, e.message)
        raise
    except Exception as e:
        log_event("ledger.provider_call_failed", level=logging.ERROR, exc_info=True,
                  landlord_id=landlord_id, record_id=record_id, reason=type(e).__name__)
        _release(record_id, type(e).__name__)
        raise ProviderCallFailure(landlord_id=landlord_id) from e

    # The provider accepted; do not surface an error that invites a resend
    record = _record_sent(record_id, provider_request_id) or record

    remaining = balance(landlord_id)["remaining"]
    log_event("ledger.sent", landlord_id=landlord_id, record_id=record_id,
              provider_request_id=provider_request_id, remaining=remaining)
    return record, remaining


def _record_sent(record_id: int, provider_request_id: str, attempts: int = 2) -> Optional[ConsumptionRecord]:
    """
    A sent envelope left in ``reserved`` would be expired and its unit handed
    back, so the write gets a second attempt before giving up.
    """
    for attempt in range(1, attempts + 1):
        try:
            return mark_sent(record_id, provider_request_id=provider_request_id)
        except SQLAlchemyError:
            db.session.rollback()
            log_event("ledger.mark_sent_failed", level=logging.ERROR, exc_info=True,
                      record_id=record_id, provider_request_id=provider_request_id, attempt=attempt)
    return None


def _release(record_id: int, reason: str) -> None:
    try:
        mark_failed(record_id, reason)
    except SQLAlchemyError:
        db.session.rollback()
        # Lazy expiry will still free this reservation after the timeout
        log_event("ledger.release_failed", level=logging.ERROR, exc_info=True, record_id=record_id)
        return
    log_event("ledger.released", level=logging.WARNING, record_id=record_id, reason=reason)
