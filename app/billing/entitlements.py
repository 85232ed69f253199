import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from app.extensions import db
from app.models import BillingAccount, Landlord
from app.models.billing_account import STATUS_ACTIVE, STATUS_ACTIVE_CANCEL_PENDING
from app.observability import log_event
from app.utils.helpers import as_utc, utcnow

# Paid plan statuses that entitle tenants' core actions
PAID_STATUSES = {STATUS_ACTIVE, STATUS_ACTIVE_CANCEL_PENDING}

REASON_FAIL_OPEN = "Temporary verification issue (fail-open)."
REASON_NO_LANDLORD = (
    "Online payments and maintenance are temporarily unavailable because your landlord's "
    "account could not be found. Please contact your landlord or property manager."
)
REASON_INACTIVE = (
    "Online payments and maintenance are temporarily unavailable because your landlord's "
    "subscription is not currently active. Please contact your landlord or property manager."
)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"allowed": self.allowed}
        if self.reason:
            out["reason"] = self.reason
        return out


def _load_account(owner_id: str) -> Optional[BillingAccount]:
    return db.session.execute(
        select(BillingAccount)
        .join(Landlord, Landlord.id == BillingAccount.landlord_id)
        .where(Landlord.owner_id == owner_id)
    ).scalar_one_or_none()


def is_entitled(account: BillingAccount, now: Optional[datetime] = None) -> bool:
    """Paid plan active (cancel-pending still counts) or a promotional trial that has not ended."""
    now = now or utcnow()
    paid_active = account.status in PAID_STATUSES
    trial_end = as_utc(account.trial_end)
    promo_active = bool(account.trial_active) and trial_end is not None and trial_end >= now
    return paid_active or promo_active


def is_allowed(owner_id: str, now: Optional[datetime] = None) -> Decision:
    """
    Entitlement gate for tenant-facing actions (rent payment, maintenance).

    Read-only and lock-free; a slightly stale account is acceptable.
    Fails OPEN when the lookup itself errors, so an infrastructure hiccup never
    blocks a tenant's rent payment. A lookup that succeeds but finds no
    landlord is a data problem and is denied.
    """
    try:
        account = _load_account(owner_id)
    except Exception:
        db.session.rollback()
        log_event("entitlement.fail_open", level=logging.ERROR, exc_info=True, owner_id=owner_id)
        return Decision(True, REASON_FAIL_OPEN)

    if account is None:
        log_event("entitlement.no_landlord", level=logging.WARNING, owner_id=owner_id)
        return Decision(False, REASON_NO_LANDLORD)

    if is_entitled(account, now=now):
        return Decision(True)

    log_event("entitlement.denied", owner_id=owner_id, status=account.status)
    return Decision(False, REASON_INACTIVE)
