from datetime import timedelta
from typing import Optional

from app.extensions import db
from app.models import BillingAccount, Landlord
from app.models.billing_account import STATUS_NONE, STATUS_TRIALING
from app.utils.helpers import utcnow


def create_landlord(*, owner_id: str, email: str, name: Optional[str] = None, trial_days: int = 0) -> Landlord:
    """
    Create the landlord and its single BillingAccount in one transaction.
    A promotional trial starts the account in ``trialing`` until trial_end.
    """
    landlord = Landlord(owner_id=owner_id, email=email.strip().lower(), name=name)
    db.session.add(landlord)
    db.session.flush()

    account = BillingAccount(landlord_id=landlord.id, status=STATUS_NONE, trial_active=False)
    if trial_days and trial_days > 0:
        account.status = STATUS_TRIALING
        account.trial_active = True
        account.trial_end = utcnow() + timedelta(days=trial_days)
    db.session.add(account)
    db.session.commit()
    return landlord


def get_landlord(landlord_id) -> Optional[Landlord]:
    try:
        return db.session.get(Landlord, int(landlord_id))
    except (TypeError, ValueError):
        return None
