from .landlord import Landlord
from .billing_account import BillingAccount
from .billing_event import BillingEventLog
from .credit_ledger import CreditLedgerEntry
from .consumption_record import ConsumptionRecord
from .notification_log import NotificationLog

__all__ = [
    "Landlord",
    "BillingAccount",
    "BillingEventLog",
    "CreditLedgerEntry",
    "ConsumptionRecord",
    "NotificationLog",
]
