"""
Billing error taxonomy.

Each error carries a stable ``code`` (returned to callers and written to logs)
and a human ``message``. Route handlers decide the HTTP status:

- InvalidSignature        -> 400, body never processed, provider does not retry
- UnmappedEvent           -> 200, acknowledged so the provider stops retrying
- MissingAccountMapping   -> 200, acknowledged; a config gap, not a transient fault
- TransientStoreFailure   -> 500, forces a provider retry
- NoCreditsRemaining      -> 400, expected business outcome
- ProviderCallFailure     -> 502, reservation already released to ``failed``
"""


class BillingError(Exception):
    code = "billing_error"
    message = "Billing operation failed."

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidSignature(BillingError):
    code = "invalid_signature"
    message = "Webhook signature verification failed."


class UnmappedEvent(BillingError):
    code = "unmapped_event"
    message = "Event type is not handled."


class MissingAccountMapping(BillingError):
    code = "missing_account_mapping"
    message = "No billing account matches this event."


class TransientStoreFailure(BillingError):
    code = "transient_store_failure"
    message = "Temporary storage failure; please retry."


class NoCreditsRemaining(BillingError):
    code = "no_credits_remaining"
    message = "You have no remaining e-sign credits. Purchase more signatures to send another request."


class ProviderCallFailure(BillingError):
    code = "provider_call_failure"
    message = "The signing provider could not accept the request. No credit was used."
