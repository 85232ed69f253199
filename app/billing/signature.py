import json
from typing import Any, Dict

import stripe

from .errors import InvalidSignature

DEFAULT_TOLERANCE_SECONDS = 300


def verify_webhook(raw_body: bytes, sig_header: str, secret: str,
                   tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> Dict[str, Any]:
    """
    Verify a Stripe-signed payload and return the parsed event envelope.

    Stripe signs ``"<t>.<raw body>"`` with HMAC-SHA256 and sends
    ``Stripe-Signature: t=<t>,v1=<hex>``. A stale ``t`` (outside ``tolerance``)
    is rejected as a replay. Pure: no I/O, no side effects.
    """
    if not secret:
        raise InvalidSignature("Webhook secret is not configured.")
    if not sig_header:
        raise InvalidSignature("Missing signature header.")

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidSignature("Payload is not valid UTF-8.")

    try:
        stripe.WebhookSignature.verify_header(payload, sig_header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(str(e) or InvalidSignature.message)

    try:
        envelope = json.loads(payload)
    except ValueError:
        raise InvalidSignature("Signed payload is not valid JSON.")
    if not isinstance(envelope, dict):
        raise InvalidSignature("Signed payload is not an event object.")
    return envelope
