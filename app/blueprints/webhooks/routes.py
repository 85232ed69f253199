import hmac
import hashlib
import json
import logging
from flask import request, jsonify, current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from . import bp
from app.extensions import db, limiter
from app.models import ConsumptionRecord
from app.billing.errors import InvalidSignature, TransientStoreFailure
from app.billing.signature import verify_webhook
from app.billing.reconciler import process_envelope
from app.observability import log_event
from app.services.policy import error_response, json_error

def _handle_stripe(secret: str | None):
    """
    verify -> normalize -> reconcile.
    4xx on a bad signature (body never touched), 5xx when the store fails so
    Stripe redelivers, 200 for everything else including events we ignore.
    """
    if not secret:
        current_app.logger.error("stripe_webhook_secret_missing endpoint=%s", request.path)
        return json_error(500, "webhook_not_configured", "Webhook secret not configured.")

    raw_bytes = request.get_data(cache=False, as_text=False) or b""
    sig_header = request.headers.get("Stripe-Signature", "")
    tolerance = int(current_app.config.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300))

    try:
        envelope = verify_webhook(raw_bytes, sig_header, secret, tolerance=tolerance)
    except InvalidSignature as e:
        # No payload trust: log a digest only, never persist anything
        log_event("billing.webhook_invalid_signature", level=logging.WARNING,
                  endpoint=request.path, reason=e.message,
                  body_sha256=hashlib.sha256(raw_bytes).hexdigest()[:32])
        return error_response(e, 400)

    if not envelope.get("id") or not envelope.get("type"):
        return json_error(400, "malformed_event", "Event is missing id or type.")

    try:
        result = process_envelope(envelope)
    except TransientStoreFailure as e:
        return error_response(e, 500)
    return jsonify(result), 200

# ----- Stripe: subscription lifecycle (and credit purchases) -----
@bp.post("/stripe")
@limiter.exempt
def stripe_webhook():
    return _handle_stripe(current_app.config.get("STRIPE_WEBHOOK_SECRET"))

# ----- Stripe: dedicated endpoint for e-sign credit purchases -----
@bp.post("/stripe/esign")
@limiter.exempt
def stripe_esign_webhook():
    cfg = current_app.config
    return _handle_stripe(cfg.get("STRIPE_ESIGN_WEBHOOK_SECRET") or cfg.get("STRIPE_WEBHOOK_SECRET"))

# ----- E-signature provider callbacks (signer progress) -----

# First match wins; "all_signed" must be checked before "signed"
_SIGNING_STATUS_RULES = (
    ("all_signed", "completed"),
    ("declin", "declined"),
    ("cancel", "cancelled"),
    ("signed", "partially_signed"),
    ("viewed", "viewed"),
    ("sent", "sent"),
)

def _valid_esign_signature(raw_body: bytes, header_value: str) -> bool:
    token = current_app.config.get("ESIGN_CALLBACK_TOKEN")
    if not token or not header_value:
        return False
    provided = header_value.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    mac = hmac.new(token.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(mac, provided.lower())

def _signing_status(event_type: str) -> str | None:
    lowered = (event_type or "").lower()
    for needle, status in _SIGNING_STATUS_RULES:
        if needle in lowered:
            return status
    return None

@bp.post("/esign")
@limiter.exempt
def esign_callback():
    raw = request.get_data(cache=False, as_text=False) or b""
    if not _valid_esign_signature(raw, request.headers.get("X-HelloSign-Signature", "")):
        log_event("esign.callback_invalid_signature", level=logging.WARNING)
        return error_response(InvalidSignature(), 400)

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return json_error(400, "invalid_json", "Invalid JSON.")
    if not isinstance(payload, dict):
        return json_error(400, "invalid_json", "Invalid JSON.")

    event = payload.get("event") or {}
    event_type = event.get("event_type") or payload.get("event_type") or ""
    request_id = (payload.get("signature_request") or {}).get("signature_request_id") or payload.get("signature_request_id")
    new_status = _signing_status(event_type)

    if not request_id or not new_status:
        return jsonify({"received": True}), 200

    try:
        record = db.session.execute(
            select(ConsumptionRecord).where(ConsumptionRecord.provider_request_id == request_id)
        ).scalar_one_or_none()
        if record is None:
            log_event("esign.callback_unknown_request", level=logging.WARNING, request_id=request_id)
            return jsonify({"received": True}), 200
        # Signer progress only; credit accounting is already settled
        record.signing_status = new_status
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("esign_callback_store_failure request_id=%s", request_id)
        return error_response(TransientStoreFailure(), 500)

    log_event("esign.callback", request_id=request_id, event_type=event_type, signing_status=new_status)
    return jsonify({"received": True}), 200
