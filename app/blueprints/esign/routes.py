import logging
from flask import current_app, jsonify
from . import bp
from app.extensions import limiter
from app.billing import ledger
from app.billing.errors import (
    MissingAccountMapping,
    NoCreditsRemaining,
    ProviderCallFailure,
    TransientStoreFailure,
)
from app.observability import log_event
from app.services import billing as billing_service
from app.services.esign import get_client
from app.services.policy import error_response, json_body, json_error, require_landlord
from app.utils.helpers import safe_int
from app.utils.validators import clean_str, is_valid_email, is_valid_url

MAX_PURCHASE_QUANTITY = 500

@bp.post("/purchase-checkout")
@limiter.limit("10/minute")
@require_landlord
def purchase_checkout(landlord):
    """Stripe Checkout for a bundle of signatures; credits land via webhook."""
    quantity = safe_int(json_body().get("quantity"))
    if quantity is None or quantity < 1 or quantity > MAX_PURCHASE_QUANTITY:
        return json_error(400, "invalid_quantity", f"quantity must be between 1 and {MAX_PURCHASE_QUANTITY}.")

    price_id = current_app.config.get("STRIPE_ESIGN_PRICE_ID")
    if not price_id:
        return json_error(500, "esign_price_not_configured", "E-sign price is not configured.")

    try:
        payload = billing_service.create_credit_checkout_session(
            price_id=price_id, landlord_id=landlord.id, quantity=quantity,
        )
    except Exception:
        current_app.logger.exception(
            "esign.purchase_checkout_failed", extra={"landlord_id": landlord.id, "quantity": quantity},
        )
        return json_error(502, "checkout_failed", "Could not create checkout session.")

    if not payload.get("url"):
        return json_error(502, "checkout_failed", "Could not create checkout session.")
    return jsonify({"sessionId": payload.get("id"), "url": payload["url"]}), 200

@bp.get("/credits")
@require_landlord
def credits(landlord):
    try:
        counts = ledger.balance(landlord.id)
    except TransientStoreFailure as e:
        return error_response(e, 500)
    return jsonify({"landlordId": landlord.id, **counts}), 200

@bp.post("/start")
@limiter.limit("30/minute")
@require_landlord
def start(landlord):
    """
    Send one document for signature, spending exactly one credit.

    Body: {landlordId, documentId, signerEmail, signerName, documentUrl?, title?}
    """
    data = json_body()
    document_id = clean_str(data.get("documentId"), 64)
    signer_email = (clean_str(data.get("signerEmail"), 320) or "").lower()
    signer_name = clean_str(data.get("signerName"), 255)
    title = clean_str(data.get("title"), 255) or "Document for signature"

    if not document_id:
        return json_error(400, "missing_document_id", "documentId is required.")
    if not is_valid_email(signer_email):
        return json_error(400, "invalid_signer_email", "A valid signerEmail is required.")
    if not signer_name:
        return json_error(400, "missing_signer_name", "signerName is required.")

    document_url = clean_str(data.get("documentUrl"), 2048)
    if document_url is None:
        base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
        document_url = f"{base}/documents/{document_id}"
    if not is_valid_url(document_url):
        return json_error(400, "invalid_document_url", "documentUrl must be an http(s) URL.")

    # Fail on missing provider config before a credit is reserved
    try:
        client = get_client()
    except ProviderCallFailure as e:
        return error_response(e, 502)

    sent = {}

    def _send(record):
        sent["id"] = client.send_signature_request(
            document_url=document_url,
            title=title,
            signer_email=signer_email,
            signer_name=signer_name,
            metadata={"landlord_id": landlord.id, "record_id": record.id, "document_id": document_id},
        )
        return sent["id"]

    try:
        _, remaining = ledger.spend_credit(
            landlord.id,
            _send,
            document_id=document_id,
            document_url=document_url,
            signer_email=signer_email,
            signer_name=signer_name,
        )
    except NoCreditsRemaining as e:
        return error_response(e, 400)
    except ProviderCallFailure as e:
        log_event("esign.start_provider_failure", level=logging.WARNING,
                  landlord_id=landlord.id, document_id=document_id, reason=e.message)
        return error_response(e, 502)
    except MissingAccountMapping as e:
        return error_response(e, 404)
    except TransientStoreFailure as e:
        return error_response(e, 500)

    return jsonify({"envelopeId": sent["id"], "remainingCredits": remaining}), 200
