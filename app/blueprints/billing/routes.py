from flask import Blueprint, current_app, jsonify
from app.extensions import limiter
from app.models.billing_account import STATUS_ACTIVE, STATUS_ACTIVE_CANCEL_PENDING
from app.billing.errors import BillingError, MissingAccountMapping, TransientStoreFailure
from app.billing.reconciler import refresh_from_provider
from app.services import billing as billing_service
from app.services.policy import error_response, json_body, json_error, require_landlord
from app.utils.validators import clean_str

billing_bp = Blueprint("billing", __name__)

def _checkout_url(session_obj):
    # service may return a dict or a Stripe Session object
    if isinstance(session_obj, dict):
        return session_obj.get("url")
    return getattr(session_obj, "url", None)

@billing_bp.post("/checkout")
@limiter.limit("10/minute")
@require_landlord
def checkout(landlord):
    account = landlord.billing_account
    # Block duplicate purchases while a paid plan is running
    if account is not None and account.status in (STATUS_ACTIVE, STATUS_ACTIVE_CANCEL_PENDING):
        return json_error(409, "already_subscribed", "Subscription already active.")

    price_id = clean_str(json_body().get("priceId"), 128) or current_app.config.get("STRIPE_PRICE_SUBSCRIPTION")
    if not price_id:
        return json_error(400, "missing_price_id", "priceId is required.")

    try:
        payload = billing_service.create_checkout_session(
            price_id=price_id,
            landlord_id=landlord.id,
            customer_id=account.external_customer_id if account else None,
        )
    except Exception:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"landlord_id": landlord.id, "price_id": price_id},
        )
        return json_error(502, "checkout_failed", "Could not create checkout session.")

    url = _checkout_url(payload)
    if not url:
        return json_error(502, "checkout_failed", "Could not create checkout session.")
    return jsonify({"sessionId": payload.get("id"), "url": url}), 200

@billing_bp.post("/cancel")
@limiter.limit("10/minute")
@require_landlord
def cancel(landlord):
    """
    Request cancel-at-period-end from Stripe. The local status changes only
    when customer.subscription.updated arrives.
    """
    account = landlord.billing_account
    if account is None or not account.external_subscription_id:
        return json_error(404, "no_subscription", "No subscription to cancel.")

    try:
        result = billing_service.request_cancel_at_period_end(subscription_id=account.external_subscription_id)
    except Exception:
        current_app.logger.exception(
            "billing.cancel.request_failed",
            extra={"landlord_id": landlord.id, "subscription_id": account.external_subscription_id},
        )
        return json_error(502, "cancel_failed", "Could not request cancellation.")
    return jsonify(result), 200

@billing_bp.post("/portal")
@limiter.limit("10/minute")
@require_landlord
def portal(landlord):
    account = landlord.billing_account
    if account is None or not account.external_customer_id:
        return json_error(404, "no_billing_profile", "No billing profile for this landlord.")

    try:
        payload = billing_service.create_portal_session(stripe_customer_id=account.external_customer_id)
    except Exception:
        current_app.logger.exception("billing.portal.session_create_failed", extra={"landlord_id": landlord.id})
        return json_error(502, "portal_failed", "Could not create portal session.")

    url = payload.get("url")
    if not url:
        return json_error(502, "portal_failed", "Could not create portal session.")
    return jsonify({"url": url}), 200

@billing_bp.post("/status")
@limiter.limit("30/minute")
@require_landlord
def status(landlord):
    """Current billing state; ``refresh: true`` pulls from Stripe first."""
    account = landlord.billing_account
    if account is None:
        return error_response(MissingAccountMapping(), 404)

    if json_body().get("refresh"):
        try:
            account = refresh_from_provider(landlord.id)
        except TransientStoreFailure as e:
            return error_response(e, 500)
        except BillingError as e:
            return error_response(e, 400)
        except Exception:
            current_app.logger.exception("billing.status.refresh_failed", extra={"landlord_id": landlord.id})
            return json_error(502, "refresh_failed", "Could not refresh from the billing provider.")

    return jsonify(account.to_dict()), 200
