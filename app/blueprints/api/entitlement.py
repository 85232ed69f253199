from flask import jsonify
from . import bp
from app.billing.entitlements import is_allowed
from app.services.policy import json_body
from app.utils.validators import clean_str

@bp.post("/entitlement")
def entitlement():
    """
    Tenant-facing gate: may this landlord's tenants pay rent / open requests?
    Body: {"ownerId": "<landlord owner id>"} -> {"allowed": bool, "reason"?: str}
    """
    owner_id = clean_str(json_body().get("ownerId"), 64)
    if not owner_id:
        return jsonify({"allowed": False, "reason": "Missing landlord owner id."}), 400
    return jsonify(is_allowed(owner_id).to_dict()), 200
