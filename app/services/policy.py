from functools import wraps
from flask import jsonify, request
from app.billing.errors import BillingError
from app.services.landlords import get_landlord

def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def _landlord_id_from_request():
    # JSON body for commands, query string for reads
    return json_body().get("landlordId") or request.args.get("landlordId")

def require_landlord(fn):
    """
    Resolve the explicit ``landlordId`` of the request and pass the Landlord
    to the view as ``landlord``. There is no implicit/default landlord.
    """
    @wraps(fn)
    def _wrap(*args, **kwargs):
        landlord_id = _landlord_id_from_request()
        if landlord_id in (None, ""):
            return json_error(400, "missing_landlord_id", "Missing landlordId.")
        landlord = get_landlord(landlord_id)
        if landlord is None:
            return json_error(404, "landlord_not_found", "Landlord not found.")
        kwargs["landlord"] = landlord
        return fn(*args, **kwargs)
    return _wrap

def error_response(err: BillingError, status: int):
    return jsonify(err.to_dict()), status

def json_error(code: int, error: str, message: str):
    return jsonify({"error": error, "message": message, "code": code}), code
