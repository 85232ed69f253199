from flask import Blueprint

bp = Blueprint("api", __name__)

from . import entitlement  # noqa: E402,F401
