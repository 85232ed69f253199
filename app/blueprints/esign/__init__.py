from flask import Blueprint

bp = Blueprint("esign", __name__)

from . import routes  # noqa: E402,F401
