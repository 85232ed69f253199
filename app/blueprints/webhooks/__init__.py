from flask import Blueprint

bp = Blueprint("webhooks", __name__)

# Importing is what registers routes
from . import routes  # noqa: E402,F401
