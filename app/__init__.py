import os
from flask import Flask, jsonify, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .extensions import db, migrate, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry

def create_app(test_config=None):
    app = Flask(__name__, template_folder="templates")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based; tests layer overrides on top
    app.config.from_object(get_config())
    if test_config:
        app.config.update(test_config)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production") and not app.config.get("TESTING"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")

    # A provider call (deadline plus one last socket wait) must end inside the reservation window
    provider_timeout = float(app.config.get("ESIGN_PROVIDER_TIMEOUT_SECONDS", 30))
    reservation_timeout = int(app.config.get("ESIGN_RESERVATION_TIMEOUT_SECONDS", 900))
    if provider_timeout * 2 >= reservation_timeout:
        raise RuntimeError(
            "ESIGN_PROVIDER_TIMEOUT_SECONDS must be less than half of ESIGN_RESERVATION_TIMEOUT_SECONDS"
        )

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    limiter.init_app(app)
    mail.init_app(app)

    # Models must be imported for metadata/migrations
    from . import models  # noqa: F401

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.webhooks import bp as webhooks_bp
    from .blueprints.esign import bp as esign_bp
    from .blueprints.api import bp as api_bp
    from app.blueprints.billing.routes import billing_bp

    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")
    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(esign_bp, url_prefix="/esign")
    app.register_blueprint(api_bp, url_prefix="/api")

    # Health
    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: JSON everywhere, this service has no HTML surface
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "code": 400}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "code": 404}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed", "code": 405}), 405

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return jsonify(payload), 429, headers

    @app.errorhandler(500)
    def server_error(e):
        app.logger.error("unhandled_error path=%s", request.path)
        return jsonify({"error": "internal_error", "code": 500}), 500

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    # Ensure the Stripe SDK is initialized for every worker/process.
    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    else:
        app.logger.warning("Stripe secret key missing; billing features will not work")

    return app
