import os

class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    APP_ENV = os.environ.get("APP_ENV", "development")

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = (os.getenv("MAIL_USE_TLS", "true").lower() == "true")
    MAIL_USE_SSL = (os.getenv("MAIL_USE_SSL", "false").lower() == "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "RentLedger <no-reply@local.test>")
    MAIL_SUPPRESS_SEND = (os.getenv("MAIL_SUPPRESS_SEND", "false").lower() == "true")

    # Notifications run on a detached thread; tests flip this off
    NOTIFY_ASYNC = (os.getenv("NOTIFY_ASYNC", "true").lower() == "true")

    # Used for checkout return URLs and document links (must be https in prod)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # --- Stripe (Billing) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    # Credit purchases may arrive on their own endpoint with their own secret
    STRIPE_ESIGN_WEBHOOK_SECRET = os.getenv("STRIPE_ESIGN_WEBHOOK_SECRET")
    # Replay window for the signed timestamp in Stripe-Signature
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))

    # Price IDs (per environment via env vars)
    STRIPE_PRICE_SUBSCRIPTION = os.getenv("STRIPE_PRICE_SUBSCRIPTION")
    STRIPE_ESIGN_PRICE_ID = os.getenv("STRIPE_ESIGN_PRICE_ID")

    # Skip subscription events older than the last one applied to the account
    BILLING_REJECT_STALE_EVENTS = (os.getenv("BILLING_REJECT_STALE_EVENTS", "false").lower() == "true")

    # --- E-signature provider ---
    ESIGN_API_BASE_URL = os.getenv("ESIGN_API_BASE_URL", "https://api.hellosign.com/v3")
    ESIGN_API_KEY = os.getenv("ESIGN_API_KEY")
    ESIGN_CALLBACK_TOKEN = os.getenv("ESIGN_CALLBACK_TOKEN")
    ESIGN_TEST_MODE = (os.getenv("ESIGN_TEST_MODE", "true").lower() == "true")
    ESIGN_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("ESIGN_PROVIDER_TIMEOUT_SECONDS", "30"))
    # A reservation still "reserved" after this long is treated as failed
    ESIGN_RESERVATION_TIMEOUT_SECONDS = int(os.getenv("ESIGN_RESERVATION_TIMEOUT_SECONDS", "900"))

class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    MAIL_SUPPRESS_SEND = True

class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # REQUIRE env vars in production (fail fast if missing)
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    MAIL_SUPPRESS_SEND = False
    ESIGN_TEST_MODE = (os.getenv("ESIGN_TEST_MODE", "false").lower() == "true")

class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    MAIL_SUPPRESS_SEND = True
    NOTIFY_ASYNC = False
    RATELIMIT_ENABLED = False

_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "staging": ProductionConfig,
    "testing": TestingConfig,
}

def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
