import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import json

import pytest
from app import create_app
from app.extensions import db
from app.services.landlords import create_landlord
from stripe_helpers import ESIGN_CALLBACK_TOKEN, ESIGN_WEBHOOK_SECRET, WEBHOOK_SECRET, stripe_signature

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "MAIL_SUPPRESS_SEND": True,
    "NOTIFY_ASYNC": False,
    "RATELIMIT_ENABLED": False,
    "APP_BASE_URL": "http://example.test",
    "STRIPE_SECRET_KEY": "sk_test_x",
    "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "STRIPE_ESIGN_WEBHOOK_SECRET": ESIGN_WEBHOOK_SECRET,
    "STRIPE_PRICE_SUBSCRIPTION": "price_landlord_monthly",
    "STRIPE_ESIGN_PRICE_ID": "price_esign_single",
    "ESIGN_API_KEY": "esign_test_key",
    "ESIGN_CALLBACK_TOKEN": ESIGN_CALLBACK_TOKEN,
    "BILLING_REJECT_STALE_EVENTS": False,
}

@pytest.fixture(scope="session")
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()

@pytest.fixture()
def make_landlord(app):
    """Create a landlord (+ billing account) and return its id."""
    counter = {"n": 0}

    def _make(owner_id=None, email=None, trial_days=0, **account_fields):
        counter["n"] += 1
        owner_id = owner_id or f"owner_{counter['n']}"
        with app.app_context():
            landlord = create_landlord(
                owner_id=owner_id,
                email=email or f"{owner_id}@example.test",
                name=f"Landlord {counter['n']}",
                trial_days=trial_days,
            )
            if account_fields:
                for key, value in account_fields.items():
                    setattr(landlord.billing_account, key, value)
                db.session.commit()
            return landlord.id
    return _make

@pytest.fixture()
def post_stripe(client):
    """POST a correctly signed Stripe envelope to a webhook endpoint."""
    def _post(envelope: dict, path: str = "/webhooks/stripe", secret: str = WEBHOOK_SECRET):
        body = json.dumps(envelope).encode("utf-8")
        return client.post(
            path,
            data=body,
            headers={"Stripe-Signature": stripe_signature(secret, body), "Content-Type": "application/json"},
        )
    return _post
