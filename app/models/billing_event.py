from sqlalchemy import func
from app.extensions import db

# Outcomes recorded per verified event
OUTCOME_APPLIED = "applied"
OUTCOME_IGNORED = "ignored"
OUTCOME_UNMAPPED = "unmapped"
OUTCOME_MISSING_ACCOUNT = "missing_account"

class BillingEventLog(db.Model):
    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    object_id = db.Column(db.String(255), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    outcome = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<BillingEventLog {self.provider_event_id} type={self.type} outcome={self.outcome}>"
