from datetime import datetime, timezone
from sqlalchemy import CheckConstraint
from app.extensions import db

STATUS_RESERVED = "reserved"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
# Statuses that count against the purchased budget
COUNTED_STATUSES = (STATUS_RESERVED, STATUS_SENT)

def _utcnow():
    return datetime.now(timezone.utc)

class ConsumptionRecord(db.Model):
    __tablename__ = "consumption_records"

    id = db.Column(db.Integer, primary_key=True)
    landlord_id = db.Column(db.Integer, db.ForeignKey("landlords.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, index=True, default=STATUS_RESERVED)

    document_id = db.Column(db.String(64), nullable=True)
    document_url = db.Column(db.String(2048), nullable=True)
    signer_email = db.Column(db.String(320), nullable=True)
    signer_name = db.Column(db.String(255), nullable=True)

    provider_request_id = db.Column(db.String(128), nullable=True, unique=True, index=True)
    # Signer-side progress reported by provider callbacks; never affects accounting
    signing_status = db.Column(db.String(32), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('reserved','sent','failed')", name="ck_consumption_records_status_valid"),
    )

    def __repr__(self) -> str:
        return f"<ConsumptionRecord id={self.id} landlord_id={self.landlord_id} status={self.status}>"
