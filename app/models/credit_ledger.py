from datetime import datetime, timezone
from app.extensions import db

class CreditLedgerEntry(db.Model):
    """Append-only purchase record. Never updated or deleted."""
    __tablename__ = "credit_ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    landlord_id = db.Column(db.Integer, db.ForeignKey("landlords.id", ondelete="RESTRICT"), nullable=False, index=True)
    units_purchased = db.Column(db.Integer, nullable=False)
    # Checkout session id; a replayed purchase event must not credit twice
    external_ref = db.Column(db.String(255), nullable=True, unique=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint("units_purchased > 0", name="ck_credit_ledger_entries_units_positive"),
    )

    def __repr__(self) -> str:
        return f"<CreditLedgerEntry id={self.id} landlord_id={self.landlord_id} units={self.units_purchased}>"
