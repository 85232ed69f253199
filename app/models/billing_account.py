from sqlalchemy import func, text, CheckConstraint
from app.extensions import db

# Keep simple text+CHECK for evolvable statuses (no DB enum migration pain)
STATUS_NONE = "none"
STATUS_TRIALING = "trialing"
STATUS_ACTIVE = "active"
STATUS_ACTIVE_CANCEL_PENDING = "active_cancel_pending"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"
STATUS_CHOICES = (
    STATUS_NONE,
    STATUS_TRIALING,
    STATUS_ACTIVE,
    STATUS_ACTIVE_CANCEL_PENDING,
    STATUS_PAST_DUE,
    STATUS_CANCELED,
)

class BillingAccount(db.Model):
    """
    One row per landlord, created with the landlord and never deleted.
    Written only by the reconciler (webhook-driven); everything else reads.
    """
    __tablename__ = "billing_accounts"

    landlord_id = db.Column(
        db.Integer,
        db.ForeignKey("landlords.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    external_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    external_subscription_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'none'"))
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)

    trial_active = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)

    # Provider timestamp of the last subscription event applied (stale-event guard)
    last_event_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    landlord = db.relationship("Landlord", back_populates="billing_account")

    __table_args__ = (
        CheckConstraint(
            "status IN ('none','trialing','active','active_cancel_pending','past_due','canceled')",
            name="ck_billing_accounts_status_valid",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "landlordId": self.landlord_id,
            "externalCustomerId": self.external_customer_id,
            "externalSubscriptionId": self.external_subscription_id,
            "status": self.status,
            "currentPeriodEnd": self.current_period_end.isoformat() if self.current_period_end else None,
            "trialActive": bool(self.trial_active),
            "trialEnd": self.trial_end.isoformat() if self.trial_end else None,
        }

    def __repr__(self) -> str:
        return f"<BillingAccount landlord_id={self.landlord_id} status={self.status!r}>"
