from sqlalchemy import func
from app.extensions import db

class Landlord(db.Model):
    __tablename__ = "landlords"

    id = db.Column(db.Integer, primary_key=True)
    # Auth identity of the landlord; tenants' feature routes know the landlord by this id
    owner_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(320), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    billing_account = db.relationship("BillingAccount", back_populates="landlord", uselist=False)

    def __repr__(self) -> str:
        return f"<Landlord id={self.id} owner_id={self.owner_id!r}>"
