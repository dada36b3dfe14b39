from datetime import datetime
from models.db import db

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(255), nullable=True)
    service = db.Column(db.String(40), nullable=False)

    provider = db.Column(db.String(20), nullable=False, default="MERCADOPAGO")
    provider_payment_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=False, default=0)  # smallest unit
    currency = db.Column(db.String(10), nullable=False, default="ARS")

    status = db.Column(db.String(20), nullable=False, default="pending")
    # pending, in_process, approved, rejected, cancelled

    # Provider idempotency key: replays of a notification land on this row
    external_reference = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # naive UTC
    transaction_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expiry_at = db.Column(db.DateTime, nullable=True)

    metadata_kind = db.Column(db.String(20), nullable=False, default="legacy")
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_payments_user_service_status_expiry", "user_id", "service", "status", "expiry_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "service": self.service,
            "provider": self.provider,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "external_reference": self.external_reference,
            "transaction_at": self.transaction_at.isoformat() if self.transaction_at else None,
            "expiry_at": self.expiry_at.isoformat() if self.expiry_at else None,
            "metadata_kind": self.metadata_kind,
        }
