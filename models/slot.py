from datetime import datetime
from models.db import db

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    # Service-local wall clock (Config.SERVICE_TIMEZONE), never UTC
    date = db.Column(db.Date, nullable=False, index=True)
    time = db.Column(db.String(5), nullable=False)  # "HH:MM"
    service_type = db.Column(db.String(40), nullable=False, index=True)

    duration = db.Column(db.Integer, nullable=False, default=60)  # minutes
    price = db.Column(db.Integer, nullable=False, default=0)

    # available == False  <=>  reserved_by and booking_id are both set
    available = db.Column(db.Boolean, default=True, nullable=False, index=True)
    reserved_by = db.Column(db.String(255), nullable=True, index=True)
    reserved_at = db.Column(db.DateTime, nullable=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("date", "time", "service_type", name="uq_slot_date_time_service"),
        # A booking can hold at most one slot
        db.UniqueConstraint("booking_id", name="uq_slot_booking_once"),
        db.Index("ix_slots_available_service_date", "available", "service_type", "date"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "time": self.time,
            "service_type": self.service_type,
            "duration": self.duration,
            "price": self.price,
            "available": self.available,
            "reserved_by": self.reserved_by,
            "reserved_at": self.reserved_at.isoformat() if self.reserved_at else None,
            "booking_id": self.booking_id,
        }
