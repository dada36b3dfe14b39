from datetime import datetime
from models.db import db

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, default="advisory")  # advisory, training
    service_type = db.Column(db.String(40), nullable=False)
    # Calendar this booking occupies; conflicts are checked per resource
    resource = db.Column(db.String(80), nullable=False)

    # Service-local wall clock; end_at == start_at + duration
    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    duration = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # status values: pending, confirmed, cancelled

    price = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    meeting_link = db.Column(db.String(500), nullable=True)  # filled in by the calendar integration

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    slot = db.relationship("Slot", uselist=False, primaryjoin="Booking.id == Slot.booking_id",
                           foreign_keys="Slot.booking_id", viewonly=True)

    __table_args__ = (
        db.Index("ix_bookings_resource_range", "resource", "start_at", "end_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "service_type": self.service_type,
            "resource": self.resource,
            "status": self.status,
            "start": self.start_at.isoformat(),
            "end": self.end_at.isoformat(),
            "duration": self.duration,
            "price": self.price,
            "notes": self.notes,
            "meeting_link": self.meeting_link,
            "slot_id": self.slot.id if self.slot else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
