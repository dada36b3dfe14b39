from datetime import datetime
from models.db import db

class ScheduleTemplate(db.Model):
    """Recurring weekly schedule of a service. Entries live in their own table."""
    __tablename__ = "schedule_templates"

    id = db.Column(db.Integer, primary_key=True)
    service_type = db.Column(db.String(40), nullable=False, unique=True)
    title = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    entries = db.relationship("ScheduleEntry", back_populates="template", order_by="ScheduleEntry.day_of_week")


class ScheduleEntry(db.Model):
    __tablename__ = "schedule_entries"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("schedule_templates.id"), nullable=False, index=True)

    day_of_week = db.Column(db.Integer, nullable=False)  # 0 = Monday ... 6 = Sunday
    start_time = db.Column(db.String(5), nullable=False)  # "HH:MM"
    duration = db.Column(db.Integer, nullable=False, default=60)
    price = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    template = db.relationship("ScheduleTemplate", back_populates="entries")

    __table_args__ = (
        db.UniqueConstraint("template_id", "day_of_week", "start_time", name="uq_schedule_entry"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time,
            "duration": self.duration,
            "price": self.price,
            "is_active": self.is_active,
        }
