from datetime import datetime
from models.db import db

class TimeSlot(db.Model):
    __tablename__ = "time_slots"

    id = db.Column(db.Integer, primary_key=True)

    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    # written eagerly on hold/booking, never derived from bookings at read time
    is_available = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    service = db.relationship("Service", back_populates="time_slots")

    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_time_slot_interval"),
        db.UniqueConstraint("service_id", "date", "start_time", "end_time", name="uq_service_timeslot"),
    )
