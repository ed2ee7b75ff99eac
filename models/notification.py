from datetime import datetime
from models.db import db

class NotificationOutbox(db.Model):
    __tablename__ = "notification_outbox"

    id = db.Column(db.Integer, primary_key=True)

    channel = db.Column(db.String(20), nullable=False, default="EMAIL")  # EMAIL, PUSH
    recipient = db.Column(db.String(255), nullable=False)
    template = db.Column(db.String(80), nullable=False)  # e.g. BOOKING_CONFIRMED_PROVIDER
    payload_json = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(20), nullable=False, default="PENDING", index=True)
    # status values: PENDING, SENT, FAILED
    attempts = db.Column(db.Integer, default=0, nullable=False)
    last_error = db.Column(db.String(255), nullable=True)

    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    sent_at = db.Column(db.DateTime, nullable=True)
