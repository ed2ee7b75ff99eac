from datetime import datetime
from models.db import db

class Service(db.Model):
    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("service_providers.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # dollars

    requires_deposit = db.Column(db.Boolean, default=False, nullable=False)
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    provider = db.relationship("ServiceProvider", back_populates="services")
    time_slots = db.relationship("TimeSlot", back_populates="service", lazy=True)
