import enum
from datetime import datetime
from models.db import db


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class FinalPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # claimed by a settlement request, charge in flight
    PAID = "paid"
    FAILED = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    time_slot_id = db.Column(db.Integer, db.ForeignKey("time_slots.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # null for guests

    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(BookingStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    customer_notes = db.Column(db.Text, nullable=True)
    checkout_session_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    booking_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # deposit flow only
    deposit_amount = db.Column(db.Numeric(10, 2), nullable=True)
    deposit_paid = db.Column(db.Boolean, nullable=True)
    deposit_payment_intent_id = db.Column(db.String(255), nullable=True)
    final_cost = db.Column(db.Numeric(10, 2), nullable=True)
    final_payment_status = db.Column(
        db.Enum(FinalPaymentStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=True,
    )
    final_payment_intent_id = db.Column(db.String(255), nullable=True)
    provider_notes_internal = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    service = db.relationship("Service")
    time_slot = db.relationship("TimeSlot")

    __table_args__ = (
        db.CheckConstraint("final_cost IS NULL OR final_cost >= 0", name="ck_booking_final_cost"),
    )

    @property
    def is_deposit_booking(self) -> bool:
        return self.deposit_amount is not None
