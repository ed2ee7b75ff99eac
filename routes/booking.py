from datetime import date

from flask import Blueprint, request, jsonify

from models.booking import Booking, BookingStatus
from security.rbac import require_roles
from services import slot_store
from services.booking_workflow import BookingRequest, CustomerInfo, start_booking
from services.errors import ValidationError

booking_bp = Blueprint("booking", __name__)


def _int_field(data: dict, name: str, required=True):
    value = data.get(name)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{name} missing", user_message=f"{name} is required")
        return None
    invalid = ValidationError(f"{name}={value!r}", user_message=f"{name} must be an integer")
    if isinstance(value, bool):
        raise invalid
    if isinstance(value, float):
        # fractional cents are rejected, not truncated
        if not value.is_integer():
            raise invalid
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise invalid


def _text_field(data: dict, name: str) -> str:
    value = data.get(name)
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value).strip()


def booking_json(b: Booking) -> dict:
    return {
        "id": b.id,
        "service_id": b.service_id,
        "time_slot_id": b.time_slot_id,
        "user_id": b.user_id,
        "status": b.status.value,
        "total_price": str(b.total_price),
        "customer_notes": b.customer_notes,
        "is_deposit": b.is_deposit_booking,
        "deposit_amount": str(b.deposit_amount) if b.deposit_amount is not None else None,
        "deposit_paid": b.deposit_paid,
        "final_cost": str(b.final_cost) if b.final_cost is not None else None,
        "final_payment_status": b.final_payment_status.value if b.final_payment_status else None,
        "created_at": b.created_at.isoformat(),
    }


# ---------- PUBLIC: available slots for a service ----------
@booking_bp.get("/services/<int:service_id>/slots")
def list_slots(service_id: int):
    date_str = request.args.get("date")
    day = None
    if date_str:
        try:
            day = date.fromisoformat(date_str)
        except ValueError:
            return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    slots = slot_store.list_available_slots(service_id, day)
    return jsonify([
        {
            "id": s.id,
            "service_id": s.service_id,
            "date": s.date.isoformat(),
            "start_time": s.start_time.strftime("%H:%M"),
            "end_time": s.end_time.strftime("%H:%M"),
            "is_available": s.is_available,
        }
        for s in slots
    ]), 200


# ---------- GUESTS: start checkout for a slot ----------
@booking_bp.post("/bookings/checkout")
def create_checkout():
    data = request.get_json(silent=True) or {}
    customer = data.get("customer") or {}
    if not isinstance(customer, dict):
        return jsonify(error="customer must be an object"), 400

    req = BookingRequest(
        service_id=_int_field(data, "service_id"),
        time_slot_id=_int_field(data, "time_slot_id"),
        customer=CustomerInfo(
            first_name=_text_field(customer, "first_name"),
            last_name=_text_field(customer, "last_name"),
            email=_text_field(customer, "email").lower(),
            phone=_text_field(customer, "phone"),
            zip_code=_text_field(customer, "zip_code"),
            create_account=bool(customer.get("create_account")),
        ),
        amount=_int_field(data, "amount"),
        full_price=_int_field(data, "full_price", required=False),
        is_deposit_flow=bool(data.get("is_deposit")),
        service_name=_text_field(data, "service_name"),
        provider_name=_text_field(data, "provider_name"),
        origin=request.headers.get("Origin"),
    )
    if req.full_price is None:
        req.full_price = req.amount

    url = start_booking(req)
    return jsonify(url=url), 200


# ---------- ADMIN: list all bookings ----------
@booking_bp.get("/admin/bookings")
@require_roles("ADMIN")
def list_all_bookings():
    status = request.args.get("status")
    q = Booking.query
    if status:
        try:
            q = q.filter_by(status=BookingStatus(status))
        except ValueError:
            return jsonify(error="Unknown status"), 400

    rows = q.order_by(Booking.created_at.desc()).limit(200).all()
    return jsonify([booking_json(b) for b in rows]), 200
