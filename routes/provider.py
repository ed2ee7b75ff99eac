from flask import Blueprint, request, jsonify, g

from models import db
from models.booking import Booking, BookingStatus
from models.service import Service
from routes.booking import booking_json
from security.rbac import require_provider
from services.accounts import sync_payment_account
from services.errors import BookingNotFound
from services.settlement import settle_final_balance
from utils.audit import log_event

provider_bp = Blueprint("provider", __name__)


# ---------- PROVIDER: my bookings ----------
@provider_bp.get("/provider/bookings")
@require_provider
def my_bookings():
    q = (
        Booking.query
        .join(Service, Service.id == Booking.service_id)
        .filter(Service.provider_id == g.provider.id)
    )
    status = request.args.get("status")
    if status:
        try:
            q = q.filter(Booking.status == BookingStatus(status))
        except ValueError:
            return jsonify(error="Unknown status"), 400

    rows = q.order_by(Booking.created_at.desc()).all()
    return jsonify([booking_json(b) for b in rows]), 200


# ---------- PROVIDER: charge final balance after the appointment ----------
@provider_bp.post("/bookings/<int:booking_id>/final-balance")
@require_provider
def charge_final_balance(booking_id: int):
    data = request.get_json(silent=True) or {}

    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.service.provider_id != g.provider.id:
        raise BookingNotFound(f"booking {booking_id} not owned by provider {g.provider.id}")

    notes = (data.get("provider_notes") or "").strip() or None
    result = settle_final_balance(booking_id, data.get("final_cost"), notes)

    log_event(
        "FINAL_BALANCE_REQUEST", user_id=g.user.id, entity="booking", entity_id=booking_id,
        metadata={"final_balance": result.final_balance, "charged": result.charged},
    )
    return jsonify(result.to_dict()), 200


# ---------- PROVIDER: refresh payment account status ----------
@provider_bp.post("/provider/payment-account/sync")
@require_provider
def sync_account():
    account = sync_payment_account(g.provider.id)
    if account is None:
        return jsonify(success=False, has_connection=False, message="No payment account found for this provider"), 200

    return jsonify(
        success=True,
        has_connection=True,
        status={
            "account_status": account.account_status,
            "charges_enabled": account.charges_enabled,
            "payouts_enabled": account.payouts_enabled,
        },
    ), 200
