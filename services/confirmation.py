"""
Checkout webhook handling.

``pending -> confirmed`` is a conditional update on the booking row, so a
redelivered ``checkout.session.completed`` finds nothing to transition and
returns without side effects. Everything after the transition (slot lock
re-assertion, notifications, account provisioning) is best effort and
cannot undo the confirmation.
"""
import logging
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking, BookingStatus
from services import notifications, slot_store
from services.accounts import find_or_create_customer
from utils.audit import log_event

logger = logging.getLogger(__name__)


def _find_pending_booking(service_id, time_slot_id, session_id=None):
    """
    Pending booking behind a checkout session. Every booking row stores its
    session id, so when the event names one nothing else may match: another
    customer can hold a live checkout on the same slot.
    """
    q = Booking.query.filter_by(service_id=service_id, time_slot_id=time_slot_id, status=BookingStatus.PENDING)
    if session_id:
        return q.filter_by(checkout_session_id=session_id).first()
    return q.order_by(Booking.created_at.asc()).first()


def _int_or_none(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _customer_email(session: dict):
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


def on_payment_completed(session: dict):
    """
    Confirm the pending booking behind a completed checkout session.

    Returns the confirmed Booking, or None when there was nothing to do.
    """
    metadata = session.get("metadata") or {}
    service_id = _int_or_none(metadata.get("serviceId"))
    time_slot_id = _int_or_none(metadata.get("timeSlotId"))
    if service_id is None or time_slot_id is None:
        logger.error("Checkout session %s has no booking metadata", session.get("id"))
        return None

    booking = _find_pending_booking(service_id, time_slot_id, session.get("id"))
    if booking is None:
        logger.info(
            "No pending booking for service %s slot %s (session %s); ignoring",
            service_id, time_slot_id, session.get("id"),
        )
        return None

    first_name = metadata.get("customerFirstName") or ""
    last_name = metadata.get("customerLastName") or ""
    customer_name = f"{first_name} {last_name}".strip()
    email = _customer_email(session)

    values = {
        "status": BookingStatus.CONFIRMED,
        "customer_notes": (
            f"Name: {customer_name}, Phone: {metadata.get('customerPhone') or ''}, "
            f"Email: {email or ''}, Zip: {metadata.get('customerZipCode') or ''}"
        ),
    }
    is_deposit = metadata.get("isDepositService") == "true"
    if is_deposit:
        values["deposit_paid"] = True
        values["deposit_payment_intent_id"] = _payment_intent_id(session)
        full_price = _int_or_none(metadata.get("fullPrice"))
        if full_price is not None:
            values["total_price"] = (Decimal(full_price) / 100).quantize(Decimal("0.01"))

    result = db.session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        logger.info("Booking %s already transitioned by a concurrent delivery", booking.id)
        return None
    db.session.commit()
    booking = db.session.get(Booking, booking.id)

    logger.info("Booking %s confirmed (session %s)", booking.id, session.get("id"))
    log_event(
        "BOOKING_CONFIRMED", entity="booking", entity_id=booking.id,
        metadata={"checkout_session_id": session.get("id"), "deposit": is_deposit},
    )

    _reassert_slot_lock(booking)
    _queue_notifications(booking, customer_name, email)
    if metadata.get("createAccount") == "true" and email:
        _provision_account(booking, email, metadata)
    return booking


def _payment_intent_id(session: dict):
    intent = session.get("payment_intent")
    if intent is None or isinstance(intent, str):
        return intent
    return intent.get("id")


def _reassert_slot_lock(booking):
    try:
        slot_store.lock_slot_and_overlaps(booking.time_slot_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Slot lock re-assertion failed for booking %s: %s", booking.id, exc)


def _queue_notifications(booking, customer_name, email):
    try:
        notifications.enqueue_booking_confirmed(booking, booking.service.provider, customer_name, email)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not queue notifications for booking %s: %s", booking.id, exc)


def _provision_account(booking, email, metadata):
    try:
        user = find_or_create_customer(
            email,
            first_name=metadata.get("customerFirstName"),
            last_name=metadata.get("customerLastName"),
            phone=metadata.get("customerPhone"),
            zip_code=metadata.get("customerZipCode"),
        )
        booking.user_id = user.id
        db.session.commit()
        logger.info("Customer account %s linked to booking %s", user.id, booking.id)
    except (SQLAlchemyError, ValueError) as exc:
        db.session.rollback()
        logger.error("Account provisioning failed for booking %s: %s", booking.id, exc)


def on_checkout_expired(session: dict):
    """Fail the pending booking of an abandoned checkout and reopen its slot."""
    session_id = session.get("id")
    if not session_id:
        logger.error("Expired checkout event without a session id; ignoring")
        return None
    booking = Booking.query.filter_by(checkout_session_id=session_id, status=BookingStatus.PENDING).first()
    if booking is None:
        logger.info("No pending booking for expired session %s; ignoring", session_id)
        return None

    result = db.session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
        .values(status=BookingStatus.FAILED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        return None
    db.session.commit()
    booking = db.session.get(Booking, booking.id)

    # overlap-locked neighbours stay closed; providers reopen them from availability management
    released = slot_store.release_slot(booking.time_slot_id)
    log_event(
        "BOOKING_CHECKOUT_EXPIRED", entity="booking", entity_id=booking.id,
        metadata={"checkout_session_id": session_id, "slot_released": released},
    )
    return booking
