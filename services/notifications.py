"""
Notification outbox.

Confirmations only enqueue rows here; delivery happens later through
``dispatch_pending`` (the ``flask dispatch-notifications`` command), so a
failing mail server can never touch booking state.
"""
import json
import logging
from datetime import datetime

from flask import current_app

from models import db
from models.notification import NotificationOutbox
from utils.emailer import send_email

logger = logging.getLogger(__name__)

TEMPLATE_PROVIDER_NEW_BOOKING = "BOOKING_CONFIRMED_PROVIDER"
TEMPLATE_CUSTOMER_CONFIRMATION = "BOOKING_CONFIRMED_CUSTOMER"


def enqueue(recipient: str, template: str, data: dict, booking_id=None, channel="EMAIL") -> NotificationOutbox:
    row = NotificationOutbox(
        channel=channel,
        recipient=recipient,
        template=template,
        payload_json=json.dumps(data, default=str),
        booking_id=booking_id,
    )
    db.session.add(row)
    db.session.commit()
    return row


def enqueue_booking_confirmed(booking, provider, customer_name: str, customer_email: str):
    """Queue the provider and customer messages for a freshly confirmed booking."""
    slot = booking.time_slot
    data = {
        "booking_id": booking.id,
        "provider_id": provider.id,
        "business_name": provider.business_name,
        "service_name": booking.service.name,
        "customer_name": customer_name,
        "customer_email": customer_email,
        "booking_date": slot.date.strftime("%A, %B %d, %Y"),
        "booking_time": f"{slot.start_time.strftime('%H:%M')} - {slot.end_time.strftime('%H:%M')}",
        "total_price": str(booking.total_price),
    }

    queued = []
    if provider.notification_preference in ("email", "both") and provider.email:
        queued.append(enqueue(provider.email, TEMPLATE_PROVIDER_NEW_BOOKING, data, booking_id=booking.id))
    if provider.notification_preference in ("sms", "both"):
        # no SMS transport is wired; the provider still gets the dashboard entry
        logger.info("SMS notification skipped for provider %s (no SMS transport)", provider.id)
    if customer_email:
        queued.append(enqueue(customer_email, TEMPLATE_CUSTOMER_CONFIRMATION, data, booking_id=booking.id))
    return queued


def render(template: str, data: dict):
    if template == TEMPLATE_PROVIDER_NEW_BOOKING:
        subject = f"New Booking: {data['service_name']}"
        body = (
            f"You have a new booking for {data['business_name']}.\n\n"
            f"Service: {data['service_name']}\n"
            f"Customer: {data['customer_name']}\n"
            f"Customer Email: {data.get('customer_email') or '-'}\n"
            f"Date: {data['booking_date']}\n"
            f"Time: {data['booking_time']}\n"
            f"Total: ${data['total_price']}\n"
        )
    elif template == TEMPLATE_CUSTOMER_CONFIRMATION:
        subject = f"Your booking is confirmed: {data['service_name']}"
        body = (
            f"Hi {data['customer_name']},\n\n"
            f"Your {data['service_name']} appointment with {data['business_name']} is confirmed.\n"
            f"Date: {data['booking_date']}\n"
            f"Time: {data['booking_time']}\n"
        )
    else:
        raise ValueError(f"Unknown notification template: {template}")
    return subject, body


def dispatch_pending(sender=send_email, limit: int = None) -> dict:
    """Deliver queued notifications. Rows that keep failing end up FAILED."""
    max_attempts = current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
    limit = limit or current_app.config.get("NOTIFICATION_BATCH_SIZE", 50)

    rows = (
        NotificationOutbox.query
        .filter_by(status="PENDING")
        .order_by(NotificationOutbox.created_at.asc())
        .limit(limit)
        .all()
    )

    counts = {"sent": 0, "retrying": 0, "failed": 0}
    for row in rows:
        row.attempts += 1
        try:
            subject, body = render(row.template, json.loads(row.payload_json))
        except (ValueError, KeyError) as exc:
            ok, err = False, f"render failed: {exc}"
            row.attempts = max_attempts
        else:
            ok, err = sender(row.recipient, subject, body)

        if ok:
            row.status = "SENT"
            row.sent_at = datetime.utcnow()
            row.last_error = None
            counts["sent"] += 1
        elif row.attempts >= max_attempts:
            row.status = "FAILED"
            row.last_error = (err or "")[:255]
            counts["failed"] += 1
            logger.error("Notification %s to %s gave up: %s", row.id, row.recipient, err)
        else:
            row.last_error = (err or "")[:255]
            counts["retrying"] += 1
            logger.warning("Notification %s attempt %s failed: %s", row.id, row.attempts, err)
        db.session.commit()

    return counts
