import logging

from flask import Blueprint, current_app, request, jsonify

from services.confirmation import on_checkout_expired, on_payment_completed
from services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.get_data()

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = get_payment_gateway().construct_event(payload, sig_header, endpoint_secret)
    except Exception as exc:
        # stripe raises SignatureVerificationError or ValueError for malformed payloads
        logger.warning("Stripe webhook rejected: %s", exc)
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event.get("type")
    logger.info("Received webhook event %s (%s)", event.get("id"), event_type)
    session = event["data"]["object"]

    # a 500 makes the gateway redeliver; confirmation is idempotent
    if event_type == "checkout.session.completed":
        booking = on_payment_completed(session)
        return jsonify(received=True, booking_id=booking.id if booking else None), 200
    if event_type == "checkout.session.expired":
        booking = on_checkout_expired(session)
        return jsonify(received=True, booking_id=booking.id if booking else None), 200
    if event_type == "payment_intent.succeeded":
        logger.info("Payment intent succeeded: %s", session.get("id"))
    else:
        logger.info("Unhandled event type: %s", event_type)

    return jsonify(received=True), 200
