"""
Booking workflow: slot selection -> hosted checkout -> pending booking.

Order of operations for ``start_booking``:

1. validate the request and the provider's payment account (no side effects)
2. claim the slot with a conditional update (the admission decision)
3. create the gateway customer and checkout session
4. insert the pending booking
5. lock overlapping slots of the same provider (best effort)

Steps 3 and 4 undo the claim when they fail, so a rejected request never
leaves a slot unavailable.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking, BookingStatus, FinalPaymentStatus
from models.service import Service
from models.time_slot import TimeSlot
from services import slot_store
from services.errors import (
    GatewayError,
    InvalidAmount,
    PaymentSetupIncomplete,
    PersistenceError,
    ServiceNotFound,
    SlotUnavailable,
    ValidationError,
)
from services.payment_gateway import (
    CheckoutLineItem,
    CheckoutRequest,
    CustomerDetails,
    FeeSplit,
    get_payment_gateway,
)
from utils.audit import log_event

logger = logging.getLogger(__name__)


@dataclass
class CustomerInfo:
    first_name: str
    last_name: str
    email: str
    phone: str = ""
    zip_code: str = ""
    create_account: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def contact_line(self, email: str = None) -> str:
        return (
            f"Name: {self.full_name}, Phone: {self.phone}, "
            f"Email: {email or self.email}, Zip: {self.zip_code}"
        )


@dataclass
class BookingRequest:
    service_id: int
    time_slot_id: int
    customer: CustomerInfo
    amount: int  # minor units charged now (deposit or full price)
    full_price: int  # minor units
    is_deposit_flow: bool
    service_name: str = ""
    provider_name: str = ""
    origin: str = None


def _cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def _validate(req: BookingRequest):
    if not req.customer.email or "@" not in req.customer.email:
        raise ValidationError("customer email missing", user_message="A valid email address is required.")
    if not isinstance(req.amount, int) or req.amount <= 0:
        raise InvalidAmount(f"amount={req.amount!r}", user_message="Amount must be a positive number of cents.")
    if not isinstance(req.full_price, int) or req.full_price < req.amount:
        raise InvalidAmount(
            f"full_price={req.full_price!r} amount={req.amount!r}",
            user_message="Full price must be at least the amount charged now.",
        )


def _resolve_destination_account(service: Service) -> str:
    """Return the provider's gateway account id, or raise PaymentSetupIncomplete."""
    provider = service.provider
    account = provider.active_payment_account() if provider else None

    if account is None:
        raise PaymentSetupIncomplete(f"provider {service.provider_id} has no payment account")
    if not account.gateway_account_id:
        raise PaymentSetupIncomplete(
            f"provider {provider.id} payment account missing gateway id",
            user_message=(
                "This provider has not completed their payment setup. "
                "Please contact the provider or try a different service."
            ),
        )
    if not account.charges_enabled:
        raise PaymentSetupIncomplete(
            f"provider {provider.id} charges disabled locally",
            user_message=(
                "This provider has not activated payment processing yet. "
                "Please contact the provider or try a different service."
            ),
        )

    unavailable = (
        "This provider's payment processing is temporarily unavailable. "
        "Please contact the provider or try a different service."
    )
    try:
        caps = get_payment_gateway().retrieve_account(account.gateway_account_id)
    except GatewayError as exc:
        raise PaymentSetupIncomplete(str(exc), user_message=unavailable) from exc
    if not caps.charges_enabled:
        raise PaymentSetupIncomplete(
            f"gateway reports charges disabled for {account.gateway_account_id}",
            user_message=unavailable,
        )
    return account.gateway_account_id


def _checkout_urls(origin: str):
    base = (origin or current_app.config.get("FRONTEND_BASE_URL") or "").rstrip("/")
    success = base + current_app.config.get("CHECKOUT_SUCCESS_PATH", "/booking-success?session_id={CHECKOUT_SESSION_ID}")
    cancel = base + current_app.config.get("CHECKOUT_CANCEL_PATH", "/services")
    return success, cancel


def _session_metadata(req: BookingRequest) -> dict:
    # echoed back by the gateway on checkout.session.completed
    return {
        "serviceId": str(req.service_id),
        "timeSlotId": str(req.time_slot_id),
        "customerFirstName": req.customer.first_name,
        "customerLastName": req.customer.last_name,
        "customerPhone": req.customer.phone or "",
        "customerZipCode": req.customer.zip_code or "",
        "createAccount": "true" if req.customer.create_account else "false",
        "isDepositService": "true" if req.is_deposit_flow else "false",
        "fullPrice": str(req.full_price if req.is_deposit_flow else req.amount),
    }


def _build_checkout(req: BookingRequest, service: Service, customer_id: str, destination: str) -> CheckoutRequest:
    service_name = req.service_name or service.name
    provider_name = req.provider_name or service.provider.business_name
    if req.is_deposit_flow:
        name = f"{service_name} (Deposit)"
        description = f"${_cents_to_dollars(req.amount)} deposit for {service_name} by {provider_name}"
    else:
        name = service_name
        description = f"Service by {provider_name}"

    success_url, cancel_url = _checkout_urls(req.origin)
    return CheckoutRequest(
        customer_id=customer_id,
        line_item=CheckoutLineItem(
            name=name,
            description=description,
            amount_cents=req.amount,
            currency=current_app.config.get("PAYMENT_CURRENCY", "usd"),
        ),
        metadata=_session_metadata(req),
        fee_split=FeeSplit.for_amount(
            req.amount, current_app.config.get("PLATFORM_COMMISSION_RATE", 0.07), destination
        ),
        success_url=success_url,
        cancel_url=cancel_url,
        save_payment_method=req.is_deposit_flow,
    )


def _new_booking(req: BookingRequest, session_id: str) -> Booking:
    booking = Booking(
        service_id=req.service_id,
        time_slot_id=req.time_slot_id,
        user_id=None,
        total_price=_cents_to_dollars(req.full_price if req.is_deposit_flow else req.amount),
        status=BookingStatus.PENDING,
        customer_notes=req.customer.contact_line(),
        checkout_session_id=session_id,
    )
    if req.is_deposit_flow:
        booking.deposit_amount = _cents_to_dollars(req.amount)
        booking.deposit_paid = False
        booking.final_cost = None
        booking.final_payment_status = FinalPaymentStatus.PENDING
    return booking


def start_booking(req: BookingRequest) -> str:
    """Start checkout for a slot and return the hosted payment page URL."""
    _validate(req)

    service = db.session.get(Service, req.service_id)
    if service is None or not service.is_active:
        raise ServiceNotFound(f"service {req.service_id}")

    slot = db.session.get(TimeSlot, req.time_slot_id)
    if slot is None or slot.service_id != service.id:
        raise SlotUnavailable(f"slot {req.time_slot_id} not found for service {service.id}")

    destination = _resolve_destination_account(service)

    if not slot_store.claim_slot(slot.id):
        logger.info("Slot %s no longer available", slot.id)
        raise SlotUnavailable(f"slot {slot.id} already claimed")

    gateway = get_payment_gateway()
    try:
        customer_id = gateway.find_or_create_customer(CustomerDetails(
            email=req.customer.email,
            name=req.customer.full_name,
            phone=req.customer.phone or None,
            zip_code=req.customer.zip_code or None,
        ))
        session = gateway.create_checkout_session(_build_checkout(req, service, customer_id, destination))
    except GatewayError:
        slot_store.release_slot(slot.id)
        raise

    booking = _new_booking(req, session.id)
    db.session.add(booking)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Booking insert failed for slot %s (session %s): %s", slot.id, session.id, exc)
        slot_store.release_slot(slot.id)
        try:
            gateway.expire_checkout_session(session.id)
        except GatewayError as expire_exc:
            logger.error("Could not expire orphaned checkout session %s: %s", session.id, expire_exc)
        raise PersistenceError("failed to create booking") from exc

    logger.info("Booking %s created pending for slot %s", booking.id, slot.id)

    try:
        slot_store.lock_slot_and_overlaps(slot.id)
    except SQLAlchemyError as exc:
        # checkout already exists; the webhook re-asserts the lock
        db.session.rollback()
        logger.error("Overlap lock failed for slot %s: %s", slot.id, exc)

    log_event(
        "BOOKING_CHECKOUT_STARTED", entity="booking", entity_id=booking.id,
        metadata={
            "slot_id": slot.id,
            "checkout_session_id": session.id,
            "amount": req.amount,
            "deposit": req.is_deposit_flow,
        },
    )
    return session.url
