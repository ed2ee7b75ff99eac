"""
Post-service settlement for deposit bookings.

The provider enters the real final cost; the provider's default discount is
applied, the deposit is subtracted and any remainder is charged off-session
against the card saved at deposit time.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking, FinalPaymentStatus
from services.errors import (
    AlreadySettled,
    BookingNotFound,
    DepositNotPaid,
    GatewayError,
    InvalidAmount,
    PaymentSetupIncomplete,
)
from services.payment_gateway import FeeSplit, get_payment_gateway, to_cents
from utils.audit import log_event

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class SettlementResult:
    booking_id: int
    final_cost: Decimal
    discounted_final_cost: Decimal
    final_balance: Decimal
    charged: bool
    payment_intent_id: str = None
    status: str = FinalPaymentStatus.PAID.value

    def to_dict(self) -> dict:
        return {
            "success": True,
            "booking_id": self.booking_id,
            "final_cost": str(self.final_cost),
            "discounted_final_cost": str(self.discounted_final_cost),
            "final_balance": str(self.final_balance),
            "charged": self.charged,
            "payment_intent_id": self.payment_intent_id,
            "status": self.status,
            "message": None if self.charged else "No additional charge needed",
        }


def parse_amount(value) -> Decimal:
    """Decimal dollars >= 0, or InvalidAmount."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"final_cost={value!r}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"final_cost={value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"final_cost={value!r}")
    return amount


def compute_final_balance(final_cost, deposit_amount, discount_pct):
    """Return (discounted_final_cost, final_balance), both rounded to cents."""
    final_cost = Decimal(str(final_cost))
    discount_pct = Decimal(str(discount_pct or 0))
    deposit_amount = Decimal(str(deposit_amount or 0))

    discounted = (final_cost * (Decimal(1) - discount_pct / Decimal(100))).quantize(CENT, rounding=ROUND_HALF_UP)
    balance = max(Decimal(0), discounted - deposit_amount).quantize(CENT, rounding=ROUND_HALF_UP)
    return discounted, balance


SETTLEABLE = (FinalPaymentStatus.PENDING, FinalPaymentStatus.FAILED)


def _check_preconditions(booking: Booking):
    if not booking.deposit_paid:
        raise DepositNotPaid(f"booking {booking.id} deposit not paid")
    if booking.final_payment_status == FinalPaymentStatus.PAID:
        raise AlreadySettled(f"booking {booking.id} already settled")
    if booking.final_payment_status == FinalPaymentStatus.PROCESSING:
        raise AlreadySettled(
            f"booking {booking.id} settlement in progress",
            user_message="Final payment is already being processed.",
        )


def claim_settlement(booking_id: int) -> bool:
    """
    Move the booking to PROCESSING if it is still settleable.
    Returns True only for the caller whose update matched, so one charge per attempt.
    """
    result = db.session.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            or_(Booking.final_payment_status.is_(None), Booking.final_payment_status.in_(SETTLEABLE)),
        )
        .values(final_payment_status=FinalPaymentStatus.PROCESSING)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def _release_settlement(booking_id: int, previous_status):
    db.session.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.final_payment_status == FinalPaymentStatus.PROCESSING)
        .values(final_payment_status=previous_status)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def _charge_account(provider):
    account = provider.active_payment_account()
    if account is None or not account.gateway_account_id or not account.charges_enabled:
        raise PaymentSetupIncomplete(
            f"provider {provider.id} cannot receive the final balance",
            user_message="Provider payment processing not available.",
        )
    return account


def settle_final_balance(booking_id: int, final_cost, provider_notes: str = None) -> SettlementResult:
    final_cost = parse_amount(final_cost)

    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFound(f"booking {booking_id}")
    _check_preconditions(booking)

    provider = booking.service.provider
    discounted, balance = compute_final_balance(
        final_cost, booking.deposit_amount, provider.default_discount_percentage
    )
    account = _charge_account(provider) if balance > 0 else None
    if balance > 0 and not booking.deposit_payment_intent_id:
        raise GatewayError(f"booking {booking.id} has no deposit payment intent")

    previous_status = booking.final_payment_status or FinalPaymentStatus.PENDING
    # a failed attempt leaves its intent id behind, so each retry gets a fresh key
    idempotency_key = f"final-balance-{booking.id}-{booking.final_payment_intent_id or 'first'}"

    if not claim_settlement(booking.id):
        raise AlreadySettled(
            f"booking {booking.id} claimed by a concurrent settlement",
            user_message="Final payment is already being processed.",
        )
    booking = db.session.get(Booking, booking_id)

    if balance == 0:
        booking.final_cost = final_cost
        booking.final_payment_status = FinalPaymentStatus.PAID
        booking.provider_notes_internal = provider_notes
        db.session.commit()
        log_event(
            "FINAL_BALANCE_WAIVED", entity="booking", entity_id=booking.id,
            metadata={"final_cost": final_cost, "discounted_final_cost": discounted},
        )
        return SettlementResult(
            booking_id=booking.id,
            final_cost=final_cost,
            discounted_final_cost=discounted,
            final_balance=balance,
            charged=False,
        )

    gateway = get_payment_gateway()
    amount_cents = to_cents(balance)
    try:
        payment_method = gateway.retrieve_payment_method(booking.deposit_payment_intent_id)
        if not payment_method.customer_id or not payment_method.payment_method_id:
            raise GatewayError(f"booking {booking.id} deposit intent has no saved payment method")

        intent = gateway.create_payment_intent(
            amount_cents=amount_cents,
            currency=current_app.config.get("PAYMENT_CURRENCY", "usd"),
            payment_method=payment_method,
            fee_split=FeeSplit.for_amount(
                amount_cents, current_app.config.get("PLATFORM_COMMISSION_RATE", 0.07), account.gateway_account_id
            ),
            metadata={
                "bookingId": str(booking.id),
                "originalDepositAmount": str(booking.deposit_amount),
                "finalCost": str(final_cost),
                "discountApplied": str(final_cost - discounted),
                "type": "final_balance",
            },
            idempotency_key=idempotency_key,
        )
    except GatewayError:
        _release_settlement(booking_id, previous_status)
        raise

    status = FinalPaymentStatus.PAID if intent.succeeded else FinalPaymentStatus.FAILED

    try:
        booking.final_cost = final_cost
        booking.final_payment_intent_id = intent.id
        booking.final_payment_status = status
        booking.provider_notes_internal = provider_notes
        db.session.commit()
    except SQLAlchemyError as exc:
        # row stays PROCESSING so nobody charges again; the intent id in the log is the reconciliation key
        db.session.rollback()
        logger.error(
            "Ledger update failed after final balance charge for booking %s (intent %s): %s",
            booking_id, intent.id, exc,
        )
    else:
        log_event(
            "FINAL_BALANCE_CHARGED" if intent.succeeded else "FINAL_BALANCE_FAILED",
            entity="booking", entity_id=booking_id,
            metadata={"payment_intent_id": intent.id, "amount_cents": amount_cents, "status": intent.status},
        )

    logger.info(
        "Final balance for booking %s: %s (intent %s, status %s)",
        booking_id, balance, intent.id, intent.status,
    )
    return SettlementResult(
        booking_id=booking_id,
        final_cost=final_cost,
        discounted_final_cost=discounted,
        final_balance=balance,
        charged=True,
        payment_intent_id=intent.id,
        status=status.value,
    )
