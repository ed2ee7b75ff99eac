from decimal import Decimal

import pytest

from models import db
from models.booking import Booking, BookingStatus, FinalPaymentStatus
from services import settlement
from services.errors import AlreadySettled, DepositNotPaid, GatewayError, InvalidAmount, PaymentSetupIncomplete
from services.settlement import claim_settlement, compute_final_balance, settle_final_balance
from tests.factories import make_provider, make_service, make_slot


def _deposit_booking(provider, deposit_paid=True, final_status=FinalPaymentStatus.PENDING):
    service = make_service(provider, requires_deposit=True)
    slot = make_slot(service, "09:00", "10:00", available=False)
    booking = Booking(
        service_id=service.id,
        time_slot_id=slot.id,
        total_price=Decimal("200.00"),
        status=BookingStatus.CONFIRMED,
        deposit_amount=Decimal("50.00"),
        deposit_paid=deposit_paid,
        deposit_payment_intent_id="pi_deposit" if deposit_paid else None,
        final_payment_status=final_status,
    )
    db.session.add(booking)
    db.session.commit()
    return booking


def _reload(booking_id):
    db.session.expire_all()
    return db.session.get(Booking, booking_id)


def test_compute_final_balance_applies_discount_then_deposit():
    discounted, balance = compute_final_balance(200, Decimal("50"), 10)
    assert discounted == Decimal("180.00")
    assert balance == Decimal("130.00")


def test_compute_final_balance_never_goes_negative():
    discounted, balance = compute_final_balance(40, Decimal("50"), 10)
    assert discounted == Decimal("36.00")
    assert balance == Decimal("0.00")


def test_balance_is_charged_off_session_with_commission(app, gateway):
    booking = _deposit_booking(make_provider(discount=10))

    result = settle_final_balance(booking.id, 200, "Long hair surcharge")

    assert result.charged is True
    assert result.final_balance == Decimal("130.00")
    assert result.discounted_final_cost == Decimal("180.00")
    assert gateway.payment_method_lookups == ["pi_deposit"]

    charge = gateway.intents[0]
    assert charge["amount_cents"] == 13000
    assert charge["fee_split"].application_fee_cents == 910
    assert charge["fee_split"].destination_account_id == "acct_glow"
    assert charge["payment_method"].payment_method_id == "pm_saved"
    assert charge["metadata"]["type"] == "final_balance"

    stored = _reload(booking.id)
    assert stored.final_cost == Decimal("200.00")
    assert stored.final_payment_status == FinalPaymentStatus.PAID
    assert stored.final_payment_intent_id == result.payment_intent_id
    assert stored.provider_notes_internal == "Long hair surcharge"


def test_deposit_covering_cost_settles_without_charge(app, gateway):
    booking = _deposit_booking(make_provider(discount=10))

    result = settle_final_balance(booking.id, 40)

    assert result.charged is False
    assert result.final_balance == Decimal("0.00")
    assert gateway.intents == []
    assert gateway.payment_method_lookups == []
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PAID


def test_second_settlement_is_rejected_without_charging(app, gateway):
    booking = _deposit_booking(make_provider())

    settle_final_balance(booking.id, 120)
    with pytest.raises(AlreadySettled):
        settle_final_balance(booking.id, 120)

    assert len(gateway.intents) == 1


def test_negative_cost_is_rejected_before_gateway(app, gateway):
    booking = _deposit_booking(make_provider())

    with pytest.raises(InvalidAmount):
        settle_final_balance(booking.id, -5)

    assert gateway.intents == []
    assert gateway.payment_method_lookups == []
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PENDING


@pytest.mark.parametrize("value", [None, "abc", "NaN", True])
def test_non_numeric_cost_is_rejected(app, value):
    booking = _deposit_booking(make_provider())
    with pytest.raises(InvalidAmount):
        settle_final_balance(booking.id, value)


def test_unpaid_deposit_is_rejected(app, gateway):
    booking = _deposit_booking(make_provider(), deposit_paid=False)

    with pytest.raises(DepositNotPaid):
        settle_final_balance(booking.id, 100)
    assert gateway.intents == []


def test_declined_charge_is_recorded_and_can_be_retried(app, gateway):
    booking = _deposit_booking(make_provider())
    gateway.intent_status = "requires_payment_method"

    first = settle_final_balance(booking.id, 150)

    stored = _reload(booking.id)
    assert first.status == "failed"
    assert stored.final_payment_status == FinalPaymentStatus.FAILED
    assert stored.final_payment_intent_id == first.payment_intent_id

    gateway.intent_status = "succeeded"
    second = settle_final_balance(booking.id, 150)

    assert second.status == "paid"
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PAID
    assert len(gateway.intents) == 2
    first_key, retry_key = (charge["idempotency_key"] for charge in gateway.intents)
    assert first_key == f"final-balance-{booking.id}-first"
    assert retry_key == f"final-balance-{booking.id}-{first.payment_intent_id}"


def test_provider_without_charges_cannot_collect_balance(app, gateway):
    booking = _deposit_booking(make_provider(charges_enabled=False))

    with pytest.raises(PaymentSetupIncomplete):
        settle_final_balance(booking.id, 150)
    assert gateway.intents == []


def test_claim_settlement_admits_one_caller(app):
    booking = _deposit_booking(make_provider())

    assert claim_settlement(booking.id) is True
    assert claim_settlement(booking.id) is False
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PROCESSING


def test_request_arriving_during_charge_is_rejected(app, gateway):
    booking = _deposit_booking(make_provider())
    rejected = []

    def second_request():
        gateway.on_charge = None
        with pytest.raises(AlreadySettled):
            settle_final_balance(booking.id, 150)
        rejected.append(booking.id)

    gateway.on_charge = second_request

    result = settle_final_balance(booking.id, 150)

    assert rejected == [booking.id]
    assert result.status == "paid"
    assert len(gateway.intents) == 1
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PAID


def test_losing_the_claim_skips_the_charge(app, gateway, monkeypatch):
    booking = _deposit_booking(make_provider())
    # both requests read the booking as unsettled; the other one claims first
    monkeypatch.setattr(settlement, "_check_preconditions", lambda booking: None)
    assert claim_settlement(booking.id) is True

    with pytest.raises(AlreadySettled):
        settle_final_balance(booking.id, 150)

    assert gateway.intents == []
    assert gateway.payment_method_lookups == []


def test_gateway_error_releases_claim_for_retry(app, gateway):
    booking = _deposit_booking(make_provider())

    def unreachable():
        raise GatewayError("connection reset")

    gateway.on_charge = unreachable
    with pytest.raises(GatewayError):
        settle_final_balance(booking.id, 150)
    assert _reload(booking.id).final_payment_status == FinalPaymentStatus.PENDING

    gateway.on_charge = None
    assert settle_final_balance(booking.id, 150).status == "paid"
