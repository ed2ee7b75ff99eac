import json
from decimal import Decimal

import pytest

from models import db
from models.booking import Booking, BookingStatus, FinalPaymentStatus
from models.provider import ServiceProvider
from services.payment_gateway import AccountCapabilities
from tests.factories import login, make_provider, make_service, make_slot, make_user

SIGNATURE = {"Stripe-Signature": "t=1,v1=valid"}


def _checkout_body(service, slot, **overrides):
    body = {
        "service_id": service.id,
        "time_slot_id": slot.id,
        "amount": 10000,
        "full_price": 10000,
        "is_deposit": False,
        "service_name": "Blowout",
        "provider_name": "Glow Studio",
        "customer": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "Ada@Example.com",
            "phone": "555-0100",
            "zip_code": "10001",
            "create_account": False,
        },
    }
    body.update(overrides)
    return body


@pytest.fixture
def catalog(app):
    provider = make_provider()
    service = make_service(provider)
    slot = make_slot(service, "10:00", "11:00")
    return provider, service, slot


def _provider_login(client, provider, email="owner@glow.test"):
    user = make_user(email, roles=("PROVIDER",))
    db.session.get(ServiceProvider, provider.id).user_id = user.id
    db.session.commit()
    return login(client, email)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_checkout_returns_hosted_payment_url(client, catalog, gateway):
    _, service, slot = catalog

    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot))

    assert resp.status_code == 200
    assert resp.get_json()["url"] == gateway.sessions[0][0].url
    assert "ada@example.com" in gateway.customers


def test_checkout_for_taken_slot_gets_actionable_error(client, catalog):
    _, service, slot = catalog
    client.post("/bookings/checkout", json=_checkout_body(service, slot))

    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot))

    assert resp.status_code == 409
    body = resp.get_json()
    assert body["code"] == "SLOT_UNAVAILABLE"
    assert "no longer available" in body["error"]


def test_gateway_failure_returns_generic_message(client, catalog, gateway):
    _, service, slot = catalog
    gateway.fail_checkout = True

    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot))

    assert resp.status_code == 502
    body = resp.get_json()
    assert body["code"] == "GATEWAY_ERROR"
    assert "card_declined" not in body["error"]
    assert "try again" in body["error"]


def test_checkout_requires_integer_ids(client, catalog):
    _, service, slot = catalog
    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot, time_slot_id="abc"))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_list_slots_hides_booked_and_overlapping(client, catalog):
    provider, service, slot = catalog
    later = make_slot(service, "11:00", "12:00")
    client.post("/bookings/checkout", json=_checkout_body(service, slot))

    resp = client.get(f"/services/{service.id}/slots?date=2026-11-03")

    assert resp.status_code == 200
    assert [s["id"] for s in resp.get_json()] == [later.id]


def test_list_slots_rejects_bad_date(client, catalog):
    _, service, _ = catalog
    assert client.get(f"/services/{service.id}/slots?date=03/11/2026").status_code == 400


def test_webhook_rejects_bad_signature(client):
    resp = client.post(
        "/webhooks/stripe",
        data=json.dumps({"type": "checkout.session.completed"}),
        headers={"Stripe-Signature": "t=1,v1=forged"},
    )
    assert resp.status_code == 400


def test_webhook_confirms_booking_once(client, catalog, gateway):
    _, service, slot = catalog
    client.post("/bookings/checkout", json=_checkout_body(service, slot))
    session, checkout = gateway.sessions[0]
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session.id,
            "payment_intent": "pi_1",
            "customer_details": {"email": "ada@example.com"},
            "metadata": checkout.metadata,
        }},
    }

    first = client.post("/webhooks/stripe", data=json.dumps(event), headers=SIGNATURE)
    second = client.post("/webhooks/stripe", data=json.dumps(event), headers=SIGNATURE)

    assert first.status_code == 200
    assert first.get_json()["booking_id"] is not None
    assert second.status_code == 200
    assert second.get_json()["booking_id"] is None

    db.session.expire_all()
    assert Booking.query.filter_by(status=BookingStatus.CONFIRMED).count() == 1


def test_webhook_acknowledges_other_events(client):
    event = {"id": "evt_2", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_9"}}}
    resp = client.post("/webhooks/stripe", data=json.dumps(event), headers=SIGNATURE)
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}


def _settleable_booking(service, slot):
    booking = Booking(
        service_id=service.id,
        time_slot_id=slot.id,
        total_price=Decimal("200.00"),
        status=BookingStatus.CONFIRMED,
        deposit_amount=Decimal("50.00"),
        deposit_paid=True,
        deposit_payment_intent_id="pi_deposit",
        final_payment_status=FinalPaymentStatus.PENDING,
    )
    db.session.add(booking)
    db.session.commit()
    return booking


def test_final_balance_requires_login(client, catalog):
    _, service, slot = catalog
    booking = _settleable_booking(service, slot)
    resp = client.post(f"/bookings/{booking.id}/final-balance", json={"final_cost": 100})
    assert resp.status_code == 401


def test_provider_settles_final_balance(client, catalog, gateway):
    provider, service, slot = catalog
    booking = _settleable_booking(service, slot)
    headers = _provider_login(client, provider)

    resp = client.post(
        f"/bookings/{booking.id}/final-balance",
        json={"final_cost": 200, "provider_notes": "Added toner"},
        headers=headers,
    )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["final_balance"] == "150.00"
    assert body["charged"] is True
    assert gateway.intents[0]["amount_cents"] == 15000

    again = client.post(f"/bookings/{booking.id}/final-balance", json={"final_cost": 200}, headers=headers)
    assert again.status_code == 409
    assert again.get_json()["code"] == "ALREADY_SETTLED"
    assert len(gateway.intents) == 1


def test_settlement_rejects_negative_cost(client, catalog, gateway):
    provider, service, slot = catalog
    booking = _settleable_booking(service, slot)
    headers = _provider_login(client, provider)

    resp = client.post(f"/bookings/{booking.id}/final-balance", json={"final_cost": -5}, headers=headers)

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "INVALID_AMOUNT"
    assert gateway.intents == []


def test_settlement_requires_csrf_header(client, catalog):
    provider, service, slot = catalog
    booking = _settleable_booking(service, slot)
    _provider_login(client, provider)

    resp = client.post(f"/bookings/{booking.id}/final-balance", json={"final_cost": 100})
    assert resp.status_code == 403


def test_other_provider_cannot_settle(client, catalog):
    _, service, slot = catalog
    booking = _settleable_booking(service, slot)
    rival = make_provider(business_name="Rival", account_id="acct_rival", email="rival@example.com")
    headers = _provider_login(client, rival, email="rival@example.com")

    resp = client.post(f"/bookings/{booking.id}/final-balance", json={"final_cost": 100}, headers=headers)
    assert resp.status_code == 404


def test_provider_lists_own_bookings(client, catalog):
    provider, service, slot = catalog
    booking = _settleable_booking(service, slot)
    _provider_login(client, provider)

    resp = client.get("/provider/bookings")

    assert resp.status_code == 200
    assert [b["id"] for b in resp.get_json()] == [booking.id]


def test_customer_cannot_use_provider_routes(client, app):
    make_user("guest@example.com", roles=("CUSTOMER",))
    login(client, "guest@example.com")
    assert client.get("/provider/bookings").status_code == 403


def test_admin_lists_bookings_by_status(client, catalog):
    _, service, slot = catalog
    _settleable_booking(service, slot)
    make_user("admin@example.com", roles=("ADMIN",))
    login(client, "admin@example.com")

    assert len(client.get("/admin/bookings?status=confirmed").get_json()) == 1
    assert client.get("/admin/bookings?status=pending").get_json() == []
    assert client.get("/admin/bookings?status=bogus").status_code == 400


def test_provider_syncs_payment_account(client, catalog, gateway):
    provider, _, _ = catalog
    gateway.accounts["acct_glow"] = AccountCapabilities(
        account_id="acct_glow", charges_enabled=False, payouts_enabled=True, details_submitted=False,
    )
    headers = _provider_login(client, provider)

    resp = client.post("/provider/payment-account/sync", headers=headers)

    assert resp.status_code == 200
    assert resp.get_json()["status"] == {
        "account_status": "pending",
        "charges_enabled": False,
        "payouts_enabled": True,
    }


def test_login_me_and_logout(client, app):
    make_user("admin@example.com", roles=("ADMIN",))
    headers = login(client, "admin@example.com")

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["roles"] == ["ADMIN"]

    assert client.post("/auth/logout", headers=headers).status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_login_rejects_wrong_password(client, app):
    make_user("admin@example.com", roles=("ADMIN",))
    resp = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert resp.status_code == 401


def test_checkout_accepts_numeric_contact_fields(client, catalog):
    _, service, slot = catalog
    body = _checkout_body(service, slot)
    body["customer"].update(phone=5550100, zip_code=10001)

    resp = client.post("/bookings/checkout", json=body)

    assert resp.status_code == 200
    db.session.expire_all()
    booking = Booking.query.filter_by(time_slot_id=slot.id).one()
    assert "Phone: 5550100" in booking.customer_notes
    assert "Zip: 10001" in booking.customer_notes


@pytest.mark.parametrize("amount", [99.99, "99.99"])
def test_checkout_rejects_fractional_amounts(client, catalog, gateway, amount):
    _, service, slot = catalog

    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot, amount=amount))

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"
    assert gateway.sessions == []


def test_checkout_accepts_whole_number_floats(client, catalog, gateway):
    _, service, slot = catalog

    resp = client.post("/bookings/checkout", json=_checkout_body(service, slot, amount=10000.0, full_price=10000.0))

    assert resp.status_code == 200
    assert gateway.sessions[0][1].line_item.amount_cents == 10000
