import itertools
import json

import pytest

from app import create_app
from config import TestingConfig
from models import db
from services.errors import GatewayError
from services.payment_gateway import (
    AccountCapabilities,
    CheckoutSession,
    PaymentGateway,
    PaymentIntentResult,
    StoredPaymentMethod,
)


class FakeGateway(PaymentGateway):
    """In-memory payment gateway that records every call."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.customers = {}
        self.sessions = []
        self.expired = []
        self.intents = []
        self.accounts = {}
        self.account_lookups = []
        self.payment_method_lookups = []
        self.fail_checkout = False
        self.fail_account_lookup = False
        self.intent_status = "succeeded"
        self.on_charge = None

    def find_or_create_customer(self, details):
        if details.email not in self.customers:
            self.customers[details.email] = f"cus_{next(self._ids)}"
        return self.customers[details.email]

    def create_checkout_session(self, request):
        if self.fail_checkout:
            raise GatewayError("card_declined: upstream said no")
        session = CheckoutSession(id=f"cs_test_{next(self._ids)}", url=f"https://checkout.test/pay/{len(self.sessions) + 1}")
        self.sessions.append((session, request))
        return session

    def expire_checkout_session(self, session_id):
        self.expired.append(session_id)

    def retrieve_account(self, account_id):
        self.account_lookups.append(account_id)
        if self.fail_account_lookup:
            raise GatewayError("account lookup failed")
        return self.accounts.get(
            account_id,
            AccountCapabilities(account_id=account_id, charges_enabled=True, payouts_enabled=True, details_submitted=True),
        )

    def retrieve_payment_method(self, payment_intent_id):
        self.payment_method_lookups.append(payment_intent_id)
        return StoredPaymentMethod(customer_id="cus_saved", payment_method_id="pm_saved")

    def create_payment_intent(self, amount_cents, currency, payment_method, fee_split, metadata, idempotency_key=None):
        if self.on_charge is not None:
            self.on_charge()
        intent = PaymentIntentResult(id=f"pi_final_{next(self._ids)}", status=self.intent_status)
        self.intents.append({
            "intent": intent,
            "amount_cents": amount_cents,
            "currency": currency,
            "payment_method": payment_method,
            "fee_split": fee_split,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        return intent

    def construct_event(self, payload, signature, secret):
        if signature != "t=1,v1=valid":
            raise ValueError("No signatures found matching the expected signature for payload")
        return json.loads(payload)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(gateway):
    app = create_app(TestingConfig, payment_gateway=gateway)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
