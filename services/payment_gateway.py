"""
Payment gateway port and its Stripe Connect implementation.

The workflow only talks to ``PaymentGateway``; tests substitute a fake. The
Stripe adapter translates every ``stripe.StripeError`` into ``GatewayError``
so callers never see SDK types.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import stripe
from flask import current_app

from services.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeSplit:
    """Platform commission taken from a charge; the rest goes to the provider."""

    destination_account_id: str
    application_fee_cents: int

    @classmethod
    def for_amount(cls, amount_cents: int, rate, destination_account_id: str) -> "FeeSplit":
        return cls(
            destination_account_id=destination_account_id,
            application_fee_cents=commission_cents(amount_cents, rate),
        )


@dataclass(frozen=True)
class CheckoutLineItem:
    name: str
    description: str
    amount_cents: int
    currency: str = "usd"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class AccountCapabilities:
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


@dataclass(frozen=True)
class StoredPaymentMethod:
    customer_id: str | None
    payment_method_id: str | None


@dataclass(frozen=True)
class PaymentIntentResult:
    id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class CustomerDetails:
    email: str
    name: str | None = None
    phone: str | None = None
    zip_code: str | None = None


@dataclass
class CheckoutRequest:
    customer_id: str
    line_item: CheckoutLineItem
    metadata: dict[str, str]
    fee_split: FeeSplit
    success_url: str
    cancel_url: str
    save_payment_method: bool = False


def commission_cents(amount_cents: int, rate) -> int:
    """round-half-up(amount * rate) in minor units."""
    value = Decimal(int(amount_cents)) * Decimal(str(rate))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    @abstractmethod
    def find_or_create_customer(self, details: CustomerDetails) -> str:
        """Return a gateway customer id, reusing one that matches the email."""
        raise NotImplementedError

    @abstractmethod
    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def expire_checkout_session(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def retrieve_account(self, account_id: str) -> AccountCapabilities:
        raise NotImplementedError

    @abstractmethod
    def retrieve_payment_method(self, payment_intent_id: str) -> StoredPaymentMethod:
        """Customer and payment method captured by an earlier payment intent."""
        raise NotImplementedError

    @abstractmethod
    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        payment_method: StoredPaymentMethod,
        fee_split: FeeSplit,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntentResult:
        """Charge a saved payment method off-session and confirm immediately.

        Calls repeating an ``idempotency_key`` return the first charge instead of creating another.
        """
        raise NotImplementedError

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str, secret: str) -> dict:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str | None, api_version: str | None = None):
        self.api_key = api_key
        self.api_version = api_version

    def _request_options(self) -> dict:
        if not self.api_key:
            raise GatewayError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        opts = {"api_key": self.api_key}
        if self.api_version:
            opts["stripe_version"] = self.api_version
        return opts

    def find_or_create_customer(self, details: CustomerDetails) -> str:
        opts = self._request_options()
        try:
            existing = stripe.Customer.list(email=details.email, limit=1, **opts)
            if existing.data:
                return existing.data[0].id
            customer = stripe.Customer.create(
                email=details.email,
                name=details.name,
                phone=details.phone,
                address={"postal_code": details.zip_code} if details.zip_code else None,
                **opts,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe customer lookup/create failed: %s", exc)
            raise GatewayError(f"customer create failed: {exc}") from exc
        return customer.id

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        opts = self._request_options()
        payment_intent_data = {
            "application_fee_amount": request.fee_split.application_fee_cents,
            "transfer_data": {"destination": request.fee_split.destination_account_id},
        }
        if request.save_payment_method:
            payment_intent_data["setup_future_usage"] = "off_session"

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer=request.customer_id,
                line_items=[{
                    "price_data": {
                        "currency": request.line_item.currency,
                        "product_data": {
                            "name": request.line_item.name,
                            "description": request.line_item.description,
                        },
                        "unit_amount": request.line_item.amount_cents,
                    },
                    "quantity": 1,
                }],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                payment_intent_data=payment_intent_data,
                metadata=request.metadata,
                **opts,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session create failed: %s", exc)
            raise GatewayError(f"checkout session create failed: {exc}") from exc
        return CheckoutSession(id=session["id"], url=session["url"])

    def expire_checkout_session(self, session_id: str) -> None:
        opts = self._request_options()
        try:
            stripe.checkout.Session.expire(session_id, **opts)
        except stripe.StripeError as exc:
            raise GatewayError(f"checkout session expire failed: {exc}") from exc

    def retrieve_account(self, account_id: str) -> AccountCapabilities:
        opts = self._request_options()
        try:
            account = stripe.Account.retrieve(account_id, **opts)
        except stripe.StripeError as exc:
            logger.error("Stripe account retrieval failed for %s: %s", account_id, exc)
            raise GatewayError(f"account retrieve failed: {exc}") from exc
        return AccountCapabilities(
            account_id=account["id"],
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
        )

    def retrieve_payment_method(self, payment_intent_id: str) -> StoredPaymentMethod:
        opts = self._request_options()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, **opts)
        except stripe.StripeError as exc:
            raise GatewayError(f"payment intent retrieve failed: {exc}") from exc
        return StoredPaymentMethod(
            customer_id=_object_id(intent.get("customer")),
            payment_method_id=_object_id(intent.get("payment_method")),
        )

    def create_payment_intent(self, amount_cents, currency, payment_method, fee_split, metadata, idempotency_key=None):
        opts = self._request_options()
        if idempotency_key:
            opts["idempotency_key"] = idempotency_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                customer=payment_method.customer_id,
                payment_method=payment_method.payment_method_id,
                off_session=True,
                confirm=True,
                application_fee_amount=fee_split.application_fee_cents,
                transfer_data={"destination": fee_split.destination_account_id},
                metadata=metadata,
                **opts,
            )
        except stripe.CardError as exc:
            # declined off-session charges still produce an intent we can record
            intent = getattr(exc.error, "payment_intent", None) if exc.error else None
            if intent and intent.get("id"):
                logger.warning("Off-session charge declined: %s", exc.user_message)
                return PaymentIntentResult(id=intent["id"], status=intent.get("status") or "requires_payment_method")
            raise GatewayError(f"payment intent create failed: {exc}") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe payment intent create failed: %s", exc)
            raise GatewayError(f"payment intent create failed: {exc}") from exc
        return PaymentIntentResult(id=intent["id"], status=intent["status"])

    def construct_event(self, payload: bytes, signature: str, secret: str) -> dict:
        return stripe.Webhook.construct_event(payload, signature, secret)


def _object_id(value):
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
