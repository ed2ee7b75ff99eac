from datetime import datetime
from models.db import db

class ServiceProvider(db.Model):
    __tablename__ = "service_providers"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, unique=True)

    business_name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(30), nullable=True)

    # applied to the provider-entered final cost at settlement
    default_discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    notification_preference = db.Column(db.String(10), nullable=False, default="email")
    # values: email, sms, both, none

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    services = db.relationship("Service", back_populates="provider", lazy=True)
    payment_accounts = db.relationship("PaymentAccount", back_populates="provider", lazy=True)

    def active_payment_account(self):
        for account in self.payment_accounts:
            if account.is_active:
                return account
        return None


class PaymentAccount(db.Model):
    """Provider sub-account at the payment gateway (transfer destination)."""

    __tablename__ = "provider_payment_accounts"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("service_providers.id"), nullable=False, index=True)

    gateway_account_id = db.Column(db.String(255), nullable=True, unique=True)
    charges_enabled = db.Column(db.Boolean, default=False, nullable=False)
    payouts_enabled = db.Column(db.Boolean, default=False, nullable=False)
    details_submitted = db.Column(db.Boolean, default=False, nullable=False)
    account_status = db.Column(db.String(20), nullable=False, default="pending")  # pending, complete

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    provider = db.relationship("ServiceProvider", back_populates="payment_accounts")
