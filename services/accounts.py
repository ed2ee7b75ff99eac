import logging

from models import db
from models.provider import PaymentAccount, ServiceProvider
from models.user import Role, User
from services.errors import GatewayError
from services.payment_gateway import get_payment_gateway
from utils.audit import log_event

logger = logging.getLogger(__name__)


def find_or_create_customer(email: str, first_name=None, last_name=None, phone=None, zip_code=None) -> User:
    """Customer accounts created at checkout have no password; they sign in by reset link."""
    email = (email or "").strip().lower()
    if not email:
        raise ValueError("email required")

    user = User.query.filter_by(email=email).first()
    if user:
        return user

    user = User(email=email, first_name=first_name, last_name=last_name, phone=phone, zip_code=zip_code)
    db.session.add(user)
    db.session.flush()

    customer_role = Role.query.filter_by(name="CUSTOMER").first()
    if customer_role:
        user.roles.append(customer_role)

    db.session.commit()
    log_event("CUSTOMER_ACCOUNT_PROVISIONED", user_id=user.id, entity="user", entity_id=user.id)
    return user


def sync_payment_account(provider_id: int):
    """Refresh the provider's capability flags from the gateway. Returns the account or None."""
    account = PaymentAccount.query.filter_by(provider_id=provider_id, is_active=True).first()
    if not account or not account.gateway_account_id:
        logger.info("No payment account to sync for provider %s", provider_id)
        return None

    caps = get_payment_gateway().retrieve_account(account.gateway_account_id)
    account.charges_enabled = caps.charges_enabled
    account.payouts_enabled = caps.payouts_enabled
    account.details_submitted = caps.details_submitted
    account.account_status = "complete" if caps.details_submitted else "pending"
    db.session.commit()

    log_event(
        "PAYMENT_ACCOUNT_SYNCED", entity="payment_account", entity_id=account.id,
        metadata={"charges_enabled": caps.charges_enabled, "payouts_enabled": caps.payouts_enabled},
    )
    return account


def sync_all_payment_accounts() -> dict:
    counts = {"synced": 0, "failed": 0}
    provider_ids = [
        pid for (pid,) in
        db.session.query(PaymentAccount.provider_id)
        .join(ServiceProvider, ServiceProvider.id == PaymentAccount.provider_id)
        .filter(PaymentAccount.is_active.is_(True), PaymentAccount.gateway_account_id.isnot(None))
        .all()
    ]
    for pid in provider_ids:
        try:
            sync_payment_account(pid)
            counts["synced"] += 1
        except GatewayError as exc:
            db.session.rollback()
            counts["failed"] += 1
            logger.error("Payment account sync failed for provider %s: %s", pid, exc)
    return counts
