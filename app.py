import logging

import click
from flask import Flask, request, jsonify
from flask_migrate import Migrate
from sqlalchemy import inspect

from config import Config
from models import db
from models.provider import ServiceProvider
from models.user import User, Role
from routes import health_bp, auth_bp, booking_bp, provider_bp, webhook_bp
from security.csrf import check_csrf
from services.errors import BookingError
from services.payment_gateway import StripeGateway
from utils.auth_context import load_current_user
from utils.seed import seed_roles

logger = logging.getLogger(__name__)

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/health",
    "/bookings/checkout",
    "/webhooks/stripe",
}


def create_app(config_object=None, payment_gateway=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(provider_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    app.extensions["payment_gateway"] = payment_gateway or StripeGateway(
        app.config.get("STRIPE_SECRET_KEY"),
        app.config.get("STRIPE_API_VERSION"),
    )

    with app.app_context():
        if app.config.get("TESTING"):
            db.create_all()
        # roles table is absent until the first `flask db upgrade`
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        return check_csrf(CSRF_EXEMPT_PATHS)

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        # detail goes to the log, the client only sees the user message
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.path, exc)
        else:
            logger.info("%s on %s %s: %s", exc.code, request.method, request.path, exc)
        return jsonify(error=exc.user_message, code=exc.code), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("make-provider")
    @click.argument("email")
    @click.argument("business_name")
    def make_provider(email, business_name):
        """Give a user the PROVIDER role and a business profile."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        role = Role.query.filter_by(name="PROVIDER").first()
        if not role:
            role = Role(name="PROVIDER")
            db.session.add(role)
        if role not in user.roles:
            user.roles.append(role)

        if user.provider is None:
            db.session.add(ServiceProvider(user_id=user.id, business_name=business_name, email=user.email))
        db.session.commit()
        click.echo(f"{user.email} is now a provider ({business_name})")

    @app.cli.command("dispatch-notifications")
    @click.option("--limit", type=int, default=None, help="Max rows to send in this run.")
    def dispatch_notifications(limit):
        """Deliver queued booking notifications."""
        from services.notifications import dispatch_pending

        counts = dispatch_pending(limit=limit)
        click.echo(f"sent={counts['sent']} retrying={counts['retrying']} failed={counts['failed']}")

    @app.cli.command("sync-payment-accounts")
    def sync_payment_accounts():
        """Refresh capability flags of every active provider payment account."""
        from services.accounts import sync_all_payment_accounts

        counts = sync_all_payment_accounts()
        click.echo(f"synced={counts['synced']} failed={counts['failed']}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
