from .health import health_bp
from .auth import auth_bp
from .booking import booking_bp
from .provider import provider_bp
from .stripe_webhook import webhook_bp
