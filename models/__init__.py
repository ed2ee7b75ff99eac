from .db import db
from .user import User, Role, user_roles
from .session import Session
from .audit_log import AuditLog
from .provider import ServiceProvider, PaymentAccount
from .service import Service
from .time_slot import TimeSlot
from .booking import Booking, BookingStatus, FinalPaymentStatus
from .notification import NotificationOutbox
