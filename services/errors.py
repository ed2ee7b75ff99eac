"""
Booking workflow error taxonomy.

Every error carries a stable ``code``, the HTTP status the API answers with,
and a ``user_message`` that is safe to show to customers. Vendor and storage
details stay in the server log.
"""

GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again."


class BookingError(Exception):
    code = "BOOKING_ERROR"
    status_code = 400
    user_message = GENERIC_RETRY_MESSAGE

    def __init__(self, detail: str = None, user_message: str = None):
        super().__init__(detail or self.user_message)
        if user_message:
            self.user_message = user_message


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "Invalid request."


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"
    user_message = "Amount must be a non-negative number."


class SlotUnavailable(BookingError):
    code = "SLOT_UNAVAILABLE"
    status_code = 409
    user_message = "Sorry, this time slot is no longer available. Please select a different time."


class PaymentSetupIncomplete(BookingError):
    code = "PAYMENT_SETUP_INCOMPLETE"
    status_code = 422
    user_message = (
        "This provider has not finished setting up payments. "
        "Please contact the provider or try a different service."
    )


class BookingNotFound(BookingError):
    code = "BOOKING_NOT_FOUND"
    status_code = 404
    user_message = "Booking not found."


class ServiceNotFound(BookingError):
    code = "SERVICE_NOT_FOUND"
    status_code = 404
    user_message = "Service not found."


class DepositNotPaid(BookingError):
    code = "DEPOSIT_NOT_PAID"
    status_code = 409
    user_message = "Deposit has not been paid yet."


class AlreadySettled(BookingError):
    code = "ALREADY_SETTLED"
    status_code = 409
    user_message = "Final payment has already been processed."


class GatewayError(BookingError):
    code = "GATEWAY_ERROR"
    status_code = 502


class PersistenceError(BookingError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
