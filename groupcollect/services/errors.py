"""Service-layer errors.

Every error a caller can act on carries a stable `code`, a user-facing
message, and the HTTP status to answer with. create_app() registers one
handler that renders ServiceError as JSON; anything else becomes a 500.
"""


class ServiceError(Exception):
    code = "error"
    status_code = 400
    default_message = "Something went wrong."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {"ok": False, "error": self.message, "code": self.code}


# ── Validation ──

class ValidationError(ServiceError):
    code = "invalid"
    status_code = 400
    default_message = "Invalid request."


# ── Lookups ──

class EventNotFound(ServiceError):
    code = "event_not_found"
    status_code = 404
    default_message = "Event not found"


class PaymentNotFound(ServiceError):
    code = "payment_not_found"
    status_code = 404
    default_message = "Payment not found"


class AdminLinkInvalid(ServiceError):
    code = "admin_link_not_found"
    status_code = 404
    default_message = "Admin link not found or expired"


# ── Business-rule conflicts ──

class EventClosed(ServiceError):
    code = "event_closed"
    status_code = 409
    default_message = "This event is closed"


class EventFull(ServiceError):
    code = "event_full"
    status_code = 409
    default_message = "This event is full"


class AlreadyBooked(ServiceError):
    code = "already_booked"
    status_code = 409
    default_message = "You're already booked for this event."


class PriceLocked(ServiceError):
    code = "price_locked"
    status_code = 409
    default_message = "Price is locked after the first payment."


class CapacityBelowOccupancy(ServiceError):
    code = "capacity_below_occupancy"
    status_code = 409
    default_message = "Cannot set max spots below current number of participants"


class AlreadyRefunded(ServiceError):
    code = "already_refunded"
    status_code = 409
    default_message = "This payment has already been refunded."


class NotRefundable(ServiceError):
    code = "not_refundable"
    status_code = 409
    default_message = "Payment not eligible for refund"


class RefundRequired(ServiceError):
    code = "refund_required"
    status_code = 409
    default_message = "Paid payments must be refunded, not cancelled."


class InvalidTransitionError(ServiceError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid payment status transition: {from_status} -> {to_status}"
        )


# ── External dependencies ──

class PaymentProviderError(ServiceError):
    code = "payment_provider_error"
    status_code = 502
    default_message = "Could not reach the payment provider. Please try again."


class NotificationFailed(ServiceError):
    code = "notification_failed"
    status_code = 502
    default_message = "Could not send the email. Please try again."
