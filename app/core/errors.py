"""Exceptions raised by the booking and payment services.

Routes translate these into HTTP responses; the payment reconciler swallows
the ones that must never reach the gateway.
"""


class BookingError(Exception):
    pass


class NotFound(BookingError):
    """Session type, booking, payment or tenant absent, or owned by another tenant."""


class SlotUnavailable(BookingError):
    pass


class InvalidRequest(BookingError):
    pass


class InvalidTransition(BookingError):
    """Manual transition requested from a status that does not allow it."""


class StaleTransition(BookingError):
    """A guarded update found the booking no longer in the expected status."""

    def __init__(self, booking_id: str, expected: tuple, actual: str | None = None):
        self.booking_id = booking_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"booking {booking_id} is {actual or 'unknown'}, expected one of {list(expected)}")


class NotificationFailure(BookingError):
    pass


class GatewayCorrelationMissing(BookingError):
    pass


class PaymentGatewayError(BookingError):
    pass
