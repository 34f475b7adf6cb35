"""
Error taxonomy for the booking and notification core.

Booking-path errors propagate synchronously to the caller and are rendered
by the HTTP layer using ``status_code``. ``TransportError`` only ever
travels inside the notification worker.
"""


class CoreError(Exception):
    """Base class for all errors raised by the core"""

    status_code = 500
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(CoreError):
    """Malformed input - never retried"""

    status_code = 400


class NotFoundError(CoreError):
    """Missing doctor, patient or appointment"""

    status_code = 404


class ConflictError(CoreError):
    """Overlapping booking - caller may retry with a different slot"""

    status_code = 409


class LockUnavailableError(CoreError):
    """Lock not acquired within its deadline"""

    status_code = 503
    retryable = True


class TransportError(CoreError):
    """Notification delivery failed"""

    status_code = 502
    retryable = True
