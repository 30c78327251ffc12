"""Domain exceptions for the booking lifecycle and handover verification."""

from typing import Optional


class RentalError(Exception):
    """Base class for all booking lifecycle errors."""

    error_type = "rental_error"


class NotFoundError(RentalError):
    """Raised when a booking or handover session does not exist."""

    error_type = "not_found"


class UnauthorizedError(RentalError):
    """Raised when the caller is not a party allowed to perform the action."""

    error_type = "unauthorized"


class IllegalTransitionError(RentalError):
    """Raised when an action's precondition does not hold for the current state."""

    error_type = "illegal_transition"


class InvalidCodeError(RentalError):
    """Raised when a submitted passcode does not match a stored one."""

    error_type = "invalid_code"


class ExpiredCodeError(RentalError):
    """Raised when a passcode is submitted after its validity window."""

    error_type = "expired_code"


class DeliveryFailedError(RentalError):
    """Raised by notification channels when a passcode could not be delivered."""

    error_type = "delivery_failed"


class ConcurrentModificationError(RentalError):
    """Raised when a write is based on a stale booking snapshot."""

    error_type = "concurrent_modification"

    def __init__(self, message: str, expected_version: Optional[int] = None, actual_version: Optional[int] = None):
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version
