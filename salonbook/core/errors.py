"""
Error taxonomy for availability and booking decisions.

Every error carries a stable ``code`` so callers (the HTTP layer and the
remote client) can classify failures without inspecting message text.
"""


class BookingError(Exception):
    """Base class for all booking engine errors."""

    code = "booking_error"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ConfigurationError(BookingError):
    """Operating hours could not be parsed in any known encoding."""

    code = "configuration_error"


class PastTimeError(BookingError):
    """Requested start time is in the past."""

    code = "past_time"


class OverlapConflict(BookingError):
    """Time slot is already booked."""

    code = "overlap_conflict"


class ConflictError(OverlapConflict):
    """Slot is no longer available. Please select another time slot."""

    code = "slot_conflict"


class MalformedRequestError(BookingError):
    """Booking request is incomplete or inconsistent with the service."""

    code = "malformed_request"


class UnavailableError(BookingError):
    """Employee cannot take bookings on this date."""

    code = "unavailable"


class NotFoundError(BookingError):
    """Requested resource does not exist."""

    code = "not_found"


class InvalidTransition(BookingError):
    """Transition is not allowed from the current state."""

    code = "invalid_transition"


ERRORS_BY_CODE: dict[str, type[BookingError]] = {
    cls.code: cls
    for cls in (
        BookingError,
        ConfigurationError,
        PastTimeError,
        OverlapConflict,
        ConflictError,
        MalformedRequestError,
        NotFoundError,
        UnavailableError,
        InvalidTransition,
    )
}


def error_from_code(code: str | None, message: str | None = None) -> BookingError:
    cls = ERRORS_BY_CODE.get((code or "").strip(), BookingError)
    return cls(message)
