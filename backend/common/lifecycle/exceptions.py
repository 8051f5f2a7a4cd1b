"""Typed errors for the ride and booking lifecycle.

Every error carries a stable ``code`` (used on the wire), the HTTP status the
store API answers with, and a distinct message that can be shown to a user.
"""


class RideBookingError(Exception):
    """Base class for all ride/booking lifecycle errors."""
    code = "error"
    status_code = 400
    user_message = "Something went wrong with your request."

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.details = details

    def to_dict(self):
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(RideBookingError):
    """Raised when a ride, booking or live ride cannot be found."""
    code = "not_found"
    status_code = 404
    user_message = "That ride or booking no longer exists."


class ForbiddenError(RideBookingError):
    """Raised when the caller is not the authorized actor for a transition."""
    code = "forbidden"
    status_code = 403
    user_message = "You are not allowed to do that."


class SelfBookingError(ForbiddenError):
    """Raised when a driver tries to book a seat on their own ride."""
    code = "self_booking"
    user_message = "You cannot book your own ride!"


class InvalidTransitionError(RideBookingError):
    """Raised when a requested status change is not the legal next state."""
    code = "invalid_transition"
    status_code = 409
    user_message = "This booking can no longer be changed that way."


class CapacityExceededError(RideBookingError):
    """Raised when the requested seats exceed what the ride has left."""
    code = "capacity_exceeded"
    status_code = 409
    user_message = "Not enough seats available!"


class DuplicateBookingError(RideBookingError):
    """Raised when a passenger already holds an active booking on a ride."""
    code = "duplicate_booking"
    status_code = 409
    user_message = "You have already booked this ride!"


class DuplicateReviewError(RideBookingError):
    """Raised when a reviewer already reviewed this person for this ride."""
    code = "duplicate_review"
    status_code = 409
    user_message = "You have already reviewed this trip."


class InvalidRequestError(RideBookingError):
    """Raised for malformed input (seat counts, ratings, verification codes)."""
    code = "invalid_request"
    status_code = 400
    user_message = "Please check the details you entered."


class OperationInProgressError(RideBookingError):
    """Raised when a mutation of the same kind is already in flight."""
    code = "operation_in_progress"
    status_code = 409
    user_message = "Please wait, we are still working on your last request."


class RemoteUnavailableError(RideBookingError):
    """Raised on store or network failure. Safe to retry for reads."""
    code = "remote_unavailable"
    status_code = 503
    user_message = "Could not reach the server. Please check your connection and try again."


ERROR_CLASSES = {
    cls.code: cls
    for cls in (
        NotFoundError,
        ForbiddenError,
        SelfBookingError,
        InvalidTransitionError,
        CapacityExceededError,
        DuplicateBookingError,
        DuplicateReviewError,
        InvalidRequestError,
        OperationInProgressError,
        RemoteUnavailableError,
    )
}

# Business-rule errors are deterministic; never retry them automatically.
BUSINESS_RULE_ERRORS = (
    ForbiddenError,
    InvalidTransitionError,
    CapacityExceededError,
    DuplicateBookingError,
    DuplicateReviewError,
    InvalidRequestError,
)


def error_from_payload(payload, status_code: int = 400) -> RideBookingError:
    """Rebuild a typed error from a store API error body."""
    payload = payload if isinstance(payload, dict) else {}
    code = payload.get("error")
    message = payload.get("message") or ""
    cls = ERROR_CLASSES.get(code)
    if cls is None:
        if status_code >= 500:
            cls = RemoteUnavailableError
        elif status_code == 404:
            cls = NotFoundError
        elif status_code in (401, 403):
            cls = ForbiddenError
        else:
            cls = InvalidRequestError
    return cls(message, **(payload.get("details") or {}))
