"""
Ride/booking lifecycle rules shared by the backend and the coordinator.

    - states: status vocabularies and the live-ride sequence
    - rules: transition and invariant checks
    - codes: verification code generation
    - exceptions: the typed error taxonomy
"""

from .states import RideStatus, BookingStatus, LiveRideStatus, DECISIONS
from .rules import (
    same_id,
    check_booking_request,
    check_booking_response,
    check_booking_cancel,
    check_seat_decrement,
    check_live_transition,
    check_rating,
    next_live_status,
    resolve_decision,
    total_amount,
    average_rating,
)
from .codes import generate_code, generate_unique_code, is_valid_code, normalize_code
from .exceptions import (
    RideBookingError,
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
    BUSINESS_RULE_ERRORS,
    error_from_payload,
)

__all__ = [
    # States
    "RideStatus",
    "BookingStatus",
    "LiveRideStatus",
    "DECISIONS",
    # Rules
    "same_id",
    "check_booking_request",
    "check_booking_response",
    "check_booking_cancel",
    "check_seat_decrement",
    "check_live_transition",
    "check_rating",
    "next_live_status",
    "resolve_decision",
    "total_amount",
    "average_rating",
    # Codes
    "generate_code",
    "generate_unique_code",
    "is_valid_code",
    "normalize_code",
    # Exceptions
    "RideBookingError",
    "NotFoundError",
    "ForbiddenError",
    "SelfBookingError",
    "InvalidTransitionError",
    "CapacityExceededError",
    "DuplicateBookingError",
    "DuplicateReviewError",
    "InvalidRequestError",
    "OperationInProgressError",
    "RemoteUnavailableError",
    "BUSINESS_RULE_ERRORS",
    "error_from_payload",
]
