"""
Booking lifecycle service - Authoritative ride/booking state machine.

This module handles:
    - Offering and cancelling rides
    - Requesting, cancelling and answering bookings
    - Advancing live rides through the trip sequence
    - Reviews and rating recomputation
"""

from .lifecycle import (
    BookingResult,
    create_ride,
    cancel_ride,
    request_booking,
    cancel_booking,
    respond_to_booking,
    advance_live_ride,
    get_active_live_ride,
    submit_review,
    update_user_rating,
    has_active_booking,
)

from common.lifecycle import (
    RideBookingError,
    NotFoundError,
    ForbiddenError,
    SelfBookingError,
    InvalidTransitionError,
    CapacityExceededError,
    DuplicateBookingError,
    DuplicateReviewError,
    InvalidRequestError,
)

__all__ = [
    # Lifecycle operations
    "BookingResult",
    "create_ride",
    "cancel_ride",
    "request_booking",
    "cancel_booking",
    "respond_to_booking",
    "advance_live_ride",
    "get_active_live_ride",
    "submit_review",
    "update_user_rating",
    "has_active_booking",
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
]
