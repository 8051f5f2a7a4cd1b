"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - booking_lifecycle: Ride, booking, live ride and review operations
"""

# Expose commonly used functions at package level
from .booking_lifecycle import (
    BookingResult,
    create_ride,
    cancel_ride,
    request_booking,
    cancel_booking,
    respond_to_booking,
    advance_live_ride,
    get_active_live_ride,
    submit_review,
)

__all__ = [
    "BookingResult",
    "create_ride",
    "cancel_ride",
    "request_booking",
    "cancel_booking",
    "respond_to_booking",
    "advance_live_ride",
    "get_active_live_ride",
    "submit_review",
]
