"""
Transition rules for the booking and live-ride state machines.

These checks are pure: they take plain values and raise typed errors. The
backend services run them against locked database rows and the coordinator
runs them against its local cache before making any network call.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .exceptions import (
    CapacityExceededError,
    DuplicateBookingError,
    InvalidRequestError,
    InvalidTransitionError,
    SelfBookingError,
)
from .states import BookingStatus, LiveRideStatus, RideStatus, DECISIONS

MIN_RATING = 1
MAX_RATING = 5


def same_id(left, right) -> bool:
    """Exact identity comparison for user ids. None never matches."""
    return left is not None and right is not None and left == right


# ---------------------- Booking ----------------------

def check_booking_request(
    *,
    driver_id,
    passenger_id,
    seats,
    available_seats: int,
    ride_status: str = RideStatus.ACTIVE,
    has_active_booking: bool = False,
) -> int:
    """
    Validate a passenger's booking request against a ride.

    Returns:
        The seat count as an int

    Raises:
        SelfBookingError: passenger is the ride's driver
        DuplicateBookingError: passenger already holds an active booking
        InvalidRequestError: seat count is not a positive integer
        InvalidTransitionError: ride no longer accepts bookings
        CapacityExceededError: more seats than the ride has left
    """
    if same_id(driver_id, passenger_id):
        raise SelfBookingError("Cannot book your own ride")

    if has_active_booking:
        raise DuplicateBookingError("You have already booked this ride")

    try:
        seats = int(seats)
    except (TypeError, ValueError):
        raise InvalidRequestError("Seats requested must be a whole number")
    if seats < 1:
        raise InvalidRequestError("At least one seat must be requested")

    if ride_status != RideStatus.ACTIVE:
        raise InvalidTransitionError(f"Ride is {ride_status} and no longer accepts bookings")

    if seats > int(available_seats):
        raise CapacityExceededError(
            "Not enough seats available",
            requested=seats,
            available=int(available_seats),
        )
    return seats


def total_amount(seats: int, price_per_seat) -> Decimal:
    return (Decimal(int(seats)) * Decimal(str(price_per_seat))).quantize(Decimal("0.01"))


def resolve_decision(decision: str) -> str:
    """Map a driver's decision (accept/decline) to the booking status it produces."""
    status = DECISIONS.get(str(decision or "").lower())
    if status is None:
        raise InvalidRequestError(f"Unknown booking decision: {decision}")
    return status


def check_booking_response(current_status: str) -> None:
    if current_status != BookingStatus.PENDING:
        raise InvalidTransitionError(f"Booking is already {current_status}")


def check_booking_cancel(current_status: str) -> None:
    if current_status != BookingStatus.PENDING:
        raise InvalidTransitionError(f"Only pending bookings can be cancelled (booking is {current_status})")


def check_seat_decrement(available_seats: int, seats: int) -> int:
    """Return the seat count left after confirming ``seats``; never negative."""
    remaining = int(available_seats) - int(seats)
    if remaining < 0:
        raise CapacityExceededError(
            "Not enough seats left to confirm this booking",
            requested=int(seats),
            available=int(available_seats),
        )
    return remaining


# ---------------------- Live ride ----------------------

def next_live_status(current: str) -> Optional[str]:
    """Immediate successor in the live-ride sequence, None at the end."""
    try:
        index = LiveRideStatus.SEQUENCE.index(current)
    except ValueError:
        raise InvalidTransitionError(f"Unknown live ride status: {current}")
    if index + 1 >= len(LiveRideStatus.SEQUENCE):
        return None
    return LiveRideStatus.SEQUENCE[index + 1]


def check_live_transition(current: str, requested: str) -> str:
    """Allow only a single step forward from ``current``."""
    if requested not in LiveRideStatus.SEQUENCE:
        raise InvalidTransitionError(f"Unknown live ride status: {requested}")
    expected = next_live_status(current)
    if expected is None:
        raise InvalidTransitionError("Live ride is already completed")
    if requested != expected:
        raise InvalidTransitionError(
            f"Cannot move live ride from {current} to {requested}; next step is {expected}",
            current=current,
            expected=expected,
        )
    return requested


# ---------------------- Reviews ----------------------

def check_rating(rating) -> int:
    if isinstance(rating, bool):
        raise InvalidRequestError("Rating must be a whole number from 1 to 5")
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise InvalidRequestError("Rating must be a whole number from 1 to 5")
    if value != rating and str(value) != str(rating).strip():
        raise InvalidRequestError("Rating must be a whole number from 1 to 5")
    if not MIN_RATING <= value <= MAX_RATING:
        raise InvalidRequestError("Rating must be a whole number from 1 to 5")
    return value


def average_rating(ratings: Iterable[int]) -> Optional[Decimal]:
    """Arithmetic mean rounded half-up to one decimal, None without ratings."""
    ratings = [int(r) for r in ratings]
    if not ratings:
        return None
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
