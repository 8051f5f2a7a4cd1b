"""
Core ride and booking lifecycle operations.

This module is the authoritative state machine on the server side. Every
operation locks the rows it mutates, runs the shared rules from
common.lifecycle, and raises typed errors instead of returning silently.
Notifications and live-ride creation are best-effort side effects.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.models import User
from notifications.services import notify_user, notify_users
from rides.models import Ride, Booking, LiveRide, Review
from common.lifecycle import (
    BookingStatus,
    LiveRideStatus,
    RideStatus,
    same_id,
    check_booking_request,
    check_booking_response,
    check_booking_cancel,
    check_seat_decrement,
    check_live_transition,
    check_rating,
    resolve_decision,
    total_amount,
    average_rating,
    generate_unique_code,
    is_valid_code,
    normalize_code,
    NotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    InvalidRequestError,
    DuplicateBookingError,
    DuplicateReviewError,
)

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    """Result object for a driver's response to a booking request."""
    booking: Booking
    ride: Ride
    live_ride: Optional[LiveRide] = None
    verification_code: Optional[str] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


# ===================== Rides =====================

@transaction.atomic
def create_ride(driver, data: Dict[str, Any]) -> Ride:
    """
    Offer a new ride.

    Args:
        driver: User model instance (driver)
        data: validated RideCreateSerializer data
    """
    ride = Ride.objects.create(driver=driver, status=RideStatus.ACTIVE, **data)
    logger.info("Ride %s created by driver %s (%s seats)", ride.id, driver.id, ride.available_seats)
    return ride


@transaction.atomic
def cancel_ride(driver, ride_id: int) -> Ride:
    """
    Cancel an active ride.

    Pending requests are declined and confirmed passengers have their
    booking cancelled, which also drops their live tracking. Everyone
    affected is notified. A ride whose driver is already on the way to a
    pickup cannot be cancelled.
    """
    ride = _get_locked_ride(ride_id)

    if not same_id(ride.driver_id, driver.id):
        raise ForbiddenError("Only the driver can cancel this ride")
    if ride.status != RideStatus.ACTIVE:
        raise InvalidTransitionError(f"Ride is already {ride.status}")

    started = LiveRide.objects.filter(ride=ride, booking__status=BookingStatus.CONFIRMED).exclude(
        ride_status=LiveRideStatus.CONFIRMED
    )
    if started.exists():
        raise InvalidTransitionError("A trip on this ride is already under way")

    now = timezone.now()
    affected = []
    for booking in ride.bookings.select_for_update().filter(status__in=BookingStatus.ACTIVE):
        booking.status = (
            BookingStatus.DECLINED if booking.status == BookingStatus.PENDING else BookingStatus.CANCELLED
        )
        booking.responded_at = now
        booking.save(update_fields=['status', 'responded_at', 'updated_at'])
        affected.append(booking.passenger_id)

    # Live tracking only exists for confirmed bookings; none has started here
    orphaned = LiveRide.objects.filter(ride=ride, ride_status=LiveRideStatus.CONFIRMED)
    orphaned.delete()

    ride.status = RideStatus.CANCELLED
    ride.save(update_fields=['status', 'updated_at'])

    notify_users(
        affected,
        'Ride Cancelled',
        f'The driver cancelled the ride {ride.origin_name} to {ride.destination_name}.',
        type='warning',
        data={'ride_id': ride.id},
    )
    logger.info("Ride %s cancelled by driver %s (%d bookings affected)", ride.id, driver.id, len(affected))
    return ride


# ===================== Passenger Operations =====================

def has_active_booking(ride_id: int, passenger_id: int) -> bool:
    """Check if the passenger already holds a pending/confirmed booking on the ride."""
    return Booking.objects.filter(
        ride_id=ride_id,
        passenger_id=passenger_id,
        status__in=BookingStatus.ACTIVE,
    ).exists()


@transaction.atomic
def request_booking(
    passenger,
    ride_id: int,
    seats_requested: int = 1,
    pickup_location: str = "",
    message: str = "",
) -> Booking:
    """
    Create a pending booking request and notify the driver.
    
    Args:
        passenger: User model instance (passenger)
        ride_id: ID of the ride to book
        seats_requested: Number of seats
        pickup_location: Pickup point, defaults to the ride's origin
        message: Free-text note for the driver
    
    Returns:
        The pending Booking
    
    Raises:
        NotFoundError, SelfBookingError, DuplicateBookingError,
        InvalidRequestError, InvalidTransitionError, CapacityExceededError
    """
    ride = _get_locked_ride(ride_id)

    seats = check_booking_request(
        driver_id=ride.driver_id,
        passenger_id=passenger.id,
        seats=seats_requested,
        available_seats=ride.available_seats,
        ride_status=ride.status,
        has_active_booking=has_active_booking(ride.id, passenger.id),
    )

    try:
        with transaction.atomic():
            booking = Booking.objects.create(
                ride=ride,
                passenger=passenger,
                seats_requested=seats,
                total_amount=total_amount(seats, ride.price_per_seat),
                pickup_location=(pickup_location or ride.origin_name).strip(),
                message=message or "",
                status=BookingStatus.PENDING,
            )
    except IntegrityError:
        # Lost a race against a concurrent request from the same passenger
        raise DuplicateBookingError("You have already booked this ride")

    notify_user(
        ride.driver_id,
        'New Booking Request!',
        f'{passenger.display_name} wants to book {seats} seat(s) for your ride',
        type='booking',
        data={'booking_id': booking.id, 'ride_id': ride.id, 'passenger_id': passenger.id},
    )

    logger.info("Booking %s requested on ride %s by passenger %s", booking.id, ride.id, passenger.id)
    return booking


@transaction.atomic
def cancel_booking(passenger, booking_id: int) -> Booking:
    """Withdraw a pending booking request."""
    booking = _get_locked_booking(booking_id)

    if not same_id(booking.passenger_id, passenger.id):
        raise ForbiddenError("Only the passenger can cancel this booking")
    check_booking_cancel(booking.status)

    booking.status = BookingStatus.CANCELLED
    booking.save(update_fields=['status', 'updated_at'])

    notify_user(
        booking.ride.driver_id,
        'Booking Cancelled',
        f'{passenger.display_name} cancelled their booking request.',
        type='booking',
        data={'booking_id': booking.id, 'ride_id': booking.ride_id},
    )
    return booking


# ===================== Driver Operations =====================

@transaction.atomic
def respond_to_booking(
    driver,
    booking_id: int,
    decision: str,
    verification_code: Optional[str] = None,
) -> BookingResult:
    """
    Accept or decline a pending booking in one transaction.
    
    Accepting decrements the ride's seats, stamps a verification code and
    tries to open a live ride. Declining leaves seats untouched.
    
    Args:
        driver: User model instance (must own the ride)
        booking_id: ID of the pending booking
        decision: "accept" or "decline"
        verification_code: optional driver-chosen code (4-6 alphanumerics)
    
    Returns:
        BookingResult with the updated booking and ride
    """
    new_status = resolve_decision(decision)
    booking = _get_locked_booking(booking_id)
    ride = _get_locked_ride(booking.ride_id)

    if not same_id(ride.driver_id, driver.id):
        raise ForbiddenError("Only the ride's driver can respond to this booking")
    check_booking_response(booking.status)

    now = timezone.now()

    if new_status == BookingStatus.DECLINED:
        booking.status = BookingStatus.DECLINED
        booking.responded_at = now
        booking.save(update_fields=['status', 'responded_at', 'updated_at'])

        notify_user(
            booking.passenger_id,
            'Booking Declined',
            'Your booking request was declined by the driver.',
            type='booking',
            data={'booking_id': booking.id, 'ride_id': ride.id},
        )
        logger.info("Booking %s declined by driver %s", booking.id, driver.id)
        return BookingResult(booking=booking, ride=ride, message="Booking declined successfully")

    code = _resolve_verification_code(verification_code)

    ride.available_seats = check_seat_decrement(ride.available_seats, booking.seats_requested)
    ride.save(update_fields=['available_seats', 'updated_at'])

    booking.status = BookingStatus.CONFIRMED
    booking.verification_code = code
    booking.responded_at = now
    booking.save(update_fields=['status', 'verification_code', 'responded_at', 'updated_at'])

    live_ride = _create_live_ride(booking, ride, code)

    notify_user(
        booking.passenger_id,
        'Booking Confirmed!',
        f'Your booking has been confirmed! Verification code: {code}. Show this to the driver.',
        type='booking',
        data={'booking_id': booking.id, 'ride_id': ride.id, 'verification_code': code},
    )

    logger.info(
        "Booking %s confirmed by driver %s; ride %s has %s seats left",
        booking.id, driver.id, ride.id, ride.available_seats,
    )
    return BookingResult(
        booking=booking,
        ride=ride,
        live_ride=live_ride,
        verification_code=code,
        message=f"Booking confirmed! Verification code: {code}",
        extra={"live_tracking": live_ride is not None},
    )


@transaction.atomic
def advance_live_ride(driver, live_ride_id: int, next_status: str) -> LiveRide:
    """
    Move a live ride exactly one step forward.
    
    Reaching `completed` closes the booking, bumps both parties' ride
    counts and asks both of them for a review.
    """
    try:
        live_ride = LiveRide.objects.select_for_update().get(id=live_ride_id)
    except LiveRide.DoesNotExist:
        raise NotFoundError("Live ride not found")

    if not same_id(live_ride.driver_id, driver.id):
        raise ForbiddenError("Only the driver can update this trip")
    booking = Booking.objects.select_for_update().get(id=live_ride.booking_id)
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidTransitionError(f"Booking is {booking.status}; this trip can no longer be updated")
    check_live_transition(live_ride.ride_status, next_status)

    timestamp_field = LiveRideStatus.TIMESTAMP_FIELDS[next_status]
    live_ride.ride_status = next_status
    setattr(live_ride, timestamp_field, timezone.now())
    live_ride.save(update_fields=['ride_status', timestamp_field, 'updated_at'])

    if next_status == LiveRideStatus.COMPLETED:
        _complete_trip(live_ride, booking)

    logger.info("Live ride %s advanced to %s", live_ride.id, next_status)
    return live_ride


def get_active_live_ride(user) -> Optional[LiveRide]:
    """Newest unfinished live ride where the user is driver or passenger."""
    return LiveRide.objects.filter(
        Q(driver=user) | Q(passenger=user),
        ride_status__in=LiveRideStatus.OPEN,
        booking__status=BookingStatus.CONFIRMED,
    ).order_by('-created_at').first()


# ===================== Reviews =====================

@transaction.atomic
def submit_review(reviewer, ride_id: int, reviewee_id: int, rating, comment: str = "") -> Review:
    """
    Review the other party of a completed trip and refresh their rating.
    
    Raises:
        InvalidRequestError: rating out of range or self-review
        NotFoundError: unknown ride
        ForbiddenError: no completed trip between reviewer and reviewee
        DuplicateReviewError: this trip was already reviewed by the reviewer
    """
    rating = check_rating(rating)

    if same_id(reviewer.id, reviewee_id):
        raise InvalidRequestError("You cannot review yourself")

    try:
        ride = Ride.objects.get(id=ride_id)
    except Ride.DoesNotExist:
        raise NotFoundError("Ride not found")

    shared_trip = LiveRide.objects.filter(
        ride=ride,
        ride_status=LiveRideStatus.COMPLETED,
    ).filter(
        Q(driver=reviewer, passenger_id=reviewee_id) | Q(passenger=reviewer, driver_id=reviewee_id)
    )
    if not shared_trip.exists():
        raise ForbiddenError("You can only review someone you completed this trip with")

    try:
        with transaction.atomic():
            review = Review.objects.create(
                ride=ride,
                reviewer=reviewer,
                reviewee_id=reviewee_id,
                rating=rating,
                comment=comment or "",
            )
    except IntegrityError:
        raise DuplicateReviewError("You have already reviewed this trip")

    update_user_rating(reviewee_id)
    return review


def update_user_rating(user_id: int):
    """Recompute a user's rating as the mean of every review they received."""
    ratings = Review.objects.filter(reviewee_id=user_id).values_list('rating', flat=True)
    avg = average_rating(ratings)
    if avg is None:
        return None

    user = User.objects.get(id=user_id)
    user.rating = avg
    user.save(update_fields=['rating'])
    return avg


# ===================== Helper Functions =====================

def _get_locked_ride(ride_id: int) -> Ride:
    try:
        return Ride.objects.select_for_update().get(id=ride_id)
    except Ride.DoesNotExist:
        raise NotFoundError("Ride not found")


def _get_locked_booking(booking_id: int) -> Booking:
    try:
        return Booking.objects.select_for_update().select_related('ride').get(id=booking_id)
    except Booking.DoesNotExist:
        raise NotFoundError("Booking request not found")


def _code_in_use(code: str) -> bool:
    return Booking.objects.filter(status=BookingStatus.CONFIRMED, verification_code=code).exists()


def _resolve_verification_code(supplied: Optional[str]) -> str:
    """Validate a driver-chosen code or draw a fresh one unique among open bookings."""
    if supplied:
        code = normalize_code(supplied)
        if not is_valid_code(code):
            raise InvalidRequestError("Verification code must be 4-6 letters or digits")
        if _code_in_use(code):
            raise InvalidRequestError("Verification code is already in use, choose another")
        return code
    return generate_unique_code(_code_in_use)


def _create_live_ride(booking: Booking, ride: Ride, code: str) -> Optional[LiveRide]:
    """Open live tracking for a confirmed booking. Failure keeps the booking confirmed."""
    try:
        with transaction.atomic():
            return LiveRide.objects.create(
                ride=ride,
                booking=booking,
                driver_id=ride.driver_id,
                passenger_id=booking.passenger_id,
                verification_code=code,
                ride_status=LiveRideStatus.CONFIRMED,
            )
    except Exception:
        logger.exception("Live ride creation failed for booking %s; booking stays confirmed", booking.id)
        return None


def _complete_trip(live_ride: LiveRide, booking: Booking):
    """Side effects of a live ride reaching `completed`."""
    booking.status = BookingStatus.COMPLETED
    booking.save(update_fields=['status', 'updated_at'])

    for user in User.objects.select_for_update().filter(id__in=[live_ride.driver_id, live_ride.passenger_id]):
        user.total_rides += 1
        user.save(update_fields=['total_rides'])

    ride = Ride.objects.select_for_update().get(id=live_ride.ride_id)
    if ride.status == RideStatus.ACTIVE and not ride.bookings.filter(status__in=BookingStatus.ACTIVE).exists():
        ride.status = RideStatus.COMPLETED
        ride.save(update_fields=['status', 'updated_at'])

    data = {'live_ride_id': live_ride.id, 'ride_id': live_ride.ride_id}
    notify_user(
        live_ride.driver_id,
        'Trip Completed!',
        'Your trip has been completed. Please rate your passenger.',
        type='trip',
        data=data,
    )
    notify_user(
        live_ride.passenger_id,
        'Trip Completed!',
        'Your trip has been completed. Please rate your driver.',
        type='trip',
        data=data,
    )
