from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from unittest.mock import patch

from accounts.models import User
from notifications.models import Notification
from common.lifecycle import (
	BookingStatus,
	LiveRideStatus,
	RideStatus,
	CapacityExceededError,
	DuplicateBookingError,
	DuplicateReviewError,
	ForbiddenError,
	InvalidRequestError,
	InvalidTransitionError,
	NotFoundError,
	SelfBookingError,
	is_valid_code,
)
from services import booking_lifecycle
from .models import Booking, LiveRide, Ride, Review


def make_user(username):
	return User.objects.create_user(
		username=username,
		password='pass1234',
		email=f'{username}@campus.edu',
		full_name=username.title(),
	)


class BookingLifecycleTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver')
		self.passenger = make_user('passenger')
		self.other = make_user('other')

		self.ride = Ride.objects.create(
			driver=self.driver,
			title='Campus to Station',
			origin_name='Campus Gate 1',
			destination_name='Railway Station',
			departure_time=timezone.now() + timedelta(days=1),
			available_seats=2,
			price_per_seat=Decimal('50.00'),
		)

	def test_request_booking_creates_pending_booking_and_notifies_driver(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=2)

		self.assertEqual(booking.status, BookingStatus.PENDING)
		self.assertEqual(booking.total_amount, Decimal('100.00'))
		self.assertEqual(booking.pickup_location, 'Campus Gate 1')
		self.assertIsNone(booking.verification_code)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.available_seats, 2)

		note = Notification.objects.get(user=self.driver)
		self.assertEqual(note.title, 'New Booking Request!')
		self.assertEqual(note.data['booking_id'], booking.id)

	def test_request_booking_on_own_ride_is_rejected(self):
		with self.assertRaises(SelfBookingError):
			booking_lifecycle.request_booking(self.driver, self.ride.id)

		self.assertFalse(Booking.objects.exists())

	def test_second_active_request_is_duplicate(self):
		booking_lifecycle.request_booking(self.passenger, self.ride.id)

		with self.assertRaises(DuplicateBookingError):
			booking_lifecycle.request_booking(self.passenger, self.ride.id)

		self.assertEqual(Booking.objects.filter(passenger=self.passenger).count(), 1)

	def test_request_booking_unknown_ride(self):
		with self.assertRaises(NotFoundError):
			booking_lifecycle.request_booking(self.passenger, 9999)

	def test_request_more_seats_than_available(self):
		with self.assertRaises(CapacityExceededError):
			booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=3)

	def test_request_zero_seats_is_invalid(self):
		with self.assertRaises(InvalidRequestError):
			booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=0)

	def test_accept_then_full_ride_rejects_next_request(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=2)

		result = booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept')

		booking.refresh_from_db()
		self.ride.refresh_from_db()
		self.assertEqual(booking.status, BookingStatus.CONFIRMED)
		self.assertTrue(is_valid_code(booking.verification_code))
		self.assertEqual(result.verification_code, booking.verification_code)
		self.assertEqual(self.ride.available_seats, 0)

		self.assertIsNotNone(result.live_ride)
		self.assertEqual(result.live_ride.ride_status, LiveRideStatus.CONFIRMED)
		self.assertEqual(result.live_ride.verification_code, booking.verification_code)

		note = Notification.objects.get(user=self.passenger)
		self.assertIn(booking.verification_code, note.message)

		with self.assertRaises(CapacityExceededError):
			booking_lifecycle.request_booking(self.other, self.ride.id, seats_requested=1)

	def test_decline_keeps_seats_and_skips_live_ride(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		booking_lifecycle.respond_to_booking(self.driver, booking.id, 'decline')

		booking.refresh_from_db()
		self.ride.refresh_from_db()
		self.assertEqual(booking.status, BookingStatus.DECLINED)
		self.assertEqual(self.ride.available_seats, 2)
		self.assertFalse(LiveRide.objects.exists())

		note = Notification.objects.get(user=self.passenger)
		self.assertIn('declined', note.message)

	def test_only_driver_may_respond(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		with self.assertRaises(ForbiddenError):
			booking_lifecycle.respond_to_booking(self.other, booking.id, 'accept')

	def test_booking_answered_once(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)
		booking_lifecycle.respond_to_booking(self.driver, booking.id, 'decline')

		with self.assertRaises(InvalidTransitionError):
			booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept')

	def test_confirmations_sum_to_seat_decrement(self):
		self.ride.available_seats = 4
		self.ride.save()
		first = booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=1)
		second = booking_lifecycle.request_booking(self.other, self.ride.id, seats_requested=3)

		booking_lifecycle.respond_to_booking(self.driver, first.id, 'accept')
		booking_lifecycle.respond_to_booking(self.driver, second.id, 'accept')

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.available_seats, 0)

	def test_accept_rechecks_seats_at_confirmation(self):
		first = booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=2)
		second = booking_lifecycle.request_booking(self.other, self.ride.id, seats_requested=1)
		booking_lifecycle.respond_to_booking(self.driver, first.id, 'accept')

		with self.assertRaises(CapacityExceededError):
			booking_lifecycle.respond_to_booking(self.driver, second.id, 'accept')

		second.refresh_from_db()
		self.ride.refresh_from_db()
		self.assertEqual(second.status, BookingStatus.PENDING)
		self.assertEqual(self.ride.available_seats, 0)

	def test_driver_chosen_verification_code(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		result = booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept', verification_code='ab12')

		self.assertEqual(result.verification_code, 'AB12')

	def test_bad_or_taken_verification_code(self):
		first = booking_lifecycle.request_booking(self.passenger, self.ride.id)
		second = booking_lifecycle.request_booking(self.other, self.ride.id)

		with self.assertRaises(InvalidRequestError):
			booking_lifecycle.respond_to_booking(self.driver, first.id, 'accept', verification_code='A1')

		booking_lifecycle.respond_to_booking(self.driver, first.id, 'accept', verification_code='XY99')
		with self.assertRaises(InvalidRequestError):
			booking_lifecycle.respond_to_booking(self.driver, second.id, 'accept', verification_code='XY99')

	def test_live_ride_failure_does_not_block_confirmation(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		with patch.object(LiveRide.objects, 'create', side_effect=RuntimeError('db down')):
			result = booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept')

		booking.refresh_from_db()
		self.assertEqual(booking.status, BookingStatus.CONFIRMED)
		self.assertIsNone(result.live_ride)
		self.assertFalse(LiveRide.objects.exists())

	def test_cancel_pending_booking(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		with self.assertRaises(ForbiddenError):
			booking_lifecycle.cancel_booking(self.other, booking.id)

		booking_lifecycle.cancel_booking(self.passenger, booking.id)
		booking.refresh_from_db()
		self.assertEqual(booking.status, BookingStatus.CANCELLED)

		# A cancelled booking no longer blocks a fresh request
		again = booking_lifecycle.request_booking(self.passenger, self.ride.id)
		self.assertEqual(again.status, BookingStatus.PENDING)

	def test_cancel_ride_declines_pending_requests(self):
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

		with self.assertRaises(ForbiddenError):
			booking_lifecycle.cancel_ride(self.passenger, self.ride.id)

		booking_lifecycle.cancel_ride(self.driver, self.ride.id)

		self.ride.refresh_from_db()
		booking.refresh_from_db()
		self.assertEqual(self.ride.status, RideStatus.CANCELLED)
		self.assertEqual(booking.status, BookingStatus.DECLINED)
		self.assertTrue(Notification.objects.filter(user=self.passenger, title='Ride Cancelled').exists())

		with self.assertRaises(InvalidTransitionError):
			booking_lifecycle.request_booking(self.other, self.ride.id)


class LiveRideTests(TestCase):
	def setUp(self):
		self.driver = make_user('driver')
		self.passenger = make_user('passenger')
		self.other = make_user('other')
		self.ride = Ride.objects.create(
			driver=self.driver,
			title='Hostel to Airport',
			origin_name='Hostel',
			destination_name='Airport',
			departure_time=timezone.now() + timedelta(hours=3),
			available_seats=1,
			price_per_seat=Decimal('120.00'),
		)
		booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)
		self.result = booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept')
		self.live_ride = self.result.live_ride

	def advance_to(self, final_status):
		for status in LiveRideStatus.SEQUENCE[1:]:
			booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, status)
			if status == final_status:
				break

	def test_active_live_ride_for_both_parties(self):
		self.assertEqual(booking_lifecycle.get_active_live_ride(self.driver), self.live_ride)
		self.assertEqual(booking_lifecycle.get_active_live_ride(self.passenger), self.live_ride)
		self.assertIsNone(booking_lifecycle.get_active_live_ride(self.other))

	def test_skipping_a_step_is_rejected(self):
		with self.assertRaises(InvalidTransitionError) as ctx:
			booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, LiveRideStatus.ARRIVED)

		self.assertEqual(ctx.exception.details['expected'], LiveRideStatus.DRIVER_ARRIVING)
		self.live_ride.refresh_from_db()
		self.assertEqual(self.live_ride.ride_status, LiveRideStatus.CONFIRMED)

	def test_going_backwards_is_rejected(self):
		self.advance_to(LiveRideStatus.ARRIVED)

		with self.assertRaises(InvalidTransitionError):
			booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, LiveRideStatus.DRIVER_ARRIVING)

	def test_only_driver_advances(self):
		with self.assertRaises(ForbiddenError):
			booking_lifecycle.advance_live_ride(self.passenger, self.live_ride.id, LiveRideStatus.DRIVER_ARRIVING)

	def test_cancel_ride_with_confirmed_booking(self):
		booking_lifecycle.cancel_ride(self.driver, self.ride.id)

		booking = Booking.objects.get(id=self.result.booking.id)
		self.assertEqual(booking.status, BookingStatus.CANCELLED)
		self.assertTrue(Notification.objects.filter(user=self.passenger, title='Ride Cancelled').exists())
		self.assertFalse(LiveRide.objects.filter(id=self.live_ride.id).exists())
		self.assertIsNone(booking_lifecycle.get_active_live_ride(self.passenger))

		with self.assertRaises(NotFoundError):
			booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, LiveRideStatus.DRIVER_ARRIVING)

	def test_trip_of_cancelled_booking_cannot_advance(self):
		Booking.objects.filter(id=self.result.booking.id).update(status=BookingStatus.CANCELLED)

		for status in LiveRideStatus.SEQUENCE[1:]:
			with self.assertRaises(InvalidTransitionError):
				booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, status)

		booking = Booking.objects.get(id=self.result.booking.id)
		self.passenger.refresh_from_db()
		self.live_ride.refresh_from_db()
		self.assertEqual(booking.status, BookingStatus.CANCELLED)
		self.assertEqual(self.live_ride.ride_status, LiveRideStatus.CONFIRMED)
		self.assertEqual(self.passenger.total_rides, 0)
		self.assertFalse(Notification.objects.filter(title='Trip Completed!').exists())

	def test_each_step_stamps_its_timestamp(self):
		self.advance_to(LiveRideStatus.PICKUP_COMPLETE)

		self.live_ride.refresh_from_db()
		self.assertIsNotNone(self.live_ride.driver_arriving_at)
		self.assertIsNotNone(self.live_ride.arrival_time)
		self.assertIsNotNone(self.live_ride.pickup_time)
		self.assertIsNone(self.live_ride.in_transit_at)

	def test_completion_closes_booking_and_ride(self):
		self.advance_to(LiveRideStatus.COMPLETED)

		booking = Booking.objects.get(id=self.result.booking.id)
		self.ride.refresh_from_db()
		self.driver.refresh_from_db()
		self.passenger.refresh_from_db()

		self.assertEqual(booking.status, BookingStatus.COMPLETED)
		self.assertEqual(self.ride.status, RideStatus.COMPLETED)
		self.assertEqual(self.driver.total_rides, 1)
		self.assertEqual(self.passenger.total_rides, 1)
		self.assertEqual(Notification.objects.filter(title='Trip Completed!').count(), 2)
		self.assertIsNone(booking_lifecycle.get_active_live_ride(self.passenger))

		with self.assertRaises(InvalidTransitionError):
			booking_lifecycle.advance_live_ride(self.driver, self.live_ride.id, LiveRideStatus.COMPLETED)

	def test_review_requires_completed_trip(self):
		with self.assertRaises(ForbiddenError):
			booking_lifecycle.submit_review(self.passenger, self.ride.id, self.driver.id, 5)

	def test_review_updates_mean_rating(self):
		self.advance_to(LiveRideStatus.COMPLETED)

		review = booking_lifecycle.submit_review(self.passenger, self.ride.id, self.driver.id, 4, 'Smooth ride')

		self.assertEqual(review.rating, 4)
		self.driver.refresh_from_db()
		self.assertEqual(self.driver.rating, Decimal('4.0'))

		booking_lifecycle.submit_review(self.driver, self.ride.id, self.passenger.id, 5)
		self.passenger.refresh_from_db()
		self.assertEqual(self.passenger.rating, Decimal('5.0'))

	def test_review_once_per_trip(self):
		self.advance_to(LiveRideStatus.COMPLETED)
		booking_lifecycle.submit_review(self.passenger, self.ride.id, self.driver.id, 4)

		with self.assertRaises(DuplicateReviewError):
			booking_lifecycle.submit_review(self.passenger, self.ride.id, self.driver.id, 2)

		self.assertEqual(Review.objects.count(), 1)

	def test_review_rating_range(self):
		self.advance_to(LiveRideStatus.COMPLETED)

		with self.assertRaises(InvalidRequestError):
			booking_lifecycle.submit_review(self.passenger, self.ride.id, self.driver.id, 6)
		with self.assertRaises(InvalidRequestError):
			booking_lifecycle.submit_review(self.passenger, self.ride.id, self.passenger.id, 5)

	def test_outsider_cannot_review(self):
		self.advance_to(LiveRideStatus.COMPLETED)

		with self.assertRaises(ForbiddenError):
			booking_lifecycle.submit_review(self.other, self.ride.id, self.driver.id, 1)
