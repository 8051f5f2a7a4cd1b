from decimal import Decimal

from django.test import SimpleTestCase

from common.lifecycle import (
    BookingStatus,
    LiveRideStatus,
    RideStatus,
    CapacityExceededError,
    DuplicateBookingError,
    ForbiddenError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    RemoteUnavailableError,
    SelfBookingError,
    average_rating,
    check_booking_request,
    check_live_transition,
    check_rating,
    check_seat_decrement,
    error_from_payload,
    generate_code,
    generate_unique_code,
    is_valid_code,
    next_live_status,
    resolve_decision,
    same_id,
    total_amount,
)
from common.utils import calculate_distance, distance_to_point


class BookingRuleTests(SimpleTestCase):
    def request(self, **overrides):
        kwargs = dict(driver_id=1, passenger_id=2, seats=1, available_seats=2)
        kwargs.update(overrides)
        return check_booking_request(**kwargs)

    def test_valid_request_returns_seat_count(self):
        self.assertEqual(self.request(seats="2"), 2)

    def test_self_booking_is_forbidden(self):
        with self.assertRaises(SelfBookingError) as ctx:
            self.request(passenger_id=1)
        self.assertIsInstance(ctx.exception, ForbiddenError)

    def test_self_booking_checked_before_capacity(self):
        with self.assertRaises(SelfBookingError):
            self.request(passenger_id=1, seats=10)

    def test_duplicate_booking(self):
        with self.assertRaises(DuplicateBookingError):
            self.request(has_active_booking=True)

    def test_capacity(self):
        with self.assertRaises(CapacityExceededError) as ctx:
            self.request(seats=3)
        self.assertEqual(ctx.exception.details, {"requested": 3, "available": 2})

    def test_bad_seat_counts(self):
        for seats in (0, -1, "two", None):
            with self.assertRaises(InvalidRequestError):
                self.request(seats=seats)

    def test_inactive_ride(self):
        with self.assertRaises(InvalidTransitionError):
            self.request(ride_status=RideStatus.CANCELLED)

    def test_ids_compare_exactly(self):
        self.assertTrue(same_id(5, 5))
        self.assertFalse(same_id(5, 15))
        self.assertFalse(same_id(None, None))

    def test_total_amount(self):
        self.assertEqual(total_amount(2, "50"), Decimal("100.00"))
        self.assertEqual(total_amount(3, Decimal("33.33")), Decimal("99.99"))

    def test_seat_decrement_never_negative(self):
        self.assertEqual(check_seat_decrement(2, 2), 0)
        with self.assertRaises(CapacityExceededError):
            check_seat_decrement(1, 2)

    def test_decisions(self):
        self.assertEqual(resolve_decision("accept"), BookingStatus.CONFIRMED)
        self.assertEqual(resolve_decision("Declined"), BookingStatus.DECLINED)
        with self.assertRaises(InvalidRequestError):
            resolve_decision("maybe")


class LiveRideRuleTests(SimpleTestCase):
    def test_sequence_walks_forward(self):
        status = LiveRideStatus.CONFIRMED
        seen = [status]
        while next_live_status(status):
            status = check_live_transition(status, next_live_status(status))
            seen.append(status)
        self.assertEqual(tuple(seen), LiveRideStatus.SEQUENCE)

    def test_skip_and_backward_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            check_live_transition(LiveRideStatus.CONFIRMED, LiveRideStatus.IN_TRANSIT)
        with self.assertRaises(InvalidTransitionError):
            check_live_transition(LiveRideStatus.ARRIVED, LiveRideStatus.CONFIRMED)
        with self.assertRaises(InvalidTransitionError):
            check_live_transition(LiveRideStatus.COMPLETED, LiveRideStatus.COMPLETED)

    def test_unknown_status(self):
        with self.assertRaises(InvalidTransitionError):
            check_live_transition(LiveRideStatus.CONFIRMED, "teleported")


class ReviewRuleTests(SimpleTestCase):
    def test_rating_bounds(self):
        self.assertEqual(check_rating(5), 5)
        self.assertEqual(check_rating("3"), 3)
        for rating in (0, 6, 4.5, "great", None, True, False):
            with self.assertRaises(InvalidRequestError):
                check_rating(rating)

    def test_average_rating_rounds_to_one_decimal(self):
        self.assertEqual(average_rating([5, 4, 4]), Decimal("4.3"))
        self.assertEqual(average_rating([4, 5]), Decimal("4.5"))
        self.assertIsNone(average_rating([]))


class VerificationCodeTests(SimpleTestCase):
    def test_generated_codes_are_valid(self):
        for _ in range(20):
            code = generate_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(is_valid_code(code))

    def test_validation(self):
        self.assertTrue(is_valid_code("ab12"))
        self.assertFalse(is_valid_code("A1"))
        self.assertFalse(is_valid_code("ABCDEFG"))
        self.assertFalse(is_valid_code("AB-12"))

    def test_unique_code_skips_taken(self):
        taken = set()

        def is_taken(code):
            # First draw collides, second is free
            if not taken:
                taken.add(code)
                return True
            return code in taken

        code = generate_unique_code(is_taken)
        self.assertNotIn(code, taken)

    def test_unique_code_gives_up(self):
        with self.assertRaises(RuntimeError):
            generate_unique_code(lambda code: True)


class ErrorPayloadTests(SimpleTestCase):
    def test_round_trip_by_code(self):
        error = CapacityExceededError("Not enough seats", requested=3, available=1)
        rebuilt = error_from_payload(error.to_dict(), 409)
        self.assertIsInstance(rebuilt, CapacityExceededError)
        self.assertEqual(rebuilt.details["available"], 1)

    def test_fallback_by_status(self):
        self.assertIsInstance(error_from_payload({}, 502), RemoteUnavailableError)
        self.assertIsInstance(error_from_payload({"detail": "x"}, 404), NotFoundError)
        self.assertIsInstance(error_from_payload(None, 401), ForbiddenError)
        self.assertIsInstance(error_from_payload("oops", 400), InvalidRequestError)

    def test_user_messages_are_distinct(self):
        from common.lifecycle.exceptions import ERROR_CLASSES

        messages = [cls.user_message for cls in ERROR_CLASSES.values()]
        self.assertEqual(len(messages), len(set(messages)))


class GeoTests(SimpleTestCase):
    def test_distance_in_meters(self):
        distance = calculate_distance(30.5160, 76.6597, 30.5160, 76.6700)
        self.assertAlmostEqual(distance, 986, delta=15)

    def test_missing_point(self):
        self.assertIsNone(distance_to_point(30.5, 76.6, None, 76.6))
