"""
Ride booking coordinator.

The single client-side owner of ride, booking, live ride and notification
state. UI code calls the async operations below and renders from the
read-only views; the optimistic pipeline and the reconciler are the only
writers of the caches.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from common.lifecycle import (
    BookingStatus,
    LiveRideStatus,
    RideStatus,
    RideBookingError,
    CapacityExceededError,
    ForbiddenError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    RemoteUnavailableError,
    same_id,
    check_booking_request,
    check_booking_response,
    check_booking_cancel,
    check_seat_decrement,
    check_live_transition,
    check_rating,
    resolve_decision,
    total_amount,
    is_valid_code,
    normalize_code,
)
from common.utils import distance_to_point
from .auth import Session
from .cache import EntityCache
from .config import StoreConfig
from .optimistic import OptimisticPipeline
from .reconciler import Reconciler
from .remote import ChangeEvent, DisabledStore, RemoteStore, Subscription

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 50
LOAD_ATTEMPTS = 3
CO2_KG_PER_RIDE = Decimal("2.3")


class RideBookingCoordinator:
    def __init__(
        self,
        store: RemoteStore,
        session: Optional[Session] = None,
        *,
        timeout: float = 15.0,
        backoff_base: float = 0.5,
    ):
        self.store = store
        self.session = session
        self.user_id = session.user_id if session else None
        self.backoff_base = backoff_base

        self.caches: Dict[str, EntityCache] = {
            "rides": EntityCache("rides"),
            "my_bookings": EntityCache("my_bookings"),
            "booking_requests": EntityCache("booking_requests"),
            "live_rides": EntityCache("live_rides"),
            "notifications": EntityCache("notifications", max_size=NOTIFICATION_LIMIT),
            "reviews": EntityCache("reviews"),
        }
        self.pipeline = OptimisticPipeline(timeout=timeout)
        self.reconciler = Reconciler(self.user_id, self.caches, is_active=lambda: self._active)

        self._active = True
        self._started = False
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def active(self) -> bool:
        return self._active

    # ---------------------- Lifecycle ----------------------

    async def start(self):
        """Open one feed subscription per table, then load the initial data."""
        if self._started or not self._active:
            return
        self._started = True

        for table, filters in self._feed_tables().items():
            subscription = await self.store.subscribe(table, filters)
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(self._consume(subscription)))

        await self.load_rides()
        if self.user_id is not None:
            await self.load_my_data()

    async def close(self):
        """Stop applying events, cancel the consumers and close every channel."""
        self._active = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions.clear()
        await self.store.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _feed_tables(self) -> Dict[str, Dict[str, Any]]:
        if self.user_id is None:
            return {"rides": {}}
        return {
            "rides": {},
            "bookings": {},
            "live_rides": {},
            "notifications": {"user_id": self.user_id},
        }

    async def _consume(self, subscription: Subscription):
        async for event in subscription:
            if not self._active:
                break
            try:
                self.reconciler.apply(event)
            except Exception:
                logger.exception("Failed to apply %s %s event", event.table, event.operation)

    # ---------------------- Reads ----------------------

    async def _read(self, table, filters=None, order="-created_at", limit=None):
        """Query with exponential backoff on RemoteUnavailableError."""
        attempt = 0
        while True:
            try:
                return await self.store.query(table, filters or {}, order=order, limit=limit)
            except RemoteUnavailableError:
                attempt += 1
                if attempt >= LOAD_ATTEMPTS:
                    raise
                delay = self.backoff_base * (2 ** (attempt - 1))
                logger.warning("Reading %s failed (attempt %d), retrying in %.1fs", table, attempt, delay)
                await asyncio.sleep(delay)

    async def load_rides(self, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
        rows = await self._read("rides", {"status": RideStatus.ACTIVE, **(filters or {})})
        if self._active:
            self.caches["rides"].load(rows)
        return self.rides

    async def load_my_data(self):
        """Load the signed-in user's rides, bookings, requests, live rides and notifications."""
        me = self._require_user()
        my_rides = await self._read("rides", {"driver_id": me})
        my_bookings = await self._read("bookings", {"passenger_id": me})
        requests = await self._read("bookings", {"driver_id": me})
        live_rides = await self._read("live_rides")
        notifications = await self._read("notifications", {"user_id": me}, limit=NOTIFICATION_LIMIT)

        if not self._active:
            return
        for ride in my_rides:
            self.caches["rides"].upsert(ride)
        self.caches["my_bookings"].load(my_bookings)
        self.caches["booking_requests"].load(requests)
        self.caches["live_rides"].load(live_rides)
        self.caches["notifications"].load(notifications)

    # ---------------------- Views ----------------------

    @property
    def rides(self) -> List[dict]:
        return [ride for ride in self.caches["rides"].values() if ride.get("status", RideStatus.ACTIVE) == RideStatus.ACTIVE]

    @property
    def my_rides(self) -> List[dict]:
        return [ride for ride in self.caches["rides"].values() if same_id(ride.get("driver_id"), self.user_id)]

    @property
    def my_bookings(self) -> List[dict]:
        return self.caches["my_bookings"].values()

    @property
    def notifications(self) -> List[dict]:
        return self.caches["notifications"].values()

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.get("is_read"))

    def booking_requests(self, ride_id=None) -> List[dict]:
        requests = self.caches["booking_requests"].values()
        if ride_id is None:
            return requests
        return [req for req in requests if same_id(req.get("ride_id"), ride_id)]

    def get_active_live_ride(self) -> Optional[dict]:
        """Newest unfinished live ride where the user is driver or passenger."""
        for live_ride in self.caches["live_rides"].values():
            if live_ride.get("ride_status") == LiveRideStatus.COMPLETED or self._trip_cancelled(live_ride):
                continue
            if same_id(live_ride.get("driver_id"), self.user_id) or same_id(live_ride.get("passenger_id"), self.user_id):
                return live_ride
        return None

    def search_rides(self, origin=None, destination=None, date=None, seats=None, price_range=None) -> List[dict]:
        """Filter cached active rides; results sorted by departure time."""
        results = []
        for ride in self.rides:
            if origin and origin.lower() not in (ride.get("origin_name") or "").lower():
                continue
            if destination and destination.lower() not in (ride.get("destination_name") or "").lower():
                continue
            if date and str(ride.get("departure_time") or "") < _date_text(date):
                continue
            if seats and int(ride.get("available_seats") or 0) < int(seats):
                continue
            if price_range:
                price = _decimal(ride.get("price_per_seat"))
                low, high = price_range
                if (low is not None and price < _decimal(low)) or (high is not None and price > _decimal(high)):
                    continue
            results.append(ride)
        return sorted(results, key=lambda r: str(r.get("departure_time") or ""))

    def nearby_rides(self, lat: float, lng: float, radius_km: float = 10) -> List[dict]:
        """Active rides whose origin lies within radius_km, nearest first."""
        nearby = []
        for ride in self.rides:
            meters = distance_to_point(lat, lng, ride.get("origin_lat"), ride.get("origin_lng"))
            if meters is not None and meters / 1000 <= radius_km:
                nearby.append((meters / 1000, ride))
        nearby.sort(key=lambda pair: pair[0])
        return [{**ride, "distance_km": round(distance, 2)} for distance, ride in nearby]

    def stats(self) -> Dict[str, Any]:
        my_rides = self.my_rides
        my_bookings = self.my_bookings
        travelled = len(my_rides) + len(my_bookings)
        return {
            "total_rides": len(my_rides),
            "total_bookings": len(my_bookings),
            "rides_completed": sum(1 for r in my_rides if r.get("status") == RideStatus.COMPLETED),
            "bookings_completed": sum(1 for b in my_bookings if b.get("status") == BookingStatus.COMPLETED),
            "total_spent": sum(
                (_decimal(b.get("total_amount")) for b in my_bookings if b.get("status") != BookingStatus.DECLINED),
                Decimal("0"),
            ),
            "co2_saved_kg": int((travelled * CO2_KG_PER_RIDE).to_integral_value()),
            "pending_requests": sum(1 for r in self.booking_requests() if r.get("status") == BookingStatus.PENDING),
            "unread_notifications": self.unread_count,
        }

    # ---------------------- Mutations ----------------------

    async def create_ride(self, data: Dict[str, Any]) -> dict:
        me = self._require_user()
        record = dict(data)
        if not (record.get("origin_name") or "").strip() or not (record.get("destination_name") or "").strip():
            raise InvalidRequestError("Origin and destination are required")
        seats = record.get("available_seats", 1)
        try:
            seats = int(seats)
        except (TypeError, ValueError):
            raise InvalidRequestError("Seats must be a whole number")
        if seats < 1:
            raise InvalidRequestError("A ride needs at least one seat")
        record["available_seats"] = seats

        def local_apply(key):
            return {
                **record,
                "id": key,
                "driver_id": me,
                "status": RideStatus.ACTIVE,
                "created_at": _now(),
            }

        return await self.pipeline.perform(
            "create_ride",
            self.caches["rides"],
            local_apply=local_apply,
            remote_call=lambda: self.store.create("rides", record),
        )

    async def request_booking(self, ride_id, seats=1, pickup_location: Optional[str] = None, message: str = "") -> dict:
        """
        Request seats on a ride.

        Every precondition is checked against the cache before the store is
        contacted: unknown ride, own ride, an existing active booking and
        seat availability.
        """
        me = self._require_user()
        ride = self.caches["rides"].get(ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")

        has_active = any(
            same_id(b.get("ride_id"), ride_id) and b.get("status") in BookingStatus.ACTIVE
            for b in self.caches["my_bookings"].values()
        )
        seats = check_booking_request(
            driver_id=ride.get("driver_id"),
            passenger_id=me,
            seats=seats,
            available_seats=ride.get("available_seats", 0),
            ride_status=ride.get("status", RideStatus.ACTIVE),
            has_active_booking=has_active,
        )

        record = {
            "ride_id": ride_id,
            "seats_requested": seats,
            "pickup_location": pickup_location or ride.get("origin_name", ""),
            "message": message or "",
        }

        def local_apply(key):
            return {
                **record,
                "id": key,
                "driver_id": ride.get("driver_id"),
                "passenger_id": me,
                "status": BookingStatus.PENDING,
                "total_amount": str(total_amount(seats, ride.get("price_per_seat") or 0)),
                "created_at": _now(),
            }

        return await self.pipeline.perform(
            "request_booking",
            self.caches["my_bookings"],
            local_apply=local_apply,
            remote_call=lambda: self.store.create("bookings", record),
        )

    async def respond_to_booking(self, booking_id, decision: str, verification_code: Optional[str] = None) -> dict:
        """Accept or decline a pending request on one of the user's rides."""
        me = self._require_user()
        cache = self.caches["booking_requests"]
        booking = cache.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking request not found")
        if not same_id(booking.get("driver_id"), me):
            raise ForbiddenError("Only the ride's driver can respond to this booking")
        check_booking_response(booking.get("status"))
        new_status = resolve_decision(decision)

        args = {"booking_id": booking_id, "decision": decision}
        if new_status == BookingStatus.CONFIRMED:
            ride = self.caches["rides"].get(booking.get("ride_id"))
            if ride is not None:
                check_seat_decrement(ride.get("available_seats", 0), booking.get("seats_requested", 1))
            if verification_code:
                code = normalize_code(verification_code)
                if not is_valid_code(code):
                    raise InvalidRequestError("Verification code must be 4-6 letters or digits")
                args["verification_code"] = code

        async def remote_call():
            result = await self.store.rpc("respond_to_booking", args)
            self._apply_server_rows(result)
            return result

        return await self.pipeline.perform(
            f"respond_to_booking:{booking_id}",
            cache,
            key=booking_id,
            local_apply=lambda key: {**booking, "status": new_status},
            remote_call=remote_call,
            select=lambda result: result.get("booking"),
        )

    async def cancel_booking(self, booking_id) -> dict:
        """Withdraw one of the user's pending booking requests."""
        me = self._require_user()
        cache = self.caches["my_bookings"]
        booking = cache.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if not same_id(booking.get("passenger_id"), me):
            raise ForbiddenError("Only the passenger can cancel this booking")
        check_booking_cancel(booking.get("status"))

        return await self.pipeline.perform(
            f"cancel_booking:{booking_id}",
            cache,
            key=booking_id,
            local_apply=lambda key: {**booking, "status": BookingStatus.CANCELLED},
            remote_call=lambda: self.store.rpc("cancel_booking", {"booking_id": booking_id}),
            select=lambda result: result.get("booking"),
        )

    async def cancel_ride(self, ride_id) -> dict:
        """Cancel one of the user's active rides."""
        me = self._require_user()
        cache = self.caches["rides"]
        ride = cache.get(ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")
        if not same_id(ride.get("driver_id"), me):
            raise ForbiddenError("Only the driver can cancel this ride")
        if ride.get("status") != RideStatus.ACTIVE:
            raise InvalidTransitionError(f"Ride is already {ride.get('status')}")

        return await self.pipeline.perform(
            f"cancel_ride:{ride_id}",
            cache,
            key=ride_id,
            local_apply=lambda key: {**ride, "status": RideStatus.CANCELLED},
            remote_call=lambda: self.store.rpc("cancel_ride", {"ride_id": ride_id}),
            select=lambda result: result.get("ride"),
        )

    async def advance_live_ride(self, live_ride_id, next_status: str) -> dict:
        """Move a live ride exactly one step along the trip sequence."""
        me = self._require_user()
        cache = self.caches["live_rides"]
        live_ride = cache.get(live_ride_id)
        if live_ride is None:
            raise NotFoundError("Live ride not found")
        if not same_id(live_ride.get("driver_id"), me):
            raise ForbiddenError("Only the driver can update this trip")
        if self._trip_cancelled(live_ride):
            raise InvalidTransitionError("This trip was cancelled")
        check_live_transition(live_ride.get("ride_status"), next_status)

        return await self.pipeline.perform(
            f"advance_live_ride:{live_ride_id}",
            cache,
            key=live_ride_id,
            local_apply=lambda key: {**live_ride, "ride_status": next_status},
            remote_call=lambda: self.store.rpc(
                "advance_live_ride", {"live_ride_id": live_ride_id, "next_status": next_status}
            ),
            select=lambda result: result.get("live_ride"),
        )

    async def submit_review(self, ride_id, reviewee_id, rating, comment: str = "") -> dict:
        me = self._require_user()
        rating = check_rating(rating)
        if same_id(reviewee_id, me):
            raise InvalidRequestError("You cannot review yourself")

        record = {"ride_id": ride_id, "reviewee_id": reviewee_id, "rating": rating, "comment": comment or ""}
        return await self.pipeline.perform(
            "submit_review",
            self.caches["reviews"],
            local_apply=lambda key: {**record, "id": key, "reviewer_id": me, "created_at": _now()},
            remote_call=lambda: self.store.create("reviews", record),
        )

    async def mark_notification_read(self, notification_id) -> dict:
        cache = self.caches["notifications"]
        notification = cache.get(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.get("is_read"):
            return notification

        read = {**notification, "is_read": True}
        if str(notification_id).startswith("local_"):
            # Client-side notifications never reach the store
            remote_call = _resolved(read)
        else:
            remote_call = lambda: self.store.update("notifications", notification_id, {"is_read": True})  # noqa: E731

        return await self.pipeline.perform(
            f"mark_notification_read:{notification_id}",
            cache,
            key=notification_id,
            local_apply=lambda key: read,
            remote_call=remote_call,
        )

    def notify_local(self, message: str, type: str = "info", title: Optional[str] = None) -> Optional[dict]:
        return self.reconciler.notify_local(message, type=type, title=title)

    # ---------------------- Errors ----------------------

    @staticmethod
    def describe_error(exc: BaseException) -> str:
        """User-facing message for a failed action, distinct per error kind."""
        if isinstance(exc, CapacityExceededError) and "available" in exc.details:
            available = exc.details["available"]
            return f"Not enough seats available! Only {available} seat(s) left on this ride."
        if isinstance(exc, InvalidTransitionError) and "expected" in exc.details:
            return f"This trip can only move to {exc.details['expected'].replace('_', ' ')} next."
        if isinstance(exc, RideBookingError):
            return exc.user_message
        return RideBookingError.user_message

    # ---------------------- Helpers ----------------------

    def _require_user(self):
        if self.user_id is None:
            raise ForbiddenError("Please sign in first")
        return self.user_id

    def _trip_cancelled(self, live_ride: dict) -> bool:
        """True when the cached booking or ride behind a live ride is no longer open."""
        booking_id = live_ride.get("booking_id")
        if booking_id is not None:
            for name in ("my_bookings", "booking_requests"):
                booking = self.caches[name].get(booking_id)
                if booking is not None and booking.get("status") != BookingStatus.CONFIRMED:
                    return True
        ride_id = live_ride.get("ride_id")
        ride = self.caches["rides"].get(ride_id) if ride_id is not None else None
        return ride is not None and ride.get("status") == RideStatus.CANCELLED

    def _apply_server_rows(self, result: Dict[str, Any]):
        """Rows returned next to an RPC result are applied like feed updates."""
        if not isinstance(result, dict):
            return
        for key, table in (("ride", "rides"), ("live_ride", "live_rides")):
            if result.get(key):
                self.reconciler.apply(ChangeEvent(table, "update", None, result[key]))


def build_coordinator(config: StoreConfig, session: Optional[Session] = None, **kwargs) -> RideBookingCoordinator:
    """Coordinator wired to the configured store, or to a DisabledStore."""
    if not config.enabled:
        return RideBookingCoordinator(DisabledStore(), session, timeout=config.timeout, **kwargs)

    from .api_store import ApiStore

    store = ApiStore(config, access_token=session.access_token if session else None)
    return RideBookingCoordinator(store, session, timeout=config.timeout, **kwargs)


def _resolved(value):
    async def call():
        return value
    return call


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_text(value) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _decimal(value) -> Decimal:
    try:
        return Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return Decimal("0")
