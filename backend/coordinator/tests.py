import asyncio
import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase

from common.lifecycle import (
    CapacityExceededError,
    DuplicateBookingError,
    ForbiddenError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    OperationInProgressError,
    RemoteUnavailableError,
    SelfBookingError,
)
from .api_store import ApiStore
from .auth import AuthClient, Session
from .cache import EntityCache
from .config import StoreConfig, load_config, save_settings
from .coordinator import RideBookingCoordinator, build_coordinator
from .optimistic import OptimisticPipeline, is_temp_key
from .reconciler import Reconciler
from .remote import ChangeEvent, DisabledStore, RemoteStore, Subscription

ME = 7
DRIVER = 8
OTHER = 9


class FakeStore(RemoteStore):
    """In-memory RemoteStore recording every call."""

    def __init__(self):
        self.tables = {name: [] for name in ("rides", "bookings", "live_rides", "notifications", "reviews")}
        self.defaults = {}
        self.calls = []
        self.subscriptions = {}
        self.rpc_handlers = {}
        self.fail_with = None
        self.query_failures = 0
        self.gate = None
        self.next_id = 100
        self.closed = False

    async def _before_write(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

    async def create(self, table, record):
        self.calls.append(("create", table, record))
        await self._before_write()
        row = {**self.defaults.get(table, {}), **record, "id": self.next_id}
        self.next_id += 1
        self.tables[table].append(row)
        return row

    async def query(self, table, filters=None, order=None, limit=None):
        self.calls.append(("query", table, filters))
        if self.query_failures:
            self.query_failures -= 1
            raise RemoteUnavailableError("flaky")
        rows = [
            row for row in self.tables[table]
            if all(str(row.get(k)) == str(v) for k, v in (filters or {}).items())
        ]
        return rows[:limit] if limit else rows

    async def update(self, table, id, patch):
        self.calls.append(("update", table, id, patch))
        await self._before_write()
        for row in self.tables[table]:
            if row["id"] == id:
                row.update(patch)
                return dict(row)
        raise NotFoundError("No such row")

    async def subscribe(self, table, filters=None):
        subscription = Subscription(table, filters)
        self.subscriptions[table] = subscription
        return subscription

    async def rpc(self, name, args):
        self.calls.append(("rpc", name, args))
        await self._before_write()
        return self.rpc_handlers[name](args)

    async def close(self):
        self.closed = True

    def emit(self, table, operation, before=None, after=None):
        self.subscriptions[table].push(ChangeEvent(table, operation, before, after))

    def writes(self):
        return [call for call in self.calls if call[0] in ("create", "update", "rpc")]


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def ride_row(id=1, driver_id=DRIVER, seats=2, **extra):
    row = {
        "id": id,
        "driver_id": driver_id,
        "origin_name": "Campus",
        "destination_name": "Railway Station",
        "departure_time": "2026-11-01T09:00:00+05:30",
        "available_seats": seats,
        "price_per_seat": "50.00",
        "status": "active",
        "origin_lat": "30.51600000",
        "origin_lng": "76.65970000",
    }
    row.update(extra)
    return row


def booking_row(id=11, ride_id=1, passenger_id=ME, driver_id=DRIVER, status="pending", seats=1):
    return {
        "id": id,
        "ride_id": ride_id,
        "passenger_id": passenger_id,
        "driver_id": driver_id,
        "seats_requested": seats,
        "status": status,
    }


class CoordinatorTestCase(SimpleTestCase):
    user_id = ME

    async def make_coordinator(self, timeout=1.0):
        self.store = FakeStore()
        self.seed(self.store)
        coordinator = RideBookingCoordinator(
            self.store,
            Session(user_id=self.user_id, email="me@campus.edu", access_token="token"),
            timeout=timeout,
            backoff_base=0,
        )
        await coordinator.start()
        self.store.calls.clear()
        return coordinator

    def seed(self, store):
        store.tables["rides"].append(ride_row())


class CoordinatorStartupTests(CoordinatorTestCase):
    async def test_start_subscribes_and_loads(self):
        coordinator = await self.make_coordinator()

        self.assertEqual(set(self.store.subscriptions), {"rides", "bookings", "live_rides", "notifications"})
        self.assertEqual(self.store.subscriptions["notifications"].filters, {"user_id": ME})
        self.assertEqual([r["id"] for r in coordinator.rides], [1])
        await coordinator.close()

    async def test_close_stops_event_handling(self):
        coordinator = await self.make_coordinator()
        subscriptions = list(self.store.subscriptions.values())

        await coordinator.close()

        self.assertFalse(coordinator.active)
        self.assertTrue(all(sub.closed for sub in subscriptions))
        self.assertTrue(self.store.closed)
        self.assertFalse(coordinator.reconciler.apply(ChangeEvent("rides", "insert", None, ride_row(id=2))))
        self.assertEqual(len(coordinator.rides), 1)

    async def test_load_rides_retries_with_backoff(self):
        coordinator = await self.make_coordinator()
        self.store.query_failures = 2

        rides = await coordinator.load_rides()

        self.assertEqual(len(rides), 1)
        await coordinator.close()

    async def test_load_rides_gives_up_after_three_attempts(self):
        coordinator = await self.make_coordinator()
        self.store.query_failures = 3

        with self.assertRaises(RemoteUnavailableError):
            await coordinator.load_rides()
        self.assertEqual(len([c for c in self.store.calls if c[0] == "query"]), 3)
        await coordinator.close()


class RequestBookingTests(CoordinatorTestCase):
    async def test_self_booking_fails_without_network_call(self):
        coordinator = await self.make_coordinator()
        self.store.tables["rides"][0]["driver_id"] = ME
        await coordinator.load_rides()
        self.store.calls.clear()

        with self.assertRaises(SelfBookingError):
            await coordinator.request_booking(1)

        self.assertEqual(self.store.calls, [])
        self.assertEqual(coordinator.my_bookings, [])
        await coordinator.close()

    async def test_unknown_ride(self):
        coordinator = await self.make_coordinator()

        with self.assertRaises(NotFoundError):
            await coordinator.request_booking(404)
        self.assertEqual(self.store.writes(), [])
        await coordinator.close()

    async def test_duplicate_active_booking(self):
        coordinator = await self.make_coordinator()
        coordinator.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row()))

        with self.assertRaises(DuplicateBookingError):
            await coordinator.request_booking(1)
        self.assertEqual(self.store.writes(), [])
        await coordinator.close()

    async def test_capacity_checked_locally(self):
        coordinator = await self.make_coordinator()

        with self.assertRaises(CapacityExceededError):
            await coordinator.request_booking(1, seats=3)
        self.assertEqual(self.store.writes(), [])
        await coordinator.close()

    async def test_optimistic_entry_replaced_by_server_row(self):
        coordinator = await self.make_coordinator()
        self.store.defaults["bookings"] = {"passenger_id": ME, "driver_id": DRIVER, "status": "pending"}
        self.store.gate = asyncio.Event()

        task = asyncio.create_task(coordinator.request_booking(1, seats=2, message="Near gate"))
        await settle()

        [pending] = coordinator.my_bookings
        self.assertTrue(is_temp_key(pending["id"]))
        self.assertEqual(pending["total_amount"], "100.00")
        self.assertEqual(pending["pickup_location"], "Campus")

        self.store.gate.set()
        booking = await task

        self.assertEqual(coordinator.my_bookings, [booking])
        self.assertEqual(booking["id"], 100)
        await coordinator.close()

    async def test_failed_remote_call_restores_cache(self):
        coordinator = await self.make_coordinator()
        before = [dict(b) for b in coordinator.my_bookings]
        self.store.fail_with = CapacityExceededError("Not enough seats available")

        with self.assertRaises(CapacityExceededError):
            await coordinator.request_booking(1)

        self.assertEqual(coordinator.my_bookings, before)
        self.assertFalse(coordinator.caches["my_bookings"].has_pending())
        await coordinator.close()

    async def test_timeout_rolls_back(self):
        coordinator = await self.make_coordinator(timeout=0.05)
        self.store.gate = asyncio.Event()

        with self.assertRaises(RemoteUnavailableError):
            await coordinator.request_booking(1)

        self.assertEqual(coordinator.my_bookings, [])
        self.store.gate.set()
        await coordinator.close()

    async def test_second_request_while_first_in_flight(self):
        coordinator = await self.make_coordinator()
        self.store.tables["rides"].append(ride_row(id=2))
        await coordinator.load_rides()
        self.store.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.request_booking(1))
        await settle()
        with self.assertRaises(OperationInProgressError):
            await coordinator.request_booking(2)

        self.store.gate.set()
        await first
        self.assertEqual(len(coordinator.my_bookings), 1)
        await coordinator.close()


class DriverFlowTests(CoordinatorTestCase):
    user_id = DRIVER

    def seed(self, store):
        store.tables["rides"].append(ride_row(seats=2))
        store.tables["bookings"].append(booking_row(seats=2))

    def accept_handler(self, args):
        return {
            "booking": {**booking_row(seats=2), "status": "confirmed", "verification_code": "K7Q2XZ"},
            "ride": ride_row(seats=0),
            "live_ride": {"id": 31, "booking_id": 11, "ride_id": 1, "driver_id": DRIVER,
                          "passenger_id": ME, "ride_status": "confirmed"},
            "verification_code": "K7Q2XZ",
        }

    async def test_accept_updates_booking_ride_and_live_ride(self):
        coordinator = await self.make_coordinator()
        self.store.rpc_handlers["respond_to_booking"] = self.accept_handler

        result = await coordinator.respond_to_booking(11, "accept")

        self.assertEqual(result["verification_code"], "K7Q2XZ")
        self.assertEqual(coordinator.booking_requests(ride_id=1)[0]["status"], "confirmed")
        self.assertEqual(coordinator.caches["rides"].get(1)["available_seats"], 0)
        self.assertEqual(coordinator.get_active_live_ride()["id"], 31)
        await coordinator.close()

    async def test_cancelled_ride_hides_and_freezes_its_live_ride(self):
        coordinator = await self.make_coordinator()
        self.store.rpc_handlers["respond_to_booking"] = self.accept_handler
        await coordinator.respond_to_booking(11, "accept")
        self.store.calls.clear()

        self.store.emit("rides", "update", None, ride_row(seats=0, status="cancelled"))
        self.store.emit("bookings", "update", None, {**booking_row(seats=2), "status": "cancelled"})
        await settle()

        self.assertIsNone(coordinator.get_active_live_ride())
        with self.assertRaises(InvalidTransitionError):
            await coordinator.advance_live_ride(31, "driver_arriving")
        self.assertEqual(self.store.writes(), [])
        await coordinator.close()

    async def test_decline_leaves_seats(self):
        coordinator = await self.make_coordinator()
        self.store.rpc_handlers["respond_to_booking"] = lambda args: {
            "booking": {**booking_row(seats=2), "status": "declined"},
            "ride": ride_row(seats=2),
            "live_ride": None,
        }

        await coordinator.respond_to_booking(11, "decline")

        self.assertEqual(coordinator.booking_requests()[0]["status"], "declined")
        self.assertEqual(coordinator.caches["rides"].get(1)["available_seats"], 2)
        self.assertIsNone(coordinator.get_active_live_ride())
        await coordinator.close()

    async def test_respond_to_answered_booking_is_rejected_locally(self):
        coordinator = await self.make_coordinator()
        self.store.emit("bookings", "update", None, {**booking_row(seats=2), "status": "declined"})
        await settle()

        with self.assertRaises(InvalidTransitionError):
            await coordinator.respond_to_booking(11, "accept")
        self.assertEqual(self.store.writes(), [])
        await coordinator.close()

    async def test_failed_accept_restores_pending_status(self):
        coordinator = await self.make_coordinator()
        self.store.fail_with = CapacityExceededError("Not enough seats left to confirm this booking")

        with self.assertRaises(CapacityExceededError):
            await coordinator.respond_to_booking(11, "accept")

        self.assertEqual(coordinator.booking_requests()[0]["status"], "pending")
        await coordinator.close()

    async def test_new_request_routed_to_driver_with_notification(self):
        coordinator = await self.make_coordinator()

        self.store.emit("bookings", "insert", None, booking_row(id=12, passenger_id=OTHER))
        await settle()

        self.assertEqual([b["id"] for b in coordinator.booking_requests()], [12, 11])
        self.assertEqual(coordinator.notifications[0]["message"], "New booking request")
        self.assertEqual(coordinator.stats()["pending_requests"], 2)
        await coordinator.close()

    async def test_advance_rejects_skips_before_rpc(self):
        coordinator = await self.make_coordinator()
        coordinator.reconciler.apply(ChangeEvent("live_rides", "insert", None, {
            "id": 31, "driver_id": DRIVER, "passenger_id": ME, "ride_status": "confirmed",
        }))

        with self.assertRaises(InvalidTransitionError):
            await coordinator.advance_live_ride(31, "in_transit")
        self.assertEqual(self.store.writes(), [])

        self.store.rpc_handlers["advance_live_ride"] = lambda args: {"live_ride": {
            "id": 31, "driver_id": DRIVER, "passenger_id": ME, "ride_status": args["next_status"],
        }}
        live_ride = await coordinator.advance_live_ride(31, "driver_arriving")
        self.assertEqual(live_ride["live_ride"]["ride_status"], "driver_arriving")
        self.assertEqual(coordinator.get_active_live_ride()["ride_status"], "driver_arriving")
        await coordinator.close()

    async def test_passenger_cannot_advance(self):
        coordinator = await self.make_coordinator()
        coordinator.reconciler.apply(ChangeEvent("live_rides", "insert", None, {
            "id": 32, "driver_id": OTHER, "passenger_id": DRIVER, "ride_status": "confirmed",
        }))

        with self.assertRaises(ForbiddenError):
            await coordinator.advance_live_ride(32, "driver_arriving")
        await coordinator.close()

    async def test_own_ride_insert_skipped_while_create_pending(self):
        coordinator = await self.make_coordinator()
        self.store.defaults["rides"] = {"driver_id": DRIVER, "status": "active", "available_seats": 3}
        self.store.gate = asyncio.Event()

        task = asyncio.create_task(coordinator.create_ride({
            "origin_name": "Hostel", "destination_name": "Airport", "available_seats": 3,
        }))
        await settle()
        self.store.emit("rides", "insert", None, ride_row(
            id=self.store.next_id, driver_id=DRIVER, seats=3, origin_name="Hostel", destination_name="Airport",
        ))
        await settle()
        self.assertEqual(len(coordinator.rides), 2)

        self.store.gate.set()
        ride = await task
        await settle()

        ids = [r["id"] for r in coordinator.rides]
        self.assertEqual(ids.count(ride["id"]), 1)
        self.assertFalse(any(is_temp_key(i) for i in ids))
        await coordinator.close()


class CoordinatorMiscTests(CoordinatorTestCase):
    def seed(self, store):
        store.tables["rides"].extend([
            ride_row(id=1, destination_name="Railway Station", price_per_seat="50.00"),
            ride_row(id=2, destination_name="Airport", price_per_seat="300.00", seats=1,
                     departure_time="2026-11-03T07:00:00+05:30", origin_lat="28.55", origin_lng="77.10"),
        ])
        store.tables["notifications"].append({"id": 5, "user_id": ME, "title": "Hi", "message": "Hi", "is_read": False})

    async def test_search_and_nearby(self):
        coordinator = await self.make_coordinator()

        self.assertEqual([r["id"] for r in coordinator.search_rides(destination="air")], [2])
        self.assertEqual([r["id"] for r in coordinator.search_rides(seats=2)], [1])
        self.assertEqual([r["id"] for r in coordinator.search_rides(price_range=(0, 100))], [1])
        self.assertEqual([r["id"] for r in coordinator.search_rides(date="2026-11-02")], [2])

        nearby = coordinator.nearby_rides(30.5165, 76.6600)
        self.assertEqual([r["id"] for r in nearby], [1])
        self.assertLess(nearby[0]["distance_km"], 1)
        await coordinator.close()

    async def test_mark_notification_read(self):
        coordinator = await self.make_coordinator()

        await coordinator.mark_notification_read(5)

        self.assertTrue(coordinator.notifications[0]["is_read"])
        self.assertEqual(self.store.calls, [("update", "notifications", 5, {"is_read": True})])
        self.assertEqual(coordinator.unread_count, 0)
        await coordinator.close()

    async def test_local_notifications_capped_at_fifty(self):
        coordinator = await self.make_coordinator()

        for i in range(55):
            coordinator.notify_local(f"message {i}")

        notifications = coordinator.notifications
        self.assertEqual(len(notifications), 50)
        self.assertEqual(notifications[0]["message"], "message 54")
        await coordinator.close()

    async def test_signed_out_coordinator_cannot_write(self):
        self.store = FakeStore()
        coordinator = RideBookingCoordinator(self.store, None)
        await coordinator.start()

        self.assertEqual(set(self.store.subscriptions), {"rides"})
        with self.assertRaises(ForbiddenError):
            await coordinator.create_ride({"origin_name": "A", "destination_name": "B"})
        await coordinator.close()

    def test_describe_error_is_distinct_per_kind(self):
        errors = [
            NotFoundError(),
            ForbiddenError(),
            SelfBookingError(),
            InvalidTransitionError(),
            CapacityExceededError(),
            DuplicateBookingError(),
            OperationInProgressError(),
            RemoteUnavailableError(),
        ]
        messages = {RideBookingCoordinator.describe_error(e) for e in errors}
        self.assertEqual(len(messages), len(errors))
        self.assertIn("1 seat", RideBookingCoordinator.describe_error(CapacityExceededError(available=1)))


class DisabledModeTests(SimpleTestCase):
    async def test_disabled_store_reads_empty_writes_fail(self):
        coordinator = build_coordinator(StoreConfig(), Session(ME, "me@campus.edu", "t"))
        self.assertIsInstance(coordinator.store, DisabledStore)

        await coordinator.start()
        self.assertEqual(coordinator.rides, [])

        with self.assertRaises(RemoteUnavailableError):
            await coordinator.create_ride({"origin_name": "A", "destination_name": "B"})
        self.assertEqual(coordinator.rides, [])
        await coordinator.close()


class EntityCacheTests(SimpleTestCase):
    def test_overlay_shadows_base_and_discard_restores(self):
        cache = EntityCache("bookings")
        cache.load([{"id": 1, "status": "pending"}])

        cache.stage(1, {"id": 1, "status": "confirmed"})
        self.assertEqual(cache.get(1)["status"], "confirmed")

        cache.discard(1)
        self.assertEqual(cache.values(), [{"id": 1, "status": "pending"}])

    def test_confirm_takes_the_temp_slot(self):
        cache = EntityCache("rides")
        cache.load([{"id": 1}, {"id": 2}])
        cache.stage("temp_a", {"id": "temp_a"})

        cache.confirm("temp_a", {"id": 3})

        self.assertEqual([e["id"] for e in cache.values()], [3, 1, 2])
        self.assertFalse(cache.has_pending())

    def test_update_is_idempotent(self):
        cache = EntityCache("rides")
        cache.load([{"id": 1, "seats": 2}])

        cache.upsert({"id": 1, "seats": 0})
        once = cache.values()
        cache.upsert({"id": 1, "seats": 0})

        self.assertEqual(cache.values(), once)

    def test_eviction_drops_oldest_confirmed(self):
        cache = EntityCache("notifications", max_size=2)
        cache.upsert({"id": 1})
        cache.upsert({"id": 2})
        cache.upsert({"id": 3})

        self.assertEqual([e["id"] for e in cache.values()], [3, 2])


class OptimisticPipelineTests(SimpleTestCase):
    async def test_unexpected_failure_becomes_remote_unavailable(self):
        cache = EntityCache("rides")
        pipeline = OptimisticPipeline(timeout=1)

        async def boom():
            raise requests.ConnectionError("offline")

        with self.assertRaises(RemoteUnavailableError):
            await pipeline.perform("create_ride", cache, local_apply=lambda key: {"id": key}, remote_call=boom)
        self.assertEqual(len(cache), 0)
        self.assertFalse(pipeline.in_flight("create_ride"))

    async def test_rollback_hook_runs(self):
        cache = EntityCache("rides")
        pipeline = OptimisticPipeline(timeout=1)
        undone = []

        async def reject():
            raise ForbiddenError()

        with self.assertRaises(ForbiddenError):
            await pipeline.perform(
                "cancel_ride:1", cache,
                local_apply=lambda key: {"id": key},
                remote_call=reject,
                local_rollback=lambda: undone.append(True),
            )
        self.assertEqual(undone, [True])


class ReconcilerTests(SimpleTestCase):
    def setUp(self):
        self.caches = {
            name: EntityCache(name)
            for name in ("rides", "my_bookings", "booking_requests", "live_rides", "notifications")
        }
        self.reconciler = Reconciler(ME, self.caches)

    def test_booking_routing_is_exact(self):
        self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=1, passenger_id=ME)))
        self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=2, passenger_id=OTHER, driver_id=ME)))
        self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=3, passenger_id=77, driver_id=17)))

        self.assertEqual([b["id"] for b in self.caches["my_bookings"].values()], [1])
        self.assertEqual([b["id"] for b in self.caches["booking_requests"].values()], [2])
        self.assertEqual(len(self.caches["notifications"]), 1)

    def test_duplicate_insert_ignored(self):
        event = ChangeEvent("rides", "insert", None, ride_row(id=1))
        self.assertTrue(self.reconciler.apply(event))
        self.assertFalse(self.reconciler.apply(event))
        self.assertEqual(len(self.caches["rides"]), 1)

    def test_update_twice_equals_once(self):
        self.reconciler.apply(ChangeEvent("rides", "insert", None, ride_row(id=1, seats=2)))
        update = ChangeEvent("rides", "update", ride_row(id=1, seats=2), ride_row(id=1, seats=1))

        self.reconciler.apply(update)
        once = self.caches["rides"].values()
        self.reconciler.apply(update)

        self.assertEqual(self.caches["rides"].values(), once)

    def test_update_overrides_pending_write(self):
        self.caches["rides"].load([ride_row(id=1)])
        self.caches["rides"].stage(1, ride_row(id=1, status="cancelled"))

        self.reconciler.apply(ChangeEvent("rides", "update", None, ride_row(id=1, seats=0)))

        self.assertEqual(self.caches["rides"].get(1)["status"], "active")
        self.assertFalse(self.caches["rides"].has_pending(1))

    def test_own_insert_applied_beside_unrelated_pending_patch(self):
        self.caches["my_bookings"].load([booking_row(id=1)])
        self.caches["my_bookings"].stage(1, {**booking_row(id=1), "status": "cancelled"})

        self.assertTrue(self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=2, ride_id=5))))

        self.assertIsNotNone(self.caches["my_bookings"].get(2))
        self.assertTrue(self.caches["my_bookings"].has_pending(1))

    def test_own_insert_skipped_only_for_matching_pending_create(self):
        self.caches["my_bookings"].stage("temp_abc", {**booking_row(id="temp_abc", ride_id=1)})

        self.assertFalse(self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=2, ride_id=1))))
        self.assertTrue(self.reconciler.apply(ChangeEvent("bookings", "insert", None, booking_row(id=3, ride_id=4))))

        self.assertEqual([b["id"] for b in self.caches["my_bookings"].values()], [3, "temp_abc"])

    def test_delete(self):
        self.reconciler.apply(ChangeEvent("rides", "insert", None, ride_row(id=1)))
        self.reconciler.apply(ChangeEvent("rides", "delete", ride_row(id=1), None))
        self.assertEqual(len(self.caches["rides"]), 0)

    def test_inactive_session_ignores_events(self):
        reconciler = Reconciler(ME, self.caches, is_active=lambda: False)
        self.assertFalse(reconciler.apply(ChangeEvent("rides", "insert", None, ride_row(id=1))))
        self.assertIsNone(reconciler.notify_local("hello"))


class ConfigTests(SimpleTestCase):
    def test_environment_wins(self):
        config = load_config(environ={
            "RIDESHARE_STORE_URL": "https://rides.example.edu",
            "RIDESHARE_STORE_ANON_KEY": "anon",
        }, settings_path=Path("/nonexistent/settings.json"))

        self.assertTrue(config.enabled)
        self.assertEqual(config.api_url("/api/store/rides/"), "https://rides.example.edu/api/store/rides/")
        self.assertEqual(config.feed_url, "wss://rides.example.edu/ws/feed/")

    def test_placeholder_falls_back_to_settings_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = save_settings("http://localhost:8000", "local-anon", Path(tmp) / "settings.json")

            config = load_config(environ={"RIDESHARE_STORE_URL": "your-placeholder-url"}, settings_path=path)

        self.assertEqual(config.url, "http://localhost:8000")
        self.assertEqual(config.anon_key, "local-anon")

    def test_missing_values_disable(self):
        config = load_config(environ={}, settings_path=Path("/nonexistent/settings.json"))
        self.assertFalse(config.enabled)


def http_response(status_code, payload):
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(payload).encode()
    response.json.return_value = payload
    return response


class ApiStoreTests(SimpleTestCase):
    def setUp(self):
        self.http = MagicMock()
        self.http.headers = {}
        self.config = StoreConfig(url="http://localhost:8000", anon_key="anon", timeout=5)
        self.store = ApiStore(self.config, access_token="jwt", http=self.http)

    def test_headers(self):
        self.assertEqual(self.http.headers["apikey"], "anon")
        self.assertEqual(self.http.headers["Authorization"], "Bearer jwt")

    async def test_query_builds_params(self):
        self.http.request.return_value = http_response(200, [{"id": 1}])

        rows = await self.store.query("rides", {"status": "active"}, order="-created_at", limit=20)

        self.assertEqual(rows, [{"id": 1}])
        method, url = self.http.request.call_args.args
        self.assertEqual((method, url), ("GET", "http://localhost:8000/api/store/rides/"))
        self.assertEqual(
            self.http.request.call_args.kwargs["params"],
            {"status": "active", "order": "-created_at", "limit": 20},
        )

    async def test_error_body_becomes_typed_error(self):
        self.http.request.return_value = http_response(409, {"error": "duplicate_booking", "message": "Already booked"})

        with self.assertRaises(DuplicateBookingError) as ctx:
            await self.store.create("bookings", {"ride_id": 1})
        self.assertEqual(ctx.exception.message, "Already booked")

    async def test_connection_failure_is_remote_unavailable(self):
        self.http.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(RemoteUnavailableError):
            await self.store.rpc("respond_to_booking", {"booking_id": 1, "decision": "accept"})

    async def test_server_error_is_remote_unavailable(self):
        self.http.request.return_value = http_response(502, {"detail": "bad gateway"})

        with self.assertRaises(RemoteUnavailableError):
            await self.store.update("notifications", 1, {"is_read": True})

    async def test_feed_message_reaches_subscription(self):
        self.store._loop = asyncio.get_running_loop()
        subscription = Subscription("rides")
        self.store._subscriptions["rides"] = subscription

        delivered = self.store.dispatch(json.dumps({
            "type": "change", "table": "rides", "operation": "update",
            "before": {"id": 1, "available_seats": 2}, "after": {"id": 1, "available_seats": 1},
        }))
        event = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        self.assertTrue(delivered)
        self.assertEqual((event.operation, event.after["available_seats"]), ("update", 1))
        self.assertFalse(self.store.dispatch("not json"))
        self.assertFalse(self.store.dispatch(json.dumps({"type": "change", "table": "rides", "operation": "merge"})))


class AuthClientTests(SimpleTestCase):
    def setUp(self):
        self.http = MagicMock()
        self.http.headers = {}
        self.auth = AuthClient(StoreConfig(url="http://localhost:8000", anon_key="anon"), http=self.http)

    async def test_sign_in_notifies_listeners(self):
        self.http.post.return_value = http_response(200, {
            "user": {"id": ME, "email": "me@campus.edu"},
            "tokens": {"access": "a1", "refresh": "r1"},
        })
        events = []
        unsubscribe = self.auth.on_auth_state_change(lambda event, session: events.append((event, session)))

        session = await self.auth.sign_in("secret", email="me@campus.edu")

        self.assertEqual((session.user_id, session.email), (ME, "me@campus.edu"))
        self.assertEqual(self.auth.get_session(), session)
        self.auth.sign_out()
        unsubscribe()
        self.auth.sign_out()

        self.assertEqual([e for e, _ in events], ["SIGNED_IN", "SIGNED_OUT"])
        self.assertIsNone(self.auth.get_session())

    async def test_refresh_replaces_access_token(self):
        self.http.post.return_value = http_response(200, {
            "user": {"id": ME, "email": "me@campus.edu"},
            "tokens": {"access": "a1", "refresh": "r1"},
        })
        await self.auth.sign_in("secret", username="me")
        self.http.post.return_value = http_response(200, {"access": "a2"})

        session = await self.auth.refresh()

        self.assertEqual((session.access_token, session.refresh_token), ("a2", "r1"))

    async def test_bad_credentials(self):
        self.http.post.return_value = http_response(400, {"non_field_errors": ["Invalid username or password"]})

        with self.assertRaises(InvalidRequestError) as ctx:
            await self.auth.sign_in("wrong", username="me")
        self.assertEqual(ctx.exception.message, "Invalid username or password")
