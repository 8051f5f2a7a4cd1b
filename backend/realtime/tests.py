from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from accounts.models import User
from rides.models import Ride
from .consumers.feed_consumer import FeedConsumer, matches_filters
from .feed import build_event, feed_group
from .middleware import FeedAuthMiddleware

IN_MEMORY_LAYER = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}


def booking_row(**overrides):
    row = {"id": 1, "ride_id": 3, "driver_id": 10, "passenger_id": 7, "status": "pending"}
    row.update(overrides)
    return row


@override_settings(CHANNEL_LAYERS=IN_MEMORY_LAYER)
class FeedConsumerTests(SimpleTestCase):
    async def connect(self, user_id=7):
        communicator = WebsocketCommunicator(FeedConsumer.as_asgi(), "/ws/feed/")
        communicator.scope["user"] = SimpleNamespace(id=user_id, is_anonymous=False)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        greeting = await communicator.receive_json_from()
        self.assertEqual(greeting["type"], "connection_established")
        return communicator

    async def subscribe(self, communicator, table, filters=None):
        await communicator.send_json_to({"type": "subscribe", "table": table, "filters": filters or {}})
        ack = await communicator.receive_json_from()
        self.assertEqual(ack["type"], "subscribed")

    async def test_anonymous_connection_is_closed(self):
        communicator = WebsocketCommunicator(FeedConsumer.as_asgi(), "/ws/feed/")
        communicator.scope["user"] = SimpleNamespace(id=None, is_anonymous=True)
        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_forwards_visible_rows_in_order(self):
        communicator = await self.connect(user_id=7)
        await self.subscribe(communicator, "bookings")
        layer = get_channel_layer()

        await layer.group_send(feed_group("bookings"), build_event("bookings", "insert", None, booking_row(id=1)))
        await layer.group_send(
            feed_group("bookings"),
            build_event("bookings", "update", booking_row(id=1), booking_row(id=1, status="confirmed")),
        )

        first = await communicator.receive_json_from()
        second = await communicator.receive_json_from()
        self.assertEqual((first["operation"], first["after"]["id"]), ("insert", 1))
        self.assertEqual((second["operation"], second["after"]["status"]), ("update", "confirmed"))
        await communicator.disconnect()

    async def test_hides_rows_of_other_users(self):
        communicator = await self.connect(user_id=99)
        await self.subscribe(communicator, "bookings")

        await get_channel_layer().group_send(
            feed_group("bookings"), build_event("bookings", "insert", None, booking_row())
        )

        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_subscription_filters(self):
        communicator = await self.connect(user_id=10)
        await self.subscribe(communicator, "bookings", {"ride_id": 4})
        layer = get_channel_layer()

        await layer.group_send(feed_group("bookings"), build_event("bookings", "insert", None, booking_row(ride_id=3)))
        self.assertTrue(await communicator.receive_nothing())

        await layer.group_send(feed_group("bookings"), build_event("bookings", "insert", None, booking_row(ride_id=4)))
        event = await communicator.receive_json_from()
        self.assertEqual(event["after"]["ride_id"], 4)
        await communicator.disconnect()

    async def test_unsubscribe_stops_events(self):
        communicator = await self.connect(user_id=7)
        await self.subscribe(communicator, "bookings")

        await communicator.send_json_to({"type": "unsubscribe", "table": "bookings"})
        ack = await communicator.receive_json_from()
        self.assertEqual(ack["type"], "unsubscribed")

        await get_channel_layer().group_send(
            feed_group("bookings"), build_event("bookings", "insert", None, booking_row())
        )
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_unknown_table_and_message(self):
        communicator = await self.connect()

        await communicator.send_json_to({"type": "subscribe", "table": "auth_user"})
        self.assertEqual((await communicator.receive_json_from())["type"], "error")

        await communicator.send_json_to({"type": "dance"})
        self.assertEqual((await communicator.receive_json_from())["type"], "error")
        await communicator.disconnect()

    def test_filter_matching_is_exact(self):
        self.assertTrue(matches_filters({"user_id": 7, "is_read": False}, {"user_id": "7", "is_read": "false"}))
        self.assertFalse(matches_filters({"user_id": 17}, {"user_id": 7}))
        self.assertFalse(matches_filters({}, {"user_id": 7}))


@override_settings(STORE_ANON_KEY="feed-key")
class FeedAuthMiddlewareTests(SimpleTestCase):
    async def scope_user(self, query_string):
        captured = {}

        async def inner(scope, receive, send):
            captured["user"] = scope["user"]

        await FeedAuthMiddleware(inner)({"type": "websocket", "query_string": query_string}, None, None)
        return captured["user"]

    async def test_wrong_store_key_is_anonymous(self):
        user = await self.scope_user(b"apikey=nope&token=whatever")
        self.assertTrue(user.is_anonymous)

    async def test_bad_token_is_anonymous(self):
        user = await self.scope_user(b"apikey=feed-key&token=not-a-jwt")
        self.assertTrue(user.is_anonymous)


class FeedSignalTests(TestCase):
    def setUp(self):
        self.driver = User.objects.create_user(username='driver', password='pass1234')

    @patch('realtime.feed.publish_change')
    def test_insert_and_update_published_after_commit(self, mock_publish):
        with self.captureOnCommitCallbacks(execute=True):
            ride = Ride.objects.create(
                driver=self.driver,
                title='A to B',
                origin_name='A',
                destination_name='B',
                departure_time=timezone.now() + timedelta(days=1),
                available_seats=3,
            )

        table, operation, before, after = mock_publish.call_args.args
        self.assertEqual((table, operation, before), ('rides', 'insert', None))
        self.assertEqual(after['id'], ride.id)

        mock_publish.reset_mock()
        with self.captureOnCommitCallbacks(execute=True):
            ride.available_seats = 1
            ride.save()

        table, operation, before, after = mock_publish.call_args.args
        self.assertEqual((table, operation), ('rides', 'update'))
        self.assertEqual(before['available_seats'], 3)
        self.assertEqual(after['available_seats'], 1)

    @patch('realtime.feed.publish_change')
    def test_nothing_published_without_commit(self, mock_publish):
        Ride.objects.create(
            driver=self.driver,
            title='A to B',
            origin_name='A',
            destination_name='B',
            departure_time=timezone.now() + timedelta(days=1),
        )
        mock_publish.assert_not_called()
