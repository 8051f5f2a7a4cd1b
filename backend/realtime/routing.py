"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.feed_consumer import FeedConsumer

websocket_urlpatterns = [
    # Table change feed (subscribe/unsubscribe per table)
    # URL: ws://localhost:8000/ws/feed/?token=<access>&apikey=<anon key>
    re_path(
        r"ws/feed/$",
        FeedConsumer.as_asgi(),
        name="feed-ws"
    ),
]
