"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .feed_consumer import FeedConsumer, matches_filters

__all__ = [
    "BaseConsumer",
    "FeedConsumer",
    "matches_filters",
]
