"""Change-feed WebSocket consumer with per-user row visibility."""

import logging
from typing import Dict, Any

from .base import BaseConsumer
from realtime.feed import feed_group
from store.registry import TABLES

logger = logging.getLogger(__name__)


def _normalize(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    return text.lower() if text.lower() in ("true", "false") else text


def matches_filters(row: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Equality match of every filter against the row; ids compare as text."""
    if not row:
        return False
    return all(
        field in row and _normalize(row[field]) == _normalize(expected)
        for field, expected in filters.items()
    )


class FeedConsumer(BaseConsumer):
    """
    WebSocket consumer for table change feeds.
    
    Client messages:
        {"type": "subscribe", "table": "bookings", "filters": {"ride_id": 3}}
        {"type": "unsubscribe", "table": "bookings"}
        {"type": "ping"}
    
    Server messages:
        {"type": "change", "table", "operation", "before", "after"}
    
    An event is forwarded when its before or after row is visible to the
    connected user and matches the subscription's filters. Events keep the
    order in which the channel layer delivers them.
    """

    async def on_connect(self):
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "tables": sorted(TABLES),
        })

    async def on_disconnect(self, close_code):
        logger.debug("Feed client %s disconnected (%s)", self.user_id, close_code)

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "subscribe":
            await self._handle_subscribe(data)
        elif msg_type == "unsubscribe":
            await self._handle_unsubscribe(data)
        elif msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_subscribe(self, data: Dict[str, Any]):
        table = data.get("table")
        if table not in TABLES:
            await self.send_error(f"Unknown table: {table}")
            return

        filters = data.get("filters") or {}
        if not isinstance(filters, dict):
            await self.send_error("filters must be an object")
            return

        self.subscriptions[table] = filters
        await self._join_group(feed_group(table))
        logger.debug("User %s subscribed to %s with %s", self.user_id, table, filters)
        await self.send_success("subscribed", table=table, filters=filters)

    async def _handle_unsubscribe(self, data: Dict[str, Any]):
        table = data.get("table")
        if self.subscriptions.pop(table, None) is not None:
            await self._leave_group(feed_group(table))
        await self.send_success("unsubscribed", table=table)

    # ---------------------- Channel Layer Events ----------------------

    async def feed_change(self, event):
        """Sent by realtime.feed for every committed write on a table."""
        table = event.get("table")
        filters = self.subscriptions.get(table)
        if filters is None:
            return

        table_def = TABLES[table]
        rows = [row for row in (event.get("after"), event.get("before")) if row]
        if not any(table_def.row_visible(row, self.user_id) and matches_filters(row, filters) for row in rows):
            return

        await self.send_json({
            "type": "change",
            "table": table,
            "operation": event.get("operation"),
            "before": event.get("before"),
            "after": event.get("after"),
        })
