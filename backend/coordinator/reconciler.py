"""
Real-time reconciliation of change-feed events into the local caches.

Events are applied one at a time in delivery order:

    insert  append unless the id is cached already, or the row was authored
            by the current user and matches an in-flight optimistic create
            (the pipeline owns that temp slot and confirms it itself)
    update  server wins: replace the entry and drop any pending overlay
    delete  remove the entry

Booking events are routed by exact user-id comparison: rows where the
current user is the passenger go to "my_bookings", rows on the current
user's rides go to "booking_requests", anything else is dropped.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from common.lifecycle import same_id
from .cache import EntityCache
from .optimistic import is_temp_key
from .remote import ChangeEvent

logger = logging.getLogger(__name__)

# Row field naming the user who authored an insert, per table
AUTHOR_FIELDS = {
    "rides": "driver_id",
    "reviews": "reviewer_id",
}

# Fields an optimistic create shares with the server row it becomes, per cache
CREATE_MATCH_FIELDS = {
    "rides": ("origin_name", "destination_name"),
    "my_bookings": ("ride_id",),
    "reviews": ("ride_id", "reviewee_id"),
}


class Reconciler:
    def __init__(
        self,
        user_id,
        caches: Dict[str, EntityCache],
        is_active: Callable[[], bool] = lambda: True,
        on_booking_request: Optional[Callable[[dict], None]] = None,
    ):
        self.user_id = user_id
        self.caches = caches
        self.is_active = is_active
        self.on_booking_request = on_booking_request

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns True when a cache changed."""
        if not self.is_active():
            return False

        if event.table == "bookings":
            return self._apply_booking(event)

        cache = self.caches.get(event.table)
        if cache is None:
            logger.debug("No cache for %s events", event.table)
            return False

        author_field = AUTHOR_FIELDS.get(event.table)
        authored = author_field is not None and same_id(event.record.get(author_field), self.user_id)
        return self._apply_to(cache, event, authored)

    def _apply_booking(self, event: ChangeEvent) -> bool:
        row = event.record
        if same_id(row.get("passenger_id"), self.user_id):
            return self._apply_to(self.caches["my_bookings"], event, authored=True)

        if same_id(row.get("driver_id"), self.user_id):
            changed = self._apply_to(self.caches["booking_requests"], event, authored=False)
            if changed and event.operation == "insert":
                self.notify_local("New booking request", type="booking", data={"booking_id": row.get("id")})
                if self.on_booking_request is not None:
                    self.on_booking_request(row)
            return changed

        logger.debug("Dropping booking %s event not addressed to user %s", event.id, self.user_id)
        return False

    def _apply_to(self, cache: EntityCache, event: ChangeEvent, authored: bool) -> bool:
        if event.id is None:
            return False

        if event.operation == "insert":
            if event.id in cache:
                return False
            if authored and self._pending_create_for(cache, event.after):
                logger.debug("Skipping own %s insert %s; pending create owns the slot", cache.name, event.id)
                return False
            return cache.upsert(event.after)

        if event.operation == "update":
            if not event.after:
                return False
            cache.upsert(event.after, server_wins=True)
            return True

        if event.operation == "delete":
            return cache.remove(event.id)

        return False

    def _pending_create_for(self, cache: EntityCache, row: dict) -> bool:
        """True when an in-flight create in `cache` will be confirmed as `row`."""
        fields = CREATE_MATCH_FIELDS.get(cache.name, ())
        for key, entity in cache.pending_items():
            if not is_temp_key(key):
                continue
            if all(str(entity.get(f)) == str(row.get(f)) for f in fields if f in entity):
                return True
        return False

    def notify_local(self, message: str, type: str = "info", title: Optional[str] = None, data=None) -> Optional[dict]:
        """Add a client-side notification; the cache keeps at most its max_size."""
        if not self.is_active():
            return None
        notification = {
            "id": f"local_{uuid.uuid4().hex[:12]}",
            "user_id": self.user_id,
            "title": title or message,
            "message": message,
            "type": type,
            "data": data or {},
            "is_read": False,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.caches["notifications"].upsert(notification)
        return notification
