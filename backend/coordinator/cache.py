"""
Local entity cache with a confirmed base layer and a pending-write overlay.

Readers see the overlay on top of the base, newest slot first. The
optimistic pipeline writes only to the overlay (stage/confirm/discard), so
rolling back a failed write is removing its overlay entry. Server data
lands in the base layer (load/upsert/remove).
"""

import logging
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

Entity = Dict[str, Any]


class EntityCache:
    def __init__(self, name: str, max_size: Optional[int] = None):
        self.name = name
        self.max_size = max_size
        self._base: Dict[Hashable, Entity] = {}
        self._pending: Dict[Hashable, Entity] = {}
        # Slot order, newest first
        self._order: List[Hashable] = []

    # ---------------------- Readers ----------------------

    def get(self, key) -> Optional[Entity]:
        if key in self._pending:
            return self._pending[key]
        return self._base.get(key)

    def values(self) -> List[Entity]:
        return [self.get(key) for key in self._order]

    def confirmed(self, key) -> Optional[Entity]:
        return self._base.get(key)

    def has_pending(self, key=None) -> bool:
        if key is None:
            return bool(self._pending)
        return key in self._pending

    def pending_items(self) -> List[tuple]:
        return list(self._pending.items())

    def __contains__(self, key) -> bool:
        return key in self._base or key in self._pending

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self.values())

    # ---------------------- Overlay (optimistic pipeline) ----------------------

    def stage(self, key, entity: Entity):
        """Record a pending write; a new key takes the newest slot."""
        self._pending[key] = dict(entity)
        if key not in self._order:
            self._order.insert(0, key)

    def confirm(self, key, entity: Entity):
        """Replace a pending entry with the server's version in the same slot."""
        new_key = entity.get("id", key)
        position = self._order.index(key) if key in self._order else 0

        if new_key != key and new_key in self:
            # The server row already landed; keep the pending slot, drop the copy
            self._forget(new_key)
            position = self._order.index(key) if key in self._order else 0

        self._forget(key)
        self._order.insert(position, new_key)
        self._base[new_key] = dict(entity)
        self._evict()

    def discard(self, key):
        """Drop a pending write. The confirmed entity, if any, shows again."""
        self._pending.pop(key, None)
        if key not in self._base and key in self._order:
            self._order.remove(key)

    # ---------------------- Base (server data) ----------------------

    def upsert(self, entity: Entity, server_wins: bool = True) -> bool:
        """
        Store a server row. Returns True when the row was new.

        server_wins drops any pending overlay for the same id.
        """
        key = entity["id"]
        is_new = key not in self
        self._base[key] = dict(entity)
        if server_wins:
            self._pending.pop(key, None)
        if is_new:
            self._order.insert(0, key)
            self._evict()
        return is_new

    def remove(self, key) -> bool:
        if key not in self:
            return False
        self._forget(key)
        return True

    def load(self, entities: Iterable[Entity]):
        """Replace the base layer with `entities` (newest first); pending writes stay on top."""
        pending_keys = [key for key in self._order if key in self._pending]
        self._base = {}
        self._order = list(pending_keys)
        for entity in entities:
            key = entity["id"]
            if key in self._base:
                continue
            self._base[key] = dict(entity)
            if key not in self._order:
                self._order.append(key)
        self._evict()

    def clear(self):
        self._base.clear()
        self._pending.clear()
        self._order.clear()

    # ---------------------- Helpers ----------------------

    def _forget(self, key):
        self._base.pop(key, None)
        self._pending.pop(key, None)
        if key in self._order:
            self._order.remove(key)

    def _evict(self):
        if not self.max_size:
            return
        while len(self._base) > self.max_size:
            oldest = next(
                (key for key in reversed(self._order) if key in self._base and key not in self._pending),
                None,
            )
            if oldest is None:
                return
            logger.debug("Evicting %s from %s cache", oldest, self.name)
            self._forget(oldest)
