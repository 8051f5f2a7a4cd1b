"""
Remote store interface consumed by the coordinator.

`RemoteStore` is the only seam between the coordinator and the hosted store;
ApiStore talks to the real backend and tests substitute their own doubles.
"""

import abc
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from common.lifecycle import RemoteUnavailableError

logger = logging.getLogger(__name__)

OPERATIONS = ("insert", "update", "delete")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    operation: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    @property
    def record(self) -> Dict[str, Any]:
        return self.after or self.before or {}

    @property
    def id(self):
        return self.record.get("id")

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ChangeEvent":
        operation = message.get("operation")
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown change operation: {operation}")
        return cls(
            table=message["table"],
            operation=operation,
            before=message.get("before"),
            after=message.get("after"),
        )


class Subscription:
    """
    Async iterator of ChangeEvents for one table.

    Events are yielded in the order they were pushed. Iteration ends once
    `unsubscribe()` is called.
    """

    def __init__(self, table: str, filters: Optional[Dict[str, Any]] = None, on_close: Optional[Callable] = None):
        self.table = table
        self.filters = dict(filters or {})
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: ChangeEvent):
        if not self._closed:
            self._queue.put_nowait(event)

    async def unsubscribe(self):
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close is not None:
            result = self._on_close(self)
            if inspect.isawaitable(result):
                await result

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class RemoteStore(abc.ABC):
    """Query/mutation/subscription interface of the hosted store."""

    @abc.abstractmethod
    async def create(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it with its server id."""

    @abc.abstractmethod
    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Rows matching equality (and __icontains/__gte/__lte) filters."""

    @abc.abstractmethod
    async def update(self, table: str, id, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Patch a row and return the stored result."""

    @abc.abstractmethod
    async def subscribe(self, table: str, filters: Optional[Dict[str, Any]] = None) -> Subscription:
        """Open a change feed for a table. Must be closed with unsubscribe()."""

    @abc.abstractmethod
    async def rpc(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """Run a server-side transactional procedure."""

    async def close(self):
        pass


class DisabledStore(RemoteStore):
    """Stand-in used when the store is not configured: reads are empty, writes fail fast."""

    message = "The ride sharing service is not configured on this device."

    async def create(self, table, record):
        raise RemoteUnavailableError(self.message)

    async def query(self, table, filters=None, order=None, limit=None):
        return []

    async def update(self, table, id, patch):
        raise RemoteUnavailableError(self.message)

    async def subscribe(self, table, filters=None):
        return Subscription(table, filters)

    async def rpc(self, name, args):
        raise RemoteUnavailableError(self.message)
