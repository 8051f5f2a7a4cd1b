"""Optimistic mutation pipeline."""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from common.lifecycle import OperationInProgressError, RemoteUnavailableError, RideBookingError
from .cache import EntityCache

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp_"


def temp_key() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex[:12]}"


def is_temp_key(key) -> bool:
    return isinstance(key, str) and key.startswith(TEMP_PREFIX)


class OptimisticPipeline:
    """
    Apply a mutation to the local cache first, then reconcile with the store.

    Only one mutation per kind may be in flight; a second call of the same
    kind fails with OperationInProgressError instead of queueing.
    """

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout
        self._in_flight: Set[str] = set()

    def in_flight(self, kind: str) -> bool:
        return kind in self._in_flight

    async def perform(
        self,
        kind: str,
        cache: EntityCache,
        *,
        local_apply: Callable[[Any], Dict[str, Any]],
        remote_call: Callable[[], Awaitable[Any]],
        local_rollback: Optional[Callable[[], None]] = None,
        key=None,
        select: Optional[Callable[[Any], Optional[Dict[str, Any]]]] = None,
    ):
        """
        Args:
            kind: mutation kind used for the in-flight check
            cache: cache holding the optimistic entry
            local_apply: key -> entity to stage in the cache's overlay
            remote_call: coroutine factory performing the store mutation
            local_rollback: extra undo run after the overlay entry is dropped
            key: existing cache key to patch; a temp key is generated otherwise
            select: picks the entity to confirm out of the remote result

        Returns:
            The remote result

        Raises:
            OperationInProgressError, RemoteUnavailableError on timeout or
            transport failure, or the store's typed error
        """
        if kind in self._in_flight:
            raise OperationInProgressError(f"{kind} is already in progress")

        self._in_flight.add(kind)
        try:
            key = temp_key() if key is None else key
            try:
                cache.stage(key, local_apply(key))
                result = await asyncio.wait_for(remote_call(), timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                self._rollback(kind, cache, key, local_rollback)
                raise RemoteUnavailableError("The server did not respond in time") from exc
            except RideBookingError:
                self._rollback(kind, cache, key, local_rollback)
                raise
            except asyncio.CancelledError:
                self._rollback(kind, cache, key, local_rollback)
                raise
            except Exception as exc:
                self._rollback(kind, cache, key, local_rollback)
                raise RemoteUnavailableError(str(exc) or exc.__class__.__name__) from exc

            entity = select(result) if select is not None else result
            if isinstance(entity, dict) and "id" in entity:
                cache.confirm(key, entity)
            else:
                cache.discard(key)
            return result
        finally:
            self._in_flight.discard(kind)

    def _rollback(self, kind, cache, key, local_rollback):
        logger.info("Rolling back %s (%s)", kind, key)
        cache.discard(key)
        if local_rollback is not None:
            try:
                local_rollback()
            except Exception:
                logger.exception("Rollback hook for %s failed", kind)
