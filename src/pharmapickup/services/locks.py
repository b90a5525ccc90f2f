"""Per-request-id serialization within one process.

Callers in the same event loop that target the same pickup request queue up
behind one asyncio.Lock, so the second caller reads the state the first one
committed. Across processes the version column on the request row is what
detects lost races.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from uuid import UUID

logger = logging.getLogger(__name__)


class RequestLocks:
    """Registry of asyncio locks keyed by pickup request id.

    Entries are dropped once no caller holds or waits on them, so the
    registry only grows with the number of requests in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _acquire_entry(self, request_id: UUID) -> asyncio.Lock:
        # No await between lookup and insert, so the event loop cannot interleave.
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        self._users[request_id] = self._users.get(request_id, 0) + 1
        return lock

    def _release_entry(self, request_id: UUID) -> None:
        remaining = self._users[request_id] - 1
        if remaining:
            self._users[request_id] = remaining
        else:
            del self._users[request_id]
            del self._locks[request_id]

    @asynccontextmanager
    async def hold(self, request_id: UUID) -> AsyncIterator[None]:
        """Hold the lock for a request id for the duration of the block."""
        lock = self._acquire_entry(request_id)
        try:
            async with lock:
                yield
        finally:
            self._release_entry(request_id)


# Shared by every lifecycle service in the process
default_request_locks = RequestLocks()
