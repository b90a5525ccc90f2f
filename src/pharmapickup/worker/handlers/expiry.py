"""Expiry sweep: auto-cancel pickup requests the pharmacy never answered.

Finds REQUESTED and WAITING requests whose auto_cancel_deadline has passed
and cancels each one as SYSTEM through the lifecycle service, in its own
session. A request that moved on in the meantime fails validation or loses
the version race and is skipped; the next sweep looks at it again.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pharmapickup.db.models.base import ActorRole
from pharmapickup.services.errors import (
    ConflictError,
    ForbiddenTransitionError,
    InvalidTransitionError,
    PickupError,
    RequestNotFoundError,
)
from pharmapickup.services.lifecycle import PickupLifecycleService
from pharmapickup.services.store import PickupRequestStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from pharmapickup.services.events import LifecycleEventDispatcher
    from pharmapickup.services.locks import RequestLocks

logger = logging.getLogger(__name__)

DEFAULT_AUTO_CANCEL_REASON = "auto-expired"

# Raised when a request is no longer eligible by the time it is visited
SKIPPABLE_ERRORS = (
    InvalidTransitionError,
    ForbiddenTransitionError,
    ConflictError,
    RequestNotFoundError,
)


async def sweep_expired_handler(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    batch_size: int = 100,
    max_batches: int = 10,
    reason: str = DEFAULT_AUTO_CANCEL_REASON,
    dispatcher: LifecycleEventDispatcher | None = None,
    locks: RequestLocks | None = None,
    clock: Callable[[], datetime] | None = None,
) -> dict[str, Any]:
    """Cancel every expired, unanswered request.

    Args:
        session_factory: Factory for the per-request sessions.
        batch_size: Maximum ids loaded per batch.
        max_batches: Upper bound on batches in one sweep.
        reason: cancel_reason recorded on each request.
        dispatcher: Receives the lifecycle event of each cancellation.
        locks: Per-request lock registry shared with the lifecycle service.
        clock: Source of the current time.

    Returns:
        Result dict with counts and the canceled ids.
    """
    now = clock() if clock is not None else datetime.now(UTC)
    canceled_ids: list[str] = []
    skipped = 0
    failed = 0
    batches = 0

    while batches < max_batches:
        async with session_factory() as session:
            expired = await PickupRequestStore(session).find_expired(now, batch_size)
        batches += 1

        progressed = 0
        for request_id in expired:
            outcome = await _expire_request(
                session_factory,
                request_id,
                reason=reason,
                dispatcher=dispatcher,
                locks=locks,
                clock=clock,
            )
            if outcome == "canceled":
                canceled_ids.append(str(request_id))
                progressed += 1
            elif outcome == "skipped":
                skipped += 1
            else:
                failed += 1

        # A full batch with no progress would only return the same ids again
        if len(expired) < batch_size or progressed == 0:
            break

    logger.info(
        "Expiry sweep complete: canceled=%d, skipped=%d, failed=%d, batches=%d, request_ids=%s",
        len(canceled_ids),
        skipped,
        failed,
        batches,
        canceled_ids[:10],
    )

    return {
        "canceled_count": len(canceled_ids),
        "canceled_ids": canceled_ids,
        "skipped_count": skipped,
        "failed_count": failed,
        "batches": batches,
        "checked_at": now.isoformat(),
    }


async def _expire_request(
    session_factory: async_sessionmaker[AsyncSession],
    request_id: UUID,
    *,
    reason: str,
    dispatcher: LifecycleEventDispatcher | None,
    locks: RequestLocks | None,
    clock: Callable[[], datetime] | None,
) -> str:
    """Cancel one request as SYSTEM.

    Returns:
        "canceled", "skipped" or "failed".
    """
    async with session_factory() as session:
        service = PickupLifecycleService(session, dispatcher, locks=locks, clock=clock)
        try:
            await service.cancel(request_id, ActorRole.SYSTEM, reason)
        except SKIPPABLE_ERRORS as e:
            logger.info(
                "Skipping expired request: request_id=%s, reason=%s",
                request_id,
                type(e).__name__,
            )
            return "skipped"
        except PickupError as e:
            logger.exception(
                "Failed to expire request: request_id=%s, error=%s",
                request_id,
                e,
            )
            return "failed"
    return "canceled"
