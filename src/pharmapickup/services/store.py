"""Persistence access for pickup requests.

Thin query layer over the async SQLAlchemy session. It owns the translation
of driver and ORM failures into the domain error taxonomy:

- a stale version on UPDATE, or a duplicate history sequence, is a lost
  race and becomes ConflictError
- any other SQLAlchemyError becomes StoreUnavailableError

In both cases the session is rolled back before the error propagates.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from pharmapickup.db.models.base import PickupStatus
from pharmapickup.db.models.pickups import PickupRequest, PickupStatusChange
from pharmapickup.services.errors import ConflictError, StoreUnavailableError
from pharmapickup.services.transitions import SYSTEM_CANCELABLE

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class PickupRequestStore:
    """Reads and writes pickup requests through one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    @asynccontextmanager
    async def _reading(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.exception("Store read failed", extra={"operation": operation})
            await self._session.rollback()
            raise StoreUnavailableError(f"Store unavailable during {operation}") from e

    async def get(self, request_id: UUID, *, refresh: bool = False) -> PickupRequest | None:
        """Load one request with its line items.

        Args:
            request_id: Request to load.
            refresh: Overwrite any copy already in the session's identity
                map with the row as currently stored.
        """
        query = select(PickupRequest).where(PickupRequest.request_id == request_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        async with self._reading("get"):
            result = await self._session.execute(query)
            return result.scalar_one_or_none()

    async def _list(self, *criteria) -> list[PickupRequest]:
        query = (
            select(PickupRequest)
            .where(*criteria)
            .order_by(PickupRequest.requested_at.desc(), PickupRequest.request_id.desc())
        )
        async with self._reading("list"):
            result = await self._session.execute(query)
            return list(result.scalars().all())

    async def list_for_customer(
        self, customer_id: int, status: PickupStatus | None = None
    ) -> list[PickupRequest]:
        """Requests placed by a customer, newest first."""
        criteria = [PickupRequest.customer_id == customer_id]
        if status is not None:
            criteria.append(PickupRequest.status == status)
        return await self._list(*criteria)

    async def list_for_pharmacy(
        self, pharmacy_id: int, status: PickupStatus | None = None
    ) -> list[PickupRequest]:
        """Requests addressed to a pharmacy, newest first."""
        criteria = [PickupRequest.pharmacy_id == pharmacy_id]
        if status is not None:
            criteria.append(PickupRequest.status == status)
        return await self._list(*criteria)

    async def find_expired(self, now: datetime, limit: int) -> list[UUID]:
        """Ids of unanswered requests whose response deadline has passed.

        Oldest deadline first. Only REQUESTED and WAITING requests qualify.
        """
        query = (
            select(PickupRequest.request_id)
            .where(
                PickupRequest.status.in_(list(SYSTEM_CANCELABLE)),
                PickupRequest.auto_cancel_deadline <= now,
            )
            .order_by(PickupRequest.auto_cancel_deadline.asc())
            .limit(limit)
        )
        async with self._reading("find_expired"):
            result = await self._session.execute(query)
            return list(result.scalars().all())

    async def history(self, request_id: UUID) -> list[PickupStatusChange]:
        """Status changes of a request in the order they were committed."""
        query = (
            select(PickupStatusChange)
            .where(PickupStatusChange.request_id == request_id)
            .order_by(PickupStatusChange.sequence.asc())
        )
        async with self._reading("history"):
            result = await self._session.execute(query)
            return list(result.scalars().all())

    async def count_by_status(self, pharmacy_id: int) -> dict[PickupStatus, int]:
        """Current number of requests per status for a pharmacy.

        Every status is present in the result, with 0 where nothing matches.
        """
        query = (
            select(PickupRequest.status, func.count())
            .where(PickupRequest.pharmacy_id == pharmacy_id)
            .group_by(PickupRequest.status)
        )
        async with self._reading("count_by_status"):
            result = await self._session.execute(query)
            rows = result.all()

        counts = dict.fromkeys(PickupStatus, 0)
        for status, count in rows:
            counts[status] = count
        return counts

    async def count_completed_since(
        self, pharmacy_id: int, since: datetime, until: datetime | None = None
    ) -> int:
        """Number of requests completed in [since, until]."""
        criteria = [
            PickupRequest.pharmacy_id == pharmacy_id,
            PickupRequest.status == PickupStatus.COMPLETED,
            PickupRequest.completed_at >= since,
        ]
        if until is not None:
            criteria.append(PickupRequest.completed_at <= until)
        query = select(func.count()).select_from(PickupRequest).where(*criteria)
        async with self._reading("count_completed_since"):
            result = await self._session.execute(query)
            return int(result.scalar_one())

    def add(self, request: PickupRequest) -> None:
        self._session.add(request)

    def add_status_change(self, change: PickupStatusChange) -> None:
        self._session.add(change)

    async def commit(self, request_id: UUID | None = None) -> None:
        """Commit the unit of work, translating failures.

        Raises:
            ConflictError: Another writer changed the request first.
            StoreUnavailableError: The database rejected or lost the write.
        """
        async with self._writing(request_id):
            await self._session.commit()

    @asynccontextmanager
    async def _writing(self, request_id: UUID | None) -> AsyncIterator[None]:
        try:
            yield
        except (StaleDataError, IntegrityError) as e:
            await self._session.rollback()
            logger.warning(
                "Concurrent modification detected",
                extra={"request_id": str(request_id) if request_id else None},
            )
            raise ConflictError(request_id) from e
        except SQLAlchemyError as e:
            logger.exception(
                "Store write failed",
                extra={"request_id": str(request_id) if request_id else None},
            )
            await self._session.rollback()
            raise StoreUnavailableError("Store unavailable, the change was not saved") from e
