"""Tests for the persistence layer and its error translation.

Tests cover:
- Version-conditional writes (lost race becomes ConflictError)
- Duplicate history sequence becomes ConflictError
- Driver failures become StoreUnavailableError
- Expired-request lookup
- Status counts
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from pharmapickup.db.models.base import ActorRole, PickupStatus
from pharmapickup.db.models.pickups import PickupStatusChange
from pharmapickup.services.errors import ConflictError, StoreUnavailableError
from pharmapickup.services.lifecycle import PickupLifecycleService
from pharmapickup.services.store import PickupRequestStore
from tests.factories import OTHER_PHARMACY_ID, PHARMACY_ID, advance_to, create_request


class TestOptimisticConcurrency:
    """Writes are conditional on the version that was read."""

    async def test_stale_write_raises_conflict(self, service, session_factory):
        request = await create_request(service)

        async with session_factory() as stale_session:
            stale_store = PickupRequestStore(stale_session)
            stale = await stale_store.get(request.request_id)
            assert stale.version == 1

            # Another writer commits first
            await service.transition(
                request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED
            )

            stale.status = PickupStatus.REJECTED
            stale.rejection_reason = "late"
            with pytest.raises(ConflictError) as exc_info:
                await stale_store.commit(request.request_id)

        assert exc_info.value.retryable is True
        assert exc_info.value.request_id == request.request_id

        reloaded = await service.get(request.request_id)
        assert reloaded.status is PickupStatus.ACCEPTED
        assert reloaded.rejection_reason is None

    async def test_session_usable_after_conflict(self, service, session_factory):
        request = await create_request(service)

        async with session_factory() as stale_session:
            stale_store = PickupRequestStore(stale_session)
            stale = await stale_store.get(request.request_id)
            await service.transition(
                request.request_id, ActorRole.PHARMACY, PickupStatus.ACCEPTED
            )
            stale.status = PickupStatus.WAITING
            with pytest.raises(ConflictError):
                await stale_store.commit(request.request_id)

            # Re-read and retry on the same session
            retry = PickupLifecycleService(stale_session)
            updated = await retry.transition(
                request.request_id, ActorRole.PHARMACY, PickupStatus.PREPARING
            )
            assert updated.status is PickupStatus.PREPARING
            assert updated.version == 3

    async def test_duplicate_history_sequence_raises_conflict(self, service, session):
        request = await create_request(service)
        store = PickupRequestStore(session)
        store.add_status_change(
            PickupStatusChange(
                request_id=request.request_id,
                from_status=None,
                to_status=PickupStatus.REQUESTED,
                actor_role=ActorRole.CUSTOMER,
                sequence=1,
            )
        )
        with pytest.raises(ConflictError):
            await store.commit(request.request_id)


class TestStoreUnavailable:
    """Unexpected driver errors are reported as StoreUnavailableError."""

    async def test_commit_failure(self, session):
        session.commit = AsyncMock(
            side_effect=OperationalError("COMMIT", {}, Exception("connection reset"))
        )
        session.rollback = AsyncMock()
        store = PickupRequestStore(session)

        with pytest.raises(StoreUnavailableError):
            await store.commit()
        session.rollback.assert_awaited_once()

    async def test_read_failure(self, session):
        session.execute = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("server closed"))
        )
        session.rollback = AsyncMock()
        store = PickupRequestStore(session)

        with pytest.raises(StoreUnavailableError):
            await store.list_for_pharmacy(PHARMACY_ID)


class TestQueries:
    async def test_find_expired(self, service, session, clock):
        early = await create_request(service, estimated_days=3)
        waiting = await create_request(service, estimated_days=3)
        await service.transition(waiting.request_id, ActorRole.PHARMACY, PickupStatus.WAITING)
        accepted = await create_request(service, estimated_days=3)
        await advance_to(service, accepted, PickupStatus.ACCEPTED)
        await create_request(service, estimated_days=5)

        store = PickupRequestStore(session)
        now = clock.now + timedelta(days=4)

        expired = await store.find_expired(now, limit=10)
        assert set(expired) == {early.request_id, waiting.request_id}

        assert len(await store.find_expired(now, limit=1)) == 1
        assert await store.find_expired(clock.now, limit=10) == []

    async def test_deadline_boundary_is_inclusive(self, service, session, clock):
        request = await create_request(service, estimated_days=3)
        store = PickupRequestStore(session)

        assert await store.find_expired(request.auto_cancel_deadline, limit=10) == [
            request.request_id
        ]

    async def test_count_by_status_includes_every_status(self, service, session):
        await create_request(service)
        canceled = await create_request(service)
        await service.cancel(canceled.request_id, ActorRole.CUSTOMER, "x")
        await create_request(service, pharmacy_id=OTHER_PHARMACY_ID)

        counts = await PickupRequestStore(session).count_by_status(PHARMACY_ID)

        assert set(counts) == set(PickupStatus)
        assert counts[PickupStatus.REQUESTED] == 1
        assert counts[PickupStatus.CANCELED] == 1
        assert counts[PickupStatus.COMPLETED] == 0
        assert sum(counts.values()) == 2
