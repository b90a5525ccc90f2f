"""Pickup request lifecycle service.

This module is the single gate for every status change of a pickup request:

- create() opens a request in REQUESTED with its auto-cancel deadline
- transition() validates and applies one edge of the state graph
- cancel() and complete() are shorthands over transition()
- get(), list_for_customer(), list_for_pharmacy() and history() are reads

A transition is read-validate-write under the in-process lock for the
request id, and the write is conditional on the version that was read.
The status, its timestamp, the payload fields and the history row are
committed together; the lifecycle event is published only afterwards.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, ClassVar

from pharmapickup.core.config import PickupSettings
from pharmapickup.db.models.base import ActorRole, PickupStatus
from pharmapickup.db.models.pickups import PickupLineItem, PickupRequest, PickupStatusChange
from pharmapickup.services.errors import (
    ForbiddenTransitionError,
    InvalidInputError,
    PickupError,
    RequestNotFoundError,
)
from pharmapickup.services.events import LifecycleEvent
from pharmapickup.services.locks import default_request_locks
from pharmapickup.services.store import PickupRequestStore
from pharmapickup.services.transitions import TransitionPayload, validate

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from pharmapickup.services.events import LifecycleEventDispatcher
    from pharmapickup.services.locks import RequestLocks

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NewLineItem:
    """Product entry supplied by the customer at creation.

    The category and product fields are a snapshot taken from the catalog
    by the caller; they are stored as given.
    """

    category_id: str
    category_name: str
    product_name: str
    quantity: int
    manufacturer: str | None = None
    pet_name: str | None = None
    pet_type: str | None = None
    note: str | None = None


def parse_status(value: PickupStatus | str | None) -> PickupStatus | None:
    """Coerce a status filter to PickupStatus.

    Raises:
        InvalidInputError: If a string does not name a defined status.
    """
    if value is None or isinstance(value, PickupStatus):
        return value
    try:
        return PickupStatus(value.strip().upper())
    except ValueError as e:
        valid = ", ".join(s.value for s in PickupStatus)
        raise InvalidInputError(
            f"Unknown status '{value}'. Valid statuses: {valid}", "status"
        ) from e


def parse_role(value: ActorRole | str) -> ActorRole:
    """Coerce an actor role given by name to ActorRole.

    Raises:
        InvalidInputError: If a string does not name a defined role.
    """
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(value.strip().upper())
    except ValueError as e:
        valid = ", ".join(r.value for r in ActorRole)
        raise InvalidInputError(
            f"Unknown actor role '{value}'. Valid roles: {valid}", "actor_role"
        ) from e


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PickupLifecycleService:
    """Service for creating pickup requests and moving them through their states.

    Example:
        service = PickupLifecycleService(session, dispatcher)
        request = await service.create(7, 3, [NewLineItem("c1", "Heart", "X", 2)])
        request = await service.transition(
            request.request_id,
            ActorRole.PHARMACY,
            PickupStatus.ACCEPTED,
            TransitionPayload(total_amount=15000),
        )
    """

    # Timestamp column stamped when a status is entered
    STATUS_TIMESTAMPS: ClassVar[dict[PickupStatus, str]] = {
        PickupStatus.REQUESTED: "requested_at",
        PickupStatus.WAITING: "waiting_at",
        PickupStatus.ACCEPTED: "accepted_at",
        PickupStatus.PREPARING: "preparing_at",
        PickupStatus.READY: "ready_at",
        PickupStatus.COMPLETED: "completed_at",
        PickupStatus.REJECTED: "rejected_at",
        PickupStatus.CANCELED: "canceled_at",
    }

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: LifecycleEventDispatcher | None = None,
        *,
        locks: RequestLocks | None = None,
        clock: Callable[[], datetime] | None = None,
        pickup_settings: PickupSettings | None = None,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            session: SQLAlchemy async session for database operations.
            dispatcher: Receives a LifecycleEvent after each commit.
            locks: Per-request lock registry; defaults to the process-wide one.
            clock: Source of the current time; defaults to the UTC wall clock.
            pickup_settings: Allowed and default response budgets.
        """
        self._store = PickupRequestStore(session)
        self._dispatcher = dispatcher
        self._locks = locks if locks is not None else default_request_locks
        self._clock = clock or _utcnow
        self._pickup_settings = pickup_settings or PickupSettings()

    @property
    def store(self) -> PickupRequestStore:
        return self._store

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create(
        self,
        customer_id: int,
        pharmacy_id: int,
        line_items: Sequence[NewLineItem],
        customer_memo: str | None = None,
        estimated_days: int | None = None,
    ) -> PickupRequest:
        """Open a new pickup request in REQUESTED.

        Args:
            customer_id: Customer placing the request.
            pharmacy_id: Pharmacy asked to prepare it.
            line_items: Products requested, in display order.
            customer_memo: Optional note for the pharmacy.
            estimated_days: Response budget in days before auto-cancel.

        Returns:
            The committed request.

        Raises:
            InvalidInputError: Empty items, a quantity below 1, or a budget
                outside the allowed values.
        """
        if estimated_days is None:
            estimated_days = self._pickup_settings.default_estimated_days
        self._validate_new_request(line_items, estimated_days)

        now = self._clock()
        request = PickupRequest(
            request_id=uuid.uuid4(),
            customer_id=customer_id,
            pharmacy_id=pharmacy_id,
            status=PickupStatus.REQUESTED,
            customer_memo=customer_memo,
            estimated_days=estimated_days,
            auto_cancel_deadline=now + timedelta(days=estimated_days),
            requested_at=now,
            updated_at=now,
            line_items=[
                PickupLineItem(
                    position=position,
                    category_id=item.category_id,
                    category_name=item.category_name,
                    product_name=item.product_name,
                    manufacturer=item.manufacturer,
                    quantity=item.quantity,
                    pet_name=item.pet_name,
                    pet_type=item.pet_type,
                    note=item.note,
                )
                for position, item in enumerate(line_items)
            ],
        )
        self._store.add(request)
        self._store.add_status_change(
            PickupStatusChange(
                request_id=request.request_id,
                from_status=None,
                to_status=PickupStatus.REQUESTED,
                actor_role=ActorRole.CUSTOMER,
                actor_id=customer_id,
                sequence=1,
                changed_at=now,
            )
        )
        await self._store.commit(request.request_id)

        logger.info(
            "Pickup request created",
            extra={
                "request_id": str(request.request_id),
                "customer_id": customer_id,
                "pharmacy_id": pharmacy_id,
                "line_items": len(line_items),
                "estimated_days": estimated_days,
            },
        )

        await self._publish(
            LifecycleEvent(
                request_id=request.request_id,
                previous_status=None,
                new_status=PickupStatus.REQUESTED,
                actor_role=ActorRole.CUSTOMER,
                actor_id=customer_id,
                occurred_at=now,
            )
        )
        return request

    async def transition(
        self,
        request_id: uuid.UUID,
        actor_role: ActorRole | str,
        target_status: PickupStatus | str,
        payload: TransitionPayload | None = None,
        *,
        actor_id: int | None = None,
    ) -> PickupRequest:
        """Move a request to a new status.

        This is the core write path. It:
        1. Loads the request under the per-id lock
        2. Checks ownership when an actor id is given
        3. Validates the edge, the role and the payload
        4. Writes status, timestamp, payload fields and a history row
        5. Commits conditionally on the version read in step 1
        6. Publishes one lifecycle event

        Args:
            request_id: Request to move.
            actor_role: Role of the caller, as ActorRole or its name.
            target_status: Status to move to, as PickupStatus or its name.
            payload: Side data for the edge (reasons, pricing, memo).
            actor_id: Caller's identifier; a customer must own the request
                and a pharmacy must be the request's pharmacy.

        Returns:
            The updated request.

        Raises:
            RequestNotFoundError: Unknown request id.
            InvalidTransitionError: Edge not in the state graph.
            ForbiddenTransitionError: Role or ownership does not allow the edge.
            InvalidInputError: Unknown role or status name, or the payload
                does not fit the edge.
            ConflictError: Another writer changed the request first.
            StoreUnavailableError: Persistence failed; nothing was written.
        """
        actor_role = parse_role(actor_role)
        target = parse_status(target_status)
        payload = payload or TransitionPayload()

        async with self._locks.hold(request_id):
            request = await self._store.get(request_id, refresh=True)
            if request is None:
                raise RequestNotFoundError(request_id)

            from_status = request.status
            try:
                self._check_ownership(request, actor_role, actor_id, target)
                validate(
                    from_status,
                    target,
                    actor_role,
                    payload,
                    line_item_count=len(request.line_items),
                )
            except PickupError as e:
                logger.warning(
                    "Transition rejected",
                    extra={
                        "request_id": str(request_id),
                        "from_status": from_status.value,
                        "to_status": target.value,
                        "actor_role": actor_role.value,
                        "error": type(e).__name__,
                    },
                )
                raise

            read_version = request.version
            now = self._next_stamp(request)
            self._apply(request, target, payload, now)
            self._store.add_status_change(
                PickupStatusChange(
                    request_id=request_id,
                    from_status=from_status,
                    to_status=target,
                    actor_role=actor_role,
                    actor_id=actor_id,
                    sequence=read_version + 1,
                    reason=payload.rejection_reason or payload.cancel_reason,
                    changed_at=now,
                )
            )
            await self._store.commit(request_id)

        logger.info(
            "State transition completed",
            extra={
                "request_id": str(request_id),
                "from_status": from_status.value,
                "to_status": target.value,
                "actor_role": actor_role.value,
                "version": request.version,
            },
        )

        await self._publish(
            LifecycleEvent(
                request_id=request_id,
                previous_status=from_status,
                new_status=target,
                actor_role=actor_role,
                actor_id=actor_id,
                occurred_at=now,
            )
        )
        return request

    async def cancel(
        self,
        request_id: uuid.UUID,
        actor_role: ActorRole | str,
        reason: str,
        *,
        actor_id: int | None = None,
    ) -> PickupRequest:
        """Cancel a request on behalf of the given role."""
        actor_role = parse_role(actor_role)
        return await self.transition(
            request_id,
            actor_role,
            PickupStatus.CANCELED,
            TransitionPayload(cancel_reason=reason, canceled_by=actor_role),
            actor_id=actor_id,
        )

    async def complete(
        self, request_id: uuid.UUID, *, actor_id: int | None = None
    ) -> PickupRequest:
        """Mark a READY request as picked up. Pharmacy only."""
        return await self.transition(
            request_id,
            ActorRole.PHARMACY,
            PickupStatus.COMPLETED,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, request_id: uuid.UUID) -> PickupRequest:
        """Get a request by id.

        Raises:
            RequestNotFoundError: If the request does not exist.
        """
        request = await self._store.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    async def list_for_customer(
        self, customer_id: int, status: PickupStatus | str | None = None
    ) -> list[PickupRequest]:
        return await self._store.list_for_customer(customer_id, parse_status(status))

    async def list_for_pharmacy(
        self, pharmacy_id: int, status: PickupStatus | str | None = None
    ) -> list[PickupRequest]:
        return await self._store.list_for_pharmacy(pharmacy_id, parse_status(status))

    async def history(self, request_id: uuid.UUID) -> list[PickupStatusChange]:
        """Committed status changes of a request, creation first."""
        await self.get(request_id)
        return await self._store.history(request_id)

    @staticmethod
    def ensure_party(request: PickupRequest, actor_role: ActorRole, actor_id: int) -> None:
        """Check that the caller is the request's customer or pharmacy.

        Raises:
            ForbiddenTransitionError: The caller is neither party.
        """
        if actor_role is ActorRole.CUSTOMER and request.customer_id == actor_id:
            return
        if actor_role is ActorRole.PHARMACY and request.pharmacy_id == actor_id:
            return
        raise ForbiddenTransitionError(
            actor_role, None, "Request belongs to another customer or pharmacy"
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate_new_request(self, line_items: Sequence[NewLineItem], estimated_days: int) -> None:
        if not line_items:
            raise InvalidInputError("At least one line item is required", "line_items")
        for position, item in enumerate(line_items):
            if item.quantity < 1:
                raise InvalidInputError(
                    f"Line item {position}: quantity must be >= 1", "line_items"
                )
            if not item.product_name.strip():
                raise InvalidInputError(
                    f"Line item {position}: product_name is required", "line_items"
                )
        allowed = self._pickup_settings.allowed_estimated_days
        if estimated_days not in allowed:
            raise InvalidInputError(
                f"estimated_days must be one of {sorted(allowed)}", "estimated_days"
            )

    def _check_ownership(
        self,
        request: PickupRequest,
        actor_role: ActorRole,
        actor_id: int | None,
        target: PickupStatus,
    ) -> None:
        if actor_id is None or actor_role is ActorRole.SYSTEM:
            return
        if actor_role is ActorRole.CUSTOMER and request.customer_id != actor_id:
            raise ForbiddenTransitionError(actor_role, target, "Request belongs to another customer")
        if actor_role is ActorRole.PHARMACY and request.pharmacy_id != actor_id:
            raise ForbiddenTransitionError(actor_role, target, "Request belongs to another pharmacy")

    def _next_stamp(self, request: PickupRequest) -> datetime:
        # Never earlier than a stamp already on the request
        now = self._clock()
        for column in self.STATUS_TIMESTAMPS.values():
            stamped = getattr(request, column)
            if stamped is not None and stamped > now:
                now = stamped
        return now

    def _apply(
        self,
        request: PickupRequest,
        target: PickupStatus,
        payload: TransitionPayload,
        now: datetime,
    ) -> None:
        request.status = target
        setattr(request, self.STATUS_TIMESTAMPS[target], now)
        request.updated_at = now

        if payload.pharmacy_memo is not None:
            request.pharmacy_memo = payload.pharmacy_memo

        if target is PickupStatus.REJECTED:
            request.rejection_reason = payload.rejection_reason
        elif target is PickupStatus.CANCELED:
            request.cancel_reason = payload.cancel_reason
            request.canceled_by = payload.canceled_by
        elif target is PickupStatus.ACCEPTED:
            if payload.total_amount is not None:
                request.total_amount = payload.total_amount
            if payload.estimated_pickup_date is not None:
                request.estimated_pickup_date = payload.estimated_pickup_date
            items = {item.position: item for item in request.line_items}
            for price in payload.item_prices:
                item = items[price.position]
                item.unit_price = price.unit_price
                item.total_price = (
                    price.total_price
                    if price.total_price is not None
                    else price.unit_price * item.quantity
                )

    async def _publish(self, event: LifecycleEvent) -> None:
        if self._dispatcher is not None:
            await self._dispatcher.publish(event)
