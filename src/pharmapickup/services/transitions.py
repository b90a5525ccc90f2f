"""Pickup request state graph and transition validation.

The validator is pure: it looks only at the current status, the target, the
actor role and the payload, and raises the first rule violation it finds.
Checks run in a fixed order so callers get a stable error kind:

1. InvalidTransitionError for edges outside the graph
2. ForbiddenTransitionError for role violations
3. InvalidInputError for payload violations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pharmapickup.db.models.base import ActorRole, PickupStatus
from pharmapickup.services.errors import (
    ForbiddenTransitionError,
    InvalidInputError,
    InvalidTransitionError,
)

if TYPE_CHECKING:
    from datetime import datetime


# Legal edges: from_status -> allowed target statuses
TRANSITION_GRAPH: dict[PickupStatus, frozenset[PickupStatus]] = {
    PickupStatus.REQUESTED: frozenset(
        {
            PickupStatus.ACCEPTED,
            PickupStatus.REJECTED,
            PickupStatus.WAITING,
            PickupStatus.CANCELED,
        }
    ),
    PickupStatus.WAITING: frozenset({PickupStatus.ACCEPTED, PickupStatus.CANCELED}),
    PickupStatus.ACCEPTED: frozenset({PickupStatus.PREPARING, PickupStatus.CANCELED}),
    PickupStatus.PREPARING: frozenset({PickupStatus.READY, PickupStatus.CANCELED}),
    PickupStatus.READY: frozenset({PickupStatus.COMPLETED, PickupStatus.CANCELED}),
    # Terminal states
    PickupStatus.COMPLETED: frozenset(),
    PickupStatus.REJECTED: frozenset(),
    PickupStatus.CANCELED: frozenset(),
}

PHARMACY_ONLY_TARGETS: frozenset[PickupStatus] = frozenset(
    {
        PickupStatus.ACCEPTED,
        PickupStatus.REJECTED,
        PickupStatus.WAITING,
        PickupStatus.PREPARING,
        PickupStatus.READY,
        PickupStatus.COMPLETED,
    }
)

# States the expiry sweeper may cancel out of
SYSTEM_CANCELABLE: frozenset[PickupStatus] = frozenset(
    {PickupStatus.REQUESTED, PickupStatus.WAITING}
)

TERMINAL_STATUSES: frozenset[PickupStatus] = frozenset(
    status for status, targets in TRANSITION_GRAPH.items() if not targets
)


@dataclass(frozen=True, slots=True)
class LineItemPrice:
    """Pharmacy pricing for one line item, addressed by its position.

    Attributes:
        position: Zero-based position of the line item in the request.
        unit_price: Price per unit in minor currency units.
        total_price: Line total; derived from unit_price and quantity if omitted.
    """

    position: int
    unit_price: int
    total_price: int | None = None


@dataclass(frozen=True, slots=True)
class TransitionPayload:
    """Side data carried by a transition.

    Which fields may be set depends on the target status; see validate().
    """

    pharmacy_memo: str | None = None
    rejection_reason: str | None = None
    cancel_reason: str | None = None
    canceled_by: ActorRole | None = None
    total_amount: int | None = None
    estimated_pickup_date: datetime | None = None
    item_prices: tuple[LineItemPrice, ...] = field(default_factory=tuple)

    @property
    def has_pricing(self) -> bool:
        return (
            self.total_amount is not None
            or self.estimated_pickup_date is not None
            or bool(self.item_prices)
        )


def is_terminal(status: PickupStatus) -> bool:
    """Check if a status has no outgoing edges."""
    return status in TERMINAL_STATUSES


def allowed_targets(status: PickupStatus) -> frozenset[PickupStatus]:
    """Statuses reachable in one step from the given status."""
    return TRANSITION_GRAPH[status]


def is_valid_edge(current: PickupStatus, target: PickupStatus) -> bool:
    return target in TRANSITION_GRAPH[current]


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _check_edge(current: PickupStatus, target: PickupStatus) -> None:
    if not is_valid_edge(current, target):
        if is_terminal(current):
            reason = f"Request is {current.value} and cannot change status"
        else:
            reason = None
        raise InvalidTransitionError(current, target, reason)


def _check_role(
    current: PickupStatus,
    target: PickupStatus,
    actor_role: ActorRole,
    payload: TransitionPayload,
) -> None:
    if target in PHARMACY_ONLY_TARGETS:
        if actor_role is not ActorRole.PHARMACY:
            raise ForbiddenTransitionError(actor_role, target)
        return

    # Only CANCELED is left; it is reachable by all three roles under different terms.
    if actor_role is ActorRole.CUSTOMER:
        if payload.canceled_by not in (None, ActorRole.CUSTOMER):
            raise ForbiddenTransitionError(
                actor_role, target, "A customer cancellation must be attributed to CUSTOMER"
            )
    elif actor_role is ActorRole.PHARMACY:
        if payload.canceled_by is not ActorRole.PHARMACY or _blank(payload.cancel_reason):
            raise ForbiddenTransitionError(
                actor_role,
                target,
                "A pharmacy may only cancel explicitly, as PHARMACY and with a reason",
            )
    elif actor_role is ActorRole.SYSTEM:
        if current not in SYSTEM_CANCELABLE:
            raise ForbiddenTransitionError(
                actor_role,
                target,
                f"Automatic cancellation does not apply to {current.value} requests",
            )
        if payload.canceled_by not in (None, ActorRole.SYSTEM):
            raise ForbiddenTransitionError(
                actor_role, target, "A system cancellation must be attributed to SYSTEM"
            )


def _check_payload(
    target: PickupStatus,
    actor_role: ActorRole,
    payload: TransitionPayload,
    line_item_count: int | None,
) -> None:
    if target is PickupStatus.REJECTED:
        if _blank(payload.rejection_reason):
            raise InvalidInputError("rejection_reason is required to reject", "rejection_reason")
    elif payload.rejection_reason is not None:
        raise InvalidInputError("rejection_reason is only accepted on REJECTED", "rejection_reason")

    if target is PickupStatus.CANCELED:
        if _blank(payload.cancel_reason):
            raise InvalidInputError("cancel_reason is required to cancel", "cancel_reason")
        if payload.canceled_by is None:
            raise InvalidInputError("canceled_by is required to cancel", "canceled_by")
    elif payload.cancel_reason is not None or payload.canceled_by is not None:
        raise InvalidInputError("Cancellation fields are only accepted on CANCELED", "cancel_reason")

    if payload.pharmacy_memo is not None and actor_role is not ActorRole.PHARMACY:
        raise InvalidInputError("pharmacy_memo may only be set by the pharmacy", "pharmacy_memo")

    if target is not PickupStatus.ACCEPTED:
        if payload.has_pricing:
            raise InvalidInputError(
                "Pricing and pickup date are only accepted on ACCEPTED", "total_amount"
            )
        return

    if payload.total_amount is not None and payload.total_amount < 0:
        raise InvalidInputError("total_amount must be >= 0", "total_amount")

    seen: set[int] = set()
    for price in payload.item_prices:
        if price.position in seen:
            raise InvalidInputError(
                f"Line item {price.position} is priced more than once", "item_prices"
            )
        seen.add(price.position)
        if line_item_count is not None and not 0 <= price.position < line_item_count:
            raise InvalidInputError(
                f"Line item {price.position} does not exist", "item_prices"
            )
        if price.unit_price < 0 or (price.total_price is not None and price.total_price < 0):
            raise InvalidInputError("Item prices must be >= 0", "item_prices")


def validate(
    current: PickupStatus,
    target: PickupStatus,
    actor_role: ActorRole,
    payload: TransitionPayload | None = None,
    *,
    line_item_count: int | None = None,
) -> None:
    """Validate a requested transition.

    Args:
        current: Status the request is in now.
        target: Requested status.
        actor_role: Role of the caller.
        payload: Side data for the transition.
        line_item_count: Number of line items on the request, used to check
            that item pricing references existing positions.

    Raises:
        InvalidTransitionError: The edge is not in the graph.
        ForbiddenTransitionError: The role may not take the edge.
        InvalidInputError: The payload does not fit the edge.
    """
    payload = payload or TransitionPayload()
    _check_edge(current, target)
    _check_role(current, target, actor_role, payload)
    _check_payload(target, actor_role, payload, line_item_count)
