"""Domain errors raised by the pickup lifecycle services.

Every error is a subclass of PickupError so that callers (the API error
middleware, the expiry sweeper) can catch the family in one place. Only
ConflictError is worth retrying, after re-reading the request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from pharmapickup.db.models.base import ActorRole, PickupStatus


class PickupError(Exception):
    """Base class for pickup lifecycle errors."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(PickupError):
    """Raised when a create, list, or transition payload is malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class RequestNotFoundError(PickupError):
    """Raised when a pickup request id is unknown."""

    def __init__(self, request_id: UUID) -> None:
        self.request_id = request_id
        super().__init__(f"Pickup request {request_id} not found")


class InvalidTransitionError(PickupError):
    """Raised when the requested edge is not part of the state graph."""

    def __init__(
        self,
        from_status: PickupStatus,
        to_status: PickupStatus,
        reason: str | None = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            reason or f"Cannot transition from {from_status.value} to {to_status.value}"
        )


class ForbiddenTransitionError(PickupError):
    """Raised when the actor lacks the rights for an otherwise valid edge."""

    def __init__(
        self,
        actor_role: ActorRole,
        to_status: PickupStatus | None,
        reason: str | None = None,
    ) -> None:
        self.actor_role = actor_role
        self.to_status = to_status
        target = to_status.value if to_status is not None else "this request"
        super().__init__(reason or f"{actor_role.value} may not move request to {target}")


class ConflictError(PickupError):
    """Raised when the stored request changed between read and write."""

    retryable = True

    def __init__(self, request_id: UUID | None, message: str | None = None) -> None:
        self.request_id = request_id
        super().__init__(
            message or f"Pickup request {request_id} was modified concurrently; re-read and retry"
        )


class StoreUnavailableError(PickupError):
    """Raised when the underlying persistence layer fails."""
