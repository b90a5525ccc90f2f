"""Caller identity for the pickup API.

Authentication happens upstream. The gateway in front of this service
resolves the caller and forwards the result in two headers:

    X-Actor-Id:   integer id of the customer or pharmacy
    X-Actor-Role: CUSTOMER or PHARMACY

These dependencies turn the headers into an Actor. SYSTEM is reserved for
the worker and is refused over HTTP.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header

from pharmapickup.api.middleware.errors import AuthenticationError, AuthorizationError
from pharmapickup.db.models.base import ActorRole

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


@dataclass(frozen=True, slots=True)
class Actor:
    """Resolved caller of an API request."""

    actor_id: int
    role: ActorRole

    @property
    def is_customer(self) -> bool:
        return self.role is ActorRole.CUSTOMER

    @property
    def is_pharmacy(self) -> bool:
        return self.role is ActorRole.PHARMACY


async def require_actor(
    x_actor_id: Annotated[str | None, Header(alias=ACTOR_ID_HEADER)] = None,
    x_actor_role: Annotated[str | None, Header(alias=ACTOR_ROLE_HEADER)] = None,
) -> Actor:
    """Dependency that resolves the caller from the gateway headers.

    Raises:
        AuthenticationError: A header is missing or malformed.
        AuthorizationError: The caller claims the SYSTEM role.
    """
    if not x_actor_id or not x_actor_role:
        raise AuthenticationError(
            f"{ACTOR_ID_HEADER} and {ACTOR_ROLE_HEADER} headers are required"
        )

    try:
        actor_id = int(x_actor_id)
    except ValueError as e:
        raise AuthenticationError(f"{ACTOR_ID_HEADER} must be an integer") from e

    try:
        role = ActorRole(x_actor_role.strip().upper())
    except ValueError as e:
        raise AuthenticationError(f"Unknown actor role: {x_actor_role}") from e

    if role is ActorRole.SYSTEM:
        raise AuthorizationError("The SYSTEM role is not available over HTTP")

    return Actor(actor_id=actor_id, role=role)


def require_role(role: ActorRole) -> Callable:
    """Factory for creating role-checking dependencies.

    Usage:
        @router.put("/{request_id}/complete")
        async def complete(actor: Annotated[Actor, Depends(require_role(ActorRole.PHARMACY))]):
            ...

    Args:
        role: The required actor role.

    Returns:
        A FastAPI dependency function.
    """

    async def _check_role(actor: Annotated[Actor, Depends(require_actor)]) -> Actor:
        if actor.role is not role:
            raise AuthorizationError(f"Role required: {role.value}")
        return actor

    return _check_role


CurrentActor = Annotated[Actor, Depends(require_actor)]
CustomerActor = Annotated[Actor, Depends(require_role(ActorRole.CUSTOMER))]
PharmacyActor = Annotated[Actor, Depends(require_role(ActorRole.PHARMACY))]
