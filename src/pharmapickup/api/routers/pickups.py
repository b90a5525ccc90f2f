"""Pickup request API router.

Customer and pharmacy operations on pickup requests, plus the pharmacy
dashboard stats. Every endpoint requires the gateway identity headers
(see pharmapickup.api.middleware.auth). Domain errors raised by the
lifecycle service are turned into JSON responses by ErrorHandlerMiddleware.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pharmapickup.api.middleware.auth import CurrentActor, CustomerActor, PharmacyActor
from pharmapickup.api.middleware.errors import AuthorizationError
from pharmapickup.api.schemas.pickups import (
    CancelPickupRequest,
    CreatePickupRequest,
    ErrorResponse,
    HistoryResponse,
    PharmacyStatsResponse,
    PickupListResponse,
    PickupRequestOut,
    StatusChangeOut,
    StatusUpdateRequest,
)
from pharmapickup.db.models.base import PickupStatus
from pharmapickup.services.lifecycle import NewLineItem, PickupLifecycleService, parse_status
from pharmapickup.services.stats import PharmacyStatsService
from pharmapickup.services.transitions import LineItemPrice, TransitionPayload

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Identity headers missing", "model": ErrorResponse},
    403: {"description": "Not allowed for this caller", "model": ErrorResponse},
    404: {"description": "Pickup request not found", "model": ErrorResponse},
    409: {"description": "Invalid transition or concurrent modification", "model": ErrorResponse},
    503: {"description": "Store unavailable", "model": ErrorResponse},
}

router = APIRouter(prefix="/pickups", tags=["pickups"], responses=ERROR_RESPONSES)
pharmacy_router = APIRouter(prefix="/pharmacies", tags=["pharmacies"], responses=ERROR_RESPONSES)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


async def get_db_session() -> AsyncSession:
    """Get database session.

    Uses the application's async session factory.
    """
    from pharmapickup.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_lifecycle_service(request: Request, db: DbSession) -> PickupLifecycleService:
    settings = request.app.state.settings
    return PickupLifecycleService(
        db,
        request.app.state.dispatcher,
        pickup_settings=settings.pickup if settings is not None else None,
    )


async def get_stats_service(request: Request, db: DbSession) -> PharmacyStatsService:
    settings = request.app.state.settings
    timezone = settings.pickup.stats_timezone if settings is not None else "UTC"
    return PharmacyStatsService(db, timezone=timezone)


LifecycleService = Annotated[PickupLifecycleService, Depends(get_lifecycle_service)]
StatsService = Annotated[PharmacyStatsService, Depends(get_stats_service)]


# -----------------------------------------------------------------------------
# Pickup requests
# -----------------------------------------------------------------------------


@router.post(
    "",
    response_model=PickupRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a pickup request",
)
async def create_pickup(
    body: CreatePickupRequest,
    actor: CustomerActor,
    service: LifecycleService,
) -> PickupRequestOut:
    """Create a pickup request for the calling customer."""
    pickup = await service.create(
        customer_id=actor.actor_id,
        pharmacy_id=body.pharmacy_id,
        line_items=[
            NewLineItem(
                category_id=item.category_id,
                category_name=item.category_name,
                product_name=item.product_name,
                quantity=item.quantity,
                manufacturer=item.manufacturer,
                pet_name=item.pet_name,
                pet_type=item.pet_type,
                note=item.note,
            )
            for item in body.line_items
        ],
        customer_memo=body.customer_memo,
        estimated_days=body.estimated_days,
    )
    return PickupRequestOut.model_validate(pickup)


@router.get("", response_model=PickupListResponse, summary="List the caller's pickup requests")
async def list_pickups(
    actor: CurrentActor,
    service: LifecycleService,
    role: Annotated[Literal["customer", "pharmacy"] | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PickupListResponse:
    """List requests placed by (customer) or addressed to (pharmacy) the caller.

    ``role``, when given, must match the caller's role.
    """
    if role is not None and role.upper() != actor.role.value:
        raise AuthorizationError(f"Callers with role {actor.role.value} cannot list as {role}")

    wanted = parse_status(status_filter)
    if actor.is_customer:
        pickups = await service.list_for_customer(actor.actor_id, wanted)
    else:
        pickups = await service.list_for_pharmacy(actor.actor_id, wanted)

    items = [PickupRequestOut.model_validate(p) for p in pickups]
    return PickupListResponse(items=items, count=len(items))


@router.get("/{request_id}", response_model=PickupRequestOut, summary="Get a pickup request")
async def get_pickup(
    request_id: UUID,
    actor: CurrentActor,
    service: LifecycleService,
) -> PickupRequestOut:
    pickup = await service.get(request_id)
    service.ensure_party(pickup, actor.role, actor.actor_id)
    return PickupRequestOut.model_validate(pickup)


@router.get(
    "/{request_id}/history",
    response_model=HistoryResponse,
    summary="Status history of a pickup request",
)
async def get_pickup_history(
    request_id: UUID,
    actor: CurrentActor,
    service: LifecycleService,
) -> HistoryResponse:
    """Committed status changes, oldest first, starting with creation."""
    pickup = await service.get(request_id)
    service.ensure_party(pickup, actor.role, actor.actor_id)
    changes = await service.history(request_id)
    return HistoryResponse(
        request_id=request_id,
        changes=[StatusChangeOut.model_validate(c) for c in changes],
    )


@router.put(
    "/{request_id}/status",
    response_model=PickupRequestOut,
    summary="Move a pickup request to a new status",
)
async def update_pickup_status(
    request_id: UUID,
    body: StatusUpdateRequest,
    actor: CurrentActor,
    service: LifecycleService,
) -> PickupRequestOut:
    """Apply one transition on behalf of the caller.

    A cancellation through this endpoint is attributed to the caller's role.
    """
    target = parse_status(body.target_status)
    payload = TransitionPayload(
        pharmacy_memo=body.pharmacy_memo,
        rejection_reason=body.rejection_reason,
        cancel_reason=body.cancel_reason,
        canceled_by=actor.role if target is PickupStatus.CANCELED else None,
        total_amount=body.total_amount,
        estimated_pickup_date=body.estimated_pickup_date,
        item_prices=tuple(
            LineItemPrice(
                position=price.position,
                unit_price=price.unit_price,
                total_price=price.total_price,
            )
            for price in body.item_prices
        ),
    )
    pickup = await service.transition(
        request_id,
        actor.role,
        target,
        payload,
        actor_id=actor.actor_id,
    )
    return PickupRequestOut.model_validate(pickup)


@router.put(
    "/{request_id}/cancel",
    response_model=PickupRequestOut,
    summary="Cancel a pickup request",
)
async def cancel_pickup(
    request_id: UUID,
    body: CancelPickupRequest,
    actor: CurrentActor,
    service: LifecycleService,
) -> PickupRequestOut:
    pickup = await service.cancel(request_id, actor.role, body.reason, actor_id=actor.actor_id)
    return PickupRequestOut.model_validate(pickup)


@router.put(
    "/{request_id}/complete",
    response_model=PickupRequestOut,
    summary="Mark a ready pickup request as picked up",
)
async def complete_pickup(
    request_id: UUID,
    actor: PharmacyActor,
    service: LifecycleService,
) -> PickupRequestOut:
    pickup = await service.complete(request_id, actor_id=actor.actor_id)
    return PickupRequestOut.model_validate(pickup)


# -----------------------------------------------------------------------------
# Pharmacy dashboard
# -----------------------------------------------------------------------------


@pharmacy_router.get(
    "/{pharmacy_id}/stats",
    response_model=PharmacyStatsResponse,
    summary="Dashboard stats for a pharmacy",
)
async def get_pharmacy_stats(
    pharmacy_id: int,
    actor: PharmacyActor,
    service: StatsService,
) -> PharmacyStatsResponse:
    """Per-status counts and completions today, this week and this month."""
    if actor.actor_id != pharmacy_id:
        raise AuthorizationError("Pharmacies can only read their own stats")

    stats = await service.pharmacy_stats(pharmacy_id)
    return PharmacyStatsResponse(
        pharmacy_id=stats.pharmacy_id,
        count_per_status={s.value: n for s, n in stats.count_per_status.items()},
        today_completed=stats.today_completed,
        week_completed=stats.week_completed,
        month_completed=stats.month_completed,
        generated_at=stats.generated_at,
    )
