"""Pydantic schemas for the pickup API endpoints.

Request models carry only shape constraints (types, string lengths).
Lifecycle rules such as quantity >= 1, the allowed response budgets and
which fields each transition accepts are enforced by the lifecycle service,
so violations come back as 400 validation_error with the service's message.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from pharmapickup.db.models.base import ActorRole, PickupStatus

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LineItemIn(BaseModel):
    """One product in a new pickup request (catalog snapshot)."""

    category_id: str = Field(..., min_length=1, max_length=100)
    category_name: str = Field(..., min_length=1, max_length=255)
    product_name: str = Field(..., max_length=255)
    manufacturer: str | None = Field(default=None, max_length=255)
    quantity: int
    pet_name: str | None = Field(default=None, max_length=100)
    pet_type: str | None = Field(default=None, max_length=100)
    note: str | None = Field(default=None, max_length=1000)


class CreatePickupRequest(BaseModel):
    """Body of POST /pickups."""

    pharmacy_id: int
    line_items: list[LineItemIn]
    customer_memo: str | None = Field(default=None, max_length=1000)
    estimated_days: int | None = Field(
        default=None,
        description="Days the pharmacy has to respond before auto-cancel (3 or 5)",
    )


class ItemPriceIn(BaseModel):
    """Pharmacy pricing for one line item."""

    position: int
    unit_price: int
    total_price: int | None = None


class StatusUpdateRequest(BaseModel):
    """Body of PUT /pickups/{id}/status.

    Only the fields that fit the target status may be set.
    """

    target_status: str
    pharmacy_memo: str | None = Field(default=None, max_length=1000)
    rejection_reason: str | None = Field(default=None, max_length=500)
    cancel_reason: str | None = Field(default=None, max_length=500)
    total_amount: int | None = None
    estimated_pickup_date: datetime | None = None
    item_prices: list[ItemPriceIn] = Field(default_factory=list)


class CancelPickupRequest(BaseModel):
    """Body of PUT /pickups/{id}/cancel."""

    reason: str = Field(..., max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    category_id: str
    category_name: str
    product_name: str
    manufacturer: str | None = None
    quantity: int
    pet_name: str | None = None
    pet_type: str | None = None
    note: str | None = None
    unit_price: int | None = None
    total_price: int | None = None


class PickupRequestOut(BaseModel):
    """Full pickup request with line items and lifecycle timestamps."""

    model_config = ConfigDict(from_attributes=True)

    request_id: UUID
    customer_id: int
    pharmacy_id: int
    status: PickupStatus
    line_items: list[LineItemOut]

    customer_memo: str | None = None
    pharmacy_memo: str | None = None
    rejection_reason: str | None = None
    cancel_reason: str | None = None
    canceled_by: ActorRole | None = None

    total_amount: int | None = None
    estimated_pickup_date: datetime | None = None
    estimated_days: int
    auto_cancel_deadline: datetime

    requested_at: datetime
    waiting_at: datetime | None = None
    accepted_at: datetime | None = None
    preparing_at: datetime | None = None
    ready_at: datetime | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None
    canceled_at: datetime | None = None
    updated_at: datetime
    version: int


class PickupListResponse(BaseModel):
    items: list[PickupRequestOut]
    count: int


class StatusChangeOut(BaseModel):
    """One entry of a request's status history."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: PickupStatus | None = None
    to_status: PickupStatus
    actor_role: ActorRole
    actor_id: int | None = None
    reason: str | None = None
    changed_at: datetime


class HistoryResponse(BaseModel):
    request_id: UUID
    changes: list[StatusChangeOut]


class PharmacyStatsResponse(BaseModel):
    """Dashboard figures for one pharmacy."""

    pharmacy_id: int
    count_per_status: dict[str, int]
    today_completed: int
    week_completed: int
    month_completed: int
    generated_at: datetime


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    message: str
    detail: dict | None = None
    request_id: str | None = None
