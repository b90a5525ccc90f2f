"""Request and response schemas for the pickup API."""

from pharmapickup.api.schemas.pickups import (
    CancelPickupRequest,
    CreatePickupRequest,
    ErrorResponse,
    HistoryResponse,
    ItemPriceIn,
    LineItemIn,
    LineItemOut,
    PharmacyStatsResponse,
    PickupListResponse,
    PickupRequestOut,
    StatusChangeOut,
    StatusUpdateRequest,
)

__all__ = [
    "CancelPickupRequest",
    "CreatePickupRequest",
    "ErrorResponse",
    "HistoryResponse",
    "ItemPriceIn",
    "LineItemIn",
    "LineItemOut",
    "PharmacyStatsResponse",
    "PickupListResponse",
    "PickupRequestOut",
    "StatusChangeOut",
    "StatusUpdateRequest",
]
