"""SQLAlchemy ORM models for the pickup service.

This package contains all database models:
- base: Common metadata, column types, and enums
- pickups: Pickup requests, line items, and status history
"""

from pharmapickup.db.models.base import ActorRole, Base, PickupStatus, metadata
from pharmapickup.db.models.pickups import PickupLineItem, PickupRequest, PickupStatusChange

__all__ = [
    "ActorRole",
    "Base",
    "PickupLineItem",
    "PickupRequest",
    "PickupStatus",
    "PickupStatusChange",
    "metadata",
]
