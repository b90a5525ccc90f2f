"""Base model definitions, column types, and shared enums.

This module provides:
- SQLAlchemy declarative base with naming conventions
- A timezone-aware datetime column type that always round-trips as UTC
- Enum types used across the lifecycle models
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, Uuid
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry
from sqlalchemy.types import TypeDecorator

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timestamp column that stores UTC and always loads as an aware datetime.

    PostgreSQL keeps the offset natively; backends without timezone support
    (SQLite in tests) hand back naive values, which are re-tagged as UTC.
    Naive values on the way in are assumed to already be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# UUID primary key generated client-side so it is known before flush
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(UTCDateTime(), nullable=False, default=utcnow),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(UTCDateTime(), nullable=True),
]


class Base(DeclarativeBase):
    """Declarative base for all pickup models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class PickupStatus(enum.Enum):
    """Pickup request lifecycle states.

    States:
        REQUESTED: Customer submitted the request, awaiting the pharmacy
        WAITING: Pharmacy is waiting for stock (back-order)
        ACCEPTED: Pharmacy confirmed, pricing and ETA may be attached
        PREPARING: Pharmacy is preparing the order
        READY: Ready for the customer to pick up
        COMPLETED: Customer picked up the order (terminal)
        REJECTED: Pharmacy declined the request (terminal)
        CANCELED: Canceled by the customer, the pharmacy, or the system (terminal)
    """

    REQUESTED = "REQUESTED"
    WAITING = "WAITING"
    ACCEPTED = "ACCEPTED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class ActorRole(enum.Enum):
    """Role of the party performing an action.

    Values:
        CUSTOMER: The customer who placed the request
        PHARMACY: The pharmacy fulfilling the request
        SYSTEM: Automated system action (e.g., auto-expiry)
    """

    CUSTOMER = "CUSTOMER"
    PHARMACY = "PHARMACY"
    SYSTEM = "SYSTEM"
