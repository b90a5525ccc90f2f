"""Pickup request models: requests, line items, and status history.

A pickup request is never deleted; terminal states are kept for history
and statistics. Every committed status change appends a PickupStatusChange
row in the same transaction as the status write.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmapickup.db.models.base import (
    ActorRole,
    Base,
    OptionalTimestampTZ,
    PickupStatus,
    TimestampTZ,
    UTCDateTime,
    UUIDPrimaryKey,
)


class PickupRequest(Base):
    """A customer's request for pharmacy-fulfilled medication pickup.

    The ``version`` column is the optimistic concurrency token: every flush
    that modifies the row issues ``UPDATE ... WHERE version = :read_version``
    and fails if another writer committed in between.
    """

    __tablename__ = "pickup_requests"

    request_id: Mapped[UUIDPrimaryKey]

    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    pharmacy_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[PickupStatus] = mapped_column(
        Enum(PickupStatus, name="pickup_status"),
        nullable=False,
        default=PickupStatus.REQUESTED,
    )

    customer_memo: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    pharmacy_memo: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    canceled_by: Mapped[ActorRole | None] = mapped_column(
        Enum(ActorRole, name="actor_role"),
        nullable=True,
    )

    # Pricing and ETA decided by the pharmacy at confirmation time
    total_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    estimated_pickup_date: Mapped[OptionalTimestampTZ]

    # Response budget chosen at creation (3 or 5 days)
    estimated_days: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_cancel_deadline: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    requested_at: Mapped[TimestampTZ]
    waiting_at: Mapped[OptionalTimestampTZ]
    accepted_at: Mapped[OptionalTimestampTZ]
    preparing_at: Mapped[OptionalTimestampTZ]
    ready_at: Mapped[OptionalTimestampTZ]
    completed_at: Mapped[OptionalTimestampTZ]
    rejected_at: Mapped[OptionalTimestampTZ]
    canceled_at: Mapped[OptionalTimestampTZ]
    updated_at: Mapped[TimestampTZ]

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    line_items: Mapped[list[PickupLineItem]] = relationship(
        "PickupLineItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="PickupLineItem.position",
        lazy="selectin",
    )
    status_changes: Mapped[list[PickupStatusChange]] = relationship(
        "PickupStatusChange",
        back_populates="request",
        passive_deletes=True,
        order_by="PickupStatusChange.sequence",
        lazy="raise_on_sql",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_pickup_requests_pharmacy_status", "pharmacy_id", "status"),
        Index("ix_pickup_requests_customer_status", "customer_id", "status"),
        Index("ix_pickup_requests_status_deadline", "status", "auto_cancel_deadline"),
        Index("ix_pickup_requests_completed_at", "completed_at"),
    )


class PickupLineItem(Base):
    """One product entry within a pickup request.

    Category and product fields are a denormalized snapshot of the catalog
    at request time. Prices are only filled in when the pharmacy accepts.
    """

    __tablename__ = "pickup_line_items"

    line_item_id: Mapped[UUIDPrimaryKey]

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pickup_requests.request_id", ondelete="CASCADE"),
        nullable=False,
    )

    # Zero-based order within the request
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    category_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    manufacturer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    pet_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pet_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    unit_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    total_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    request: Mapped[PickupRequest] = relationship(
        "PickupRequest",
        back_populates="line_items",
    )

    __table_args__ = (Index("ix_pickup_line_items_request_id", "request_id", "position"),)


class PickupStatusChange(Base):
    """Append-only record of a committed status change.

    The creation of a request is recorded with ``from_status = None``.
    """

    __tablename__ = "pickup_status_changes"

    change_id: Mapped[UUIDPrimaryKey]

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pickup_requests.request_id", ondelete="CASCADE"),
        nullable=False,
    )

    from_status: Mapped[PickupStatus | None] = mapped_column(
        Enum(PickupStatus, name="pickup_status"),
        nullable=True,
    )
    to_status: Mapped[PickupStatus] = mapped_column(
        Enum(PickupStatus, name="pickup_status"),
        nullable=False,
    )
    actor_role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, name="actor_role"),
        nullable=False,
    )
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # 1 for the creation record, then one higher per committed change
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    changed_at: Mapped[TimestampTZ]

    request: Mapped[PickupRequest] = relationship(
        "PickupRequest",
        back_populates="status_changes",
    )

    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_pickup_status_changes_request_sequence"),
    )
