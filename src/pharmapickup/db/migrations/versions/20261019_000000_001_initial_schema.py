"""Initial schema for pickup requests.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- pickup_requests (aggregate root, optimistic version column)
- pickup_line_items (ordered products per request)
- pickup_status_changes (append-only status history)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PICKUP_STATUSES = (
    "REQUESTED",
    "WAITING",
    "ACCEPTED",
    "PREPARING",
    "READY",
    "COMPLETED",
    "REJECTED",
    "CANCELED",
)
ACTOR_ROLES = ("CUSTOMER", "PHARMACY", "SYSTEM")


def upgrade() -> None:
    """Apply migration: pickup request tables."""
    pickup_status = postgresql.ENUM(*PICKUP_STATUSES, name="pickup_status", create_type=False)
    pickup_status.create(op.get_bind(), checkfirst=True)

    actor_role = postgresql.ENUM(*ACTOR_ROLES, name="actor_role", create_type=False)
    actor_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "pickup_requests",
        sa.Column("request_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("customer_id", sa.BigInteger(), nullable=False),
        sa.Column("pharmacy_id", sa.BigInteger(), nullable=False),
        sa.Column("status", pickup_status, nullable=False),
        sa.Column("customer_memo", sa.String(1000), nullable=True),
        sa.Column("pharmacy_memo", sa.String(1000), nullable=True),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("canceled_by", actor_role, nullable=True),
        sa.Column("total_amount", sa.BigInteger(), nullable=True),
        sa.Column("estimated_pickup_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_days", sa.Integer(), nullable=False),
        sa.Column("auto_cancel_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("waiting_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("preparing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("request_id", name=op.f("pk_pickup_requests")),
    )
    op.create_index(
        "ix_pickup_requests_pharmacy_status",
        "pickup_requests",
        ["pharmacy_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_pickup_requests_customer_status",
        "pickup_requests",
        ["customer_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_pickup_requests_status_deadline",
        "pickup_requests",
        ["status", "auto_cancel_deadline"],
        unique=False,
    )
    op.create_index(
        "ix_pickup_requests_completed_at", "pickup_requests", ["completed_at"], unique=False
    )

    op.create_table(
        "pickup_line_items",
        sa.Column("line_item_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("request_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.String(100), nullable=False),
        sa.Column("category_name", sa.String(255), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("manufacturer", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("pet_name", sa.String(100), nullable=True),
        sa.Column("pet_type", sa.String(100), nullable=True),
        sa.Column("note", sa.String(1000), nullable=True),
        sa.Column("unit_price", sa.BigInteger(), nullable=True),
        sa.Column("total_price", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["pickup_requests.request_id"],
            name=op.f("fk_pickup_line_items_request_id_pickup_requests"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("line_item_id", name=op.f("pk_pickup_line_items")),
    )
    op.create_index(
        "ix_pickup_line_items_request_id",
        "pickup_line_items",
        ["request_id", "position"],
        unique=False,
    )

    op.create_table(
        "pickup_status_changes",
        sa.Column("change_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("request_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("from_status", pickup_status, nullable=True),
        sa.Column("to_status", pickup_status, nullable=False),
        sa.Column("actor_role", actor_role, nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["request_id"],
            ["pickup_requests.request_id"],
            name=op.f("fk_pickup_status_changes_request_id_pickup_requests"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("change_id", name=op.f("pk_pickup_status_changes")),
        sa.UniqueConstraint(
            "request_id",
            "sequence",
            name=op.f("uq_pickup_status_changes_request_sequence"),
        ),
    )


def downgrade() -> None:
    """Revert migration: drop pickup request tables."""
    op.drop_table("pickup_status_changes")
    op.drop_index("ix_pickup_line_items_request_id", table_name="pickup_line_items")
    op.drop_table("pickup_line_items")
    op.drop_index("ix_pickup_requests_completed_at", table_name="pickup_requests")
    op.drop_index("ix_pickup_requests_status_deadline", table_name="pickup_requests")
    op.drop_index("ix_pickup_requests_customer_status", table_name="pickup_requests")
    op.drop_index("ix_pickup_requests_pharmacy_status", table_name="pickup_requests")
    op.drop_table("pickup_requests")

    op.execute("DROP TYPE IF EXISTS actor_role")
    op.execute("DROP TYPE IF EXISTS pickup_status")
