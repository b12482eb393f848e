"""
Module: inventory_kernel.models.inventory
Responsibility: ORM persistence for inventory batches and the stock
    movement audit trail.
Architecture position: Kernel > Models. May import from db/base.py only.

Invariants enforced:
    - quantity >= 0 (CHECK constraint).
    - (product_id, status, received_at) index supports the active-batch
      fetch that feeds FIFO ordering.
    - version increments on every quantity write; compare-and-swap updates
      compare against the stored quantity.
    - Stock movements are append-only; nothing updates or deletes them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class InventoryBatchModel(Base):
    """One receipt of one product at one warehouse."""

    __tablename__ = "inventory_batches"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_batch_quantity_non_negative"),
        Index("idx_batch_product_status_received", "product_id", "status", "received_at"),
        Index("idx_batch_warehouse", "warehouse_id"),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    received_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch {self.id}: product={self.product_id} "
            f"qty={self.quantity} status={self.status}>"
        )


class StockMovementModel(Base):
    """Append-only stock movement record."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movement_product_created", "product_id", "created_at"),
        Index("idx_movement_reference", "reference_id"),
        Index("idx_movement_batch", "batch_id"),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
