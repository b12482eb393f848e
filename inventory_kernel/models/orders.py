"""
Module: inventory_kernel.models.orders
Responsibility: ORM persistence for purchase orders (with lines), sales
    orders, the payables raised when a purchase order is received and the
    receivables raised by credit or converted sales.
Architecture position: Kernel > Models. May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base


class PurchaseOrderModel(Base):
    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_po_number", "po_number", unique=True),
        Index("idx_po_supplier", "supplier_id"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    actual_delivery_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list[PurchaseOrderLineModel]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PurchaseOrderLineModel(Base):
    __tablename__ = "purchase_order_lines"

    purchase_order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("purchase_orders.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    purchase_order: Mapped[PurchaseOrderModel] = relationship(back_populates="lines")


class SalesOrderModel(Base):
    __tablename__ = "sales_orders"

    __table_args__ = (
        Index("idx_so_number", "order_number", unique=True),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)


class PayableModel(Base):
    """Accounts-payable record raised on purchase receipt."""

    __tablename__ = "payables"

    __table_args__ = (
        Index("idx_payable_po", "purchase_order_id"),
    )

    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    due_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="outstanding")
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    purchase_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ReceivableModel(Base):
    """Accounts-receivable record raised by a credit or converted sale."""

    __tablename__ = "receivables"

    __table_args__ = (
        Index("idx_receivable_sale", "sale_id"),
    )

    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    due_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="outstanding")
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    sale_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
