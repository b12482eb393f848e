"""
Module: inventory_kernel.models.catalog
Responsibility: ORM persistence for catalog records held by the remote
    store: products with their alternate unit table, warehouses and
    suppliers.
Architecture position: Kernel > Models. May import from db/base.py only.

Invariants enforced:
    - A product's base unit is stored on the product row; alternate units
      live in product_units with a positive conversion factor (enforced at
      the domain layer on conversion to AlternateUnit).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base


class ProductModel(Base):
    """Catalog product row."""

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_unit: Mapped[str] = mapped_column(String(50), nullable=False)
    shelf_life_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_stock_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    base_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    units: Mapped[list[ProductUnitModel]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductUnitModel.name",
    )

    def __repr__(self) -> str:
        return f"<Product {self.id}: {self.name} ({self.base_unit})>"


class ProductUnitModel(Base):
    """Alternate unit of measure for a product."""

    __tablename__ = "product_units"

    __table_args__ = (
        Index("idx_product_unit_product_name", "product_id", "name", unique=True),
    )

    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    conversion_factor: Mapped[Decimal] = mapped_column(nullable=False)
    price: Mapped[Decimal | None] = mapped_column(nullable=True)

    product: Mapped[ProductModel] = relationship(back_populates="units")


class WarehouseModel(Base):
    __tablename__ = "warehouses"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    capacity: Mapped[Decimal | None] = mapped_column(nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SupplierModel(Base):
    __tablename__ = "suppliers"

    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    payment_terms: Mapped[str] = mapped_column(String(20), nullable=False, default="Net 30")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
