"""
Module: inventory_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models. Provides the
    string-UUID primary key convention and the type annotation map that keeps
    quantity and timestamp columns consistent across tables.
Architecture position: Kernel > DB. Lowest-level import target within the
    kernel; MUST NOT import from models/ or outer layers.

Invariants enforced:
    - Decimal maps to Numeric(38, 9): quantities and costs never use float.
    - datetime maps to UTCDateTime: values round-trip as aware UTC datetimes
      even on SQLite, which drops tzinfo.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def new_id() -> str:
    """Primary key factory: uuid4 rendered as a 36-character string."""
    return str(uuid4())


class UTCDateTime(TypeDecorator):
    """
    Timezone-preserving datetime column.

    Contract:
        Stores naive UTC, returns aware UTC. Naive inputs are taken as UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a uuid4 string unless the caller supplies one (remote ids
          created offline keep their client-assigned value).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        str: String(255),
    }

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_id,
    )
