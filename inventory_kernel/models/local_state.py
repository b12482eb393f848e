"""
Module: inventory_kernel.models.local_state
Responsibility: Tables that are not remote records. ``local_state`` is the
    device-local key/value substrate under the cache and the offline log;
    ``applied_actions`` is the remote store's ledger of idempotency keys it
    has already applied.
Architecture position: Kernel > Models. May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class LocalStateModel(Base):
    """One key/value pair in the device-local store."""

    __tablename__ = "local_state"

    __table_args__ = (
        Index("idx_local_state_key", "key", unique=True),
    )

    key: Mapped[str] = mapped_column(String(512), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)


class AppliedActionModel(Base):
    """Idempotency key of a replayed offline action already applied remotely."""

    __tablename__ = "applied_actions"

    __table_args__ = (
        Index("idx_applied_action_key", "idempotency_key", unique=True),
    )

    idempotency_key: Mapped[str] = mapped_column(String(512), nullable=False)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(nullable=False)
