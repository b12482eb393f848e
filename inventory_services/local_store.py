"""
inventory_services.local_store -- Device-local key/value substrate.

Responsibility:
    Persist opaque string values under string keys on the device. The
    CacheStore keeps its entries here and the OfflineActionQueue keeps its
    action log here; both own disjoint key namespaces.

Architecture position:
    Services -- infrastructure beneath CacheStore and OfflineActionQueue.
    ``SqlLocalStore`` keeps rows in the ``local_state`` table of a
    device-local database (SQLite file by default); ``MemoryLocalStore``
    keeps a dict for tests and ephemeral sessions.

Failure modes:
    - CacheError wraps every SQLAlchemy failure, naming the key and the
      operation. Callers decide whether to downgrade it (CacheStore does)
      or propagate it (the offline queue does).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.exceptions import CacheError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.local_state import LocalStateModel

logger = get_logger("services.local_store")


class LocalStore(ABC):
    """
    Abstract device-local key/value store.

    Contract:
        ``get`` returns None for a missing key. ``set`` always overwrites.
        ``keys(prefix)`` lists stored keys starting with ``prefix``.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        ...

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the count."""
        matched = self.keys(prefix)
        for key in matched:
            self.delete(key)
        return len(matched)


class MemoryLocalStore(LocalStore):
    """Dict-backed store. Lost when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SqlLocalStore(LocalStore):
    """``local_state`` table over a device-local SQLAlchemy engine."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def get(self, key: str) -> str | None:
        try:
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(LocalStateModel.value).where(LocalStateModel.key == key)
                ).scalar_one_or_none()
                return row
        except SQLAlchemyError as exc:
            raise CacheError(key, f"read failed: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(LocalStateModel).where(LocalStateModel.key == key)
                ).scalar_one_or_none()
                if row is None:
                    session.add(
                        LocalStateModel(key=key, value=value, updated_at=self._clock.now())
                    )
                else:
                    row.value = value
                    row.updated_at = self._clock.now()
        except SQLAlchemyError as exc:
            raise CacheError(key, f"write failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(delete(LocalStateModel).where(LocalStateModel.key == key))
        except SQLAlchemyError as exc:
            raise CacheError(key, f"delete failed: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(select(LocalStateModel.key)).scalars().all()
        except SQLAlchemyError as exc:
            raise CacheError(prefix, f"key scan failed: {exc}") from exc
        # Filtered here rather than with LIKE so '_' and '%' in keys match literally.
        return [k for k in rows if k.startswith(prefix)]

    def delete_prefix(self, prefix: str) -> int:
        matched = self.keys(prefix)
        if not matched:
            return 0
        try:
            with session_scope(self._session_factory) as session:
                session.execute(delete(LocalStateModel).where(LocalStateModel.key.in_(matched)))
        except SQLAlchemyError as exc:
            raise CacheError(prefix, f"prefix delete failed: {exc}") from exc
        logger.debug("local_store_prefix_deleted", extra={"prefix": prefix, "count": len(matched)})
        return len(matched)
