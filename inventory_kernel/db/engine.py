"""
Module: inventory_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories and
    transactional scope. Engines and factories are returned to the caller
    rather than held in module globals, so a device-local store and a
    remote store can coexist and be torn down with the session that owns
    them.
Architecture position: Kernel > DB.

Failure modes:
    - sqlalchemy.exc.ArgumentError on a malformed URL.
    - session_scope re-raises whatever the body raised after rolling back.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def create_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for ``database_url``.

    In-memory SQLite gets a StaticPool so every session shares the single
    connection that holds the database.
    """
    kwargs: dict = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, **kwargs)
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back and re-raises on exception.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create every table registered on Base.metadata."""
    import inventory_kernel.models  # noqa: F401  registers all models
    from inventory_kernel.db.base import Base

    Base.metadata.create_all(engine)
    logger.info(
        "tables_created",
        extra={"table_count": len(Base.metadata.tables)},
    )


def drop_tables(engine: Engine) -> None:
    """Drop every table registered on Base.metadata. FOR TESTING ONLY."""
    import inventory_kernel.models  # noqa: F401
    from inventory_kernel.db.base import Base

    Base.metadata.drop_all(engine)
    logger.info("tables_dropped")
