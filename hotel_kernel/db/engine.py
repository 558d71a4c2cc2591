"""
Module: hotel_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities. The single point of database
    connection configuration.
Architecture position: Kernel > DB. May import from db/base.py. Imports the
    model modules only inside create_tables() so that metadata is complete.

Invariants enforced:
    - PostgreSQL runs READ COMMITTED with explicit row locks (FOR UPDATE)
      wherever stronger isolation is needed (sequence counters, accounts
      touched by a posting, settlements under mutation).
    - SQLite connections use explicit BEGIN so SAVEPOINTs behave; in-memory
      databases share one connection through StaticPool.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().

Audit relevance:
    session_scope() gives commit-or-rollback semantics for every multi-step
    write: a failed journal post or settlement mutation leaves nothing
    behind.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from hotel_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_savepoint_support(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so nested transactions work."""

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
) -> Engine:
    """Create an Engine configured for the URL's dialect."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"echo": echo}
        if ":memory:" in database_url or database_url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        engine = create_engine(database_url, **kwargs)
        _install_sqlite_savepoint_support(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_kwargs) -> Engine:
    """
    Initialize the module-level engine and session factory.

    A second call replaces the first.

    Args:
        database_url: SQLAlchemy URL (postgresql+psycopg2://... or sqlite+pysqlite://...).
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(database_url, echo=echo, **pool_kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Commits on normal exit; on exception rolls back, logs, and re-raises.

    Usage:
        with session_scope() as session:
            JournalService(session, clock).post(entry_id, actor_id)
    """
    session = get_session()
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


def import_kernel_models() -> None:
    """Register the kernel tables on Base.metadata."""
    import hotel_kernel.models  # noqa: F401


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table registered on Base.metadata.

    Only kernel models are imported here; hotel_modules._orm_registry.
    create_all_tables() registers the module tables first.
    """
    from hotel_kernel.db.base import Base

    engine = engine or get_engine()
    import_kernel_models()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Primarily for testing."""
    from hotel_kernel.db.base import Base

    engine = engine or get_engine()
    import_kernel_models()
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"
