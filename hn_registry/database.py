"""
Database Configuration and Session Management

Transaction Management Pattern:
- This module is the ONLY place that commits transactions, either via
  get_db() at the end of a request or via session_scope() for an explicit
  unit of work
- Services use db.add() to stage changes and db.flush() to write into the
  open transaction
- The registration protocol runs inside session_scope() so that the counter
  increment and the identity row are committed (or rolled back) together

Why Manual Flush?
- Autoflush can write a half-built identity row before the counter is locked
- Manual flush gives explicit control over when objects are written
"""

import math
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from hn_registry.config import settings


def build_engine(
    database_url: str, echo: bool = False, lock_timeout_ms: Optional[int] = None
) -> Engine:
    """
    Create an engine configured for serialized counter allocation.

    SQLite has no row-level locks, so every transaction is started with
    BEGIN IMMEDIATE: the database write lock is then held from the first
    read of the counter until commit, which gives the same ordering as
    SELECT ... FOR UPDATE on PostgreSQL/MySQL. The busy timeout bounds
    the wait for that lock.
    """
    if lock_timeout_ms is None:
        lock_timeout_ms = settings.LOCK_TIMEOUT_MS

    engine_args: dict[str, Any] = {"echo": echo}

    if database_url.startswith("sqlite"):
        # check_same_thread=False for multi-threading
        engine_args["connect_args"] = {
            "check_same_thread": False,
            "timeout": lock_timeout_ms / 1000,
        }
    elif database_url.startswith("postgresql"):
        engine_args["pool_pre_ping"] = True
        if settings.LOW_MEMORY_MODE:
            engine_args["pool_size"] = 3
            engine_args["max_overflow"] = 2
        else:
            engine_args["pool_size"] = 10
            engine_args["max_overflow"] = 20
        engine_args["pool_recycle"] = 3600
    else:
        engine_args["pool_pre_ping"] = True

    new_engine = create_engine(database_url, **engine_args)

    if new_engine.dialect.name == "sqlite":

        @event.listens_for(new_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(new_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return new_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,  # Manual flush for better control over transaction boundaries
    bind=engine,
)


class Base(DeclarativeBase):
    """Base class for all database models"""

    pass


def get_db():
    """
    Dependency to get a database session.

    Transaction Management:
    - Autoflush is disabled - flush manually when needed
    - Commit on successful completion. For read-only operations this is harmless.
    - Rollback on error for atomic transactions.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Dependency returning the factory used for explicit units of work."""
    return SessionLocal


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Run a block as a single unit of work.

    Commits when the block exits normally. Any exception (including
    cancellation of the caller) rolls the whole unit back, so no partial
    counter increment or identity row is ever left behind.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


def apply_lock_timeout(db: Session, timeout_ms: Optional[int] = None) -> None:
    """
    Bound lock waits for the current transaction.

    SQLite is configured through the connection busy timeout in build_engine().
    """
    if timeout_ms is None:
        timeout_ms = settings.LOCK_TIMEOUT_MS

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))
    elif dialect in ("mysql", "mariadb"):
        seconds = max(1, math.ceil(timeout_ms / 1000))
        db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))


def init_db(bind: Optional[Engine] = None):
    """Initialize database tables"""
    import hn_registry.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def close_db():
    """Close database connections"""
    engine.dispose()
