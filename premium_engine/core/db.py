from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import Engine, create_engine, event, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from premium_engine.core.config import settings
from premium_engine.core.errors import EngineError, TransactionFailure, TransactionTimeout

logger = logging.getLogger(__name__)

# postgres: query_canceled (statement_timeout), lock_not_available (lock_timeout)
_TIMEOUT_SQLSTATES = {"57014", "55P03"}

# sqlite busy timeout for sessions opened outside transaction()
_SQLITE_BUSY_TIMEOUT_MS = 30_000
_SQLITE_TIMEOUT_OPTION = "sqlite_busy_timeout_ms"


class Base(DeclarativeBase):
    pass


# bound by configure_engine() at startup, or by tests
SessionLocal = sessionmaker(autoflush=False, autocommit=False, expire_on_commit=False)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    connect_args: dict = {}
    if url.startswith("sqlite"):
        # threads share the file
        connect_args = {"check_same_thread": False, "timeout": _SQLITE_BUSY_TIMEOUT_MS / 1000}

    engine = create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)
    return engine


def _serialize_sqlite_writers(engine: Engine) -> None:
    """
    SQLite has no row locks. Every transaction starts with BEGIN IMMEDIATE so two
    writers can't both read "no active subscription" and then both insert.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # take transaction control away from pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        # how long BEGIN IMMEDIATE waits for another writer; set per transaction
        ms = int(conn.get_execution_options().get(_SQLITE_TIMEOUT_OPTION, _SQLITE_BUSY_TIMEOUT_MS))
        conn.exec_driver_sql(f"PRAGMA busy_timeout = {ms}")
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def configure_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    engine = create_db_engine(
        url or settings.database_url,
        echo=settings.db_echo if echo is None else echo,
    )
    SessionLocal.configure(bind=engine)
    return engine


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _apply_timeout(db: Session, timeout: float | None) -> None:
    """Start the transaction with the caller's timeout in force."""
    seconds = settings.db_statement_timeout_seconds if timeout is None else timeout
    ms = int(seconds * 1000)
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        # the begin listener reads this before BEGIN IMMEDIATE waits on the write lock
        db.connection(execution_options={_SQLITE_TIMEOUT_OPTION: ms})
    elif dialect == "postgresql":
        # is_local=true: reset when the transaction ends
        db.execute(select(func.set_config("statement_timeout", str(ms), True)))
        db.execute(select(func.set_config("lock_timeout", str(ms), True)))


def _is_timeout(exc: OperationalError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) in _TIMEOUT_SQLSTATES:
        return True
    return "database is locked" in str(orig)


@contextmanager
def transaction(session_factory: sessionmaker, timeout: float | None = None) -> Iterator[Session]:
    """
    One session, one transaction for the whole block.

    Commits when the block exits normally, rolls back on any error and always
    releases the connection. Database errors surface as TransactionFailure
    (TransactionTimeout when the statement or lock timeout fired).
    """
    db = session_factory()
    try:
        _apply_timeout(db, timeout)
        yield db
        db.commit()
    except EngineError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        if _is_timeout(exc):
            logger.warning("transaction timed out, rolled back: %s", exc.orig)
            raise TransactionTimeout(str(exc.orig)) from exc
        raise TransactionFailure(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise TransactionFailure(str(exc)) from exc
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()
