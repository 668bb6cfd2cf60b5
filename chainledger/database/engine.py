"""
Process-wide SQLAlchemy engine and unit-of-work sessions for the chain ledger.

One engine per process, rebuilt by init_engine().  SQLite databases run in
WAL mode so chain queries keep reading the last committed rebuild while a
new one is being written; PostgreSQL gives the same isolation natively.
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///chain_ledger.db"

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None
_insert = None  # sqlite.insert or postgresql.insert


def _sqlite_engine(db_url: str) -> Engine:
    engine = create_engine(
        db_url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},  # FastAPI threadpool
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def init_engine(db_url: str = None) -> Engine:
    """(Re)create the process engine for ``db_url``.

    Args:
        db_url: SQLAlchemy URL. If None, reads DATABASE_URL from environment,
                falling back to sqlite:///chain_ledger.db.
    """
    global _engine, _SessionFactory, _insert

    if db_url is None:
        db_url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)

    dispose_engine()

    if db_url.startswith("postgresql"):
        _engine = create_engine(db_url, echo=False, pool_size=5, max_overflow=10)
        _insert = postgresql.insert
    else:
        _engine = _sqlite_engine(db_url)
        _insert = sqlite.insert

    _SessionFactory = sessionmaker(bind=_engine)

    # never log credentials
    logger.info("Database engine ready (%s): %s", _engine.dialect.name, db_url.rsplit("@", 1)[-1])
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the current engine."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def dialect_insert(model):
    """insert() for the active backend, so on_conflict_do_nothing() works on both."""
    if _insert is None:
        raise RuntimeError("Database engine not initialized, call init_engine() first")
    return _insert(model)


@contextmanager
def get_session() -> Iterator[Session]:
    """One unit of work: commits on clean exit, rolls back on any exception."""
    if _SessionFactory is None:
        raise RuntimeError("Database engine not initialized, call init_engine() first")

    session: Session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
