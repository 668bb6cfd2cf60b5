"""
Database Manager for the chain ledger.

Thin facade over the SQLAlchemy engine: schema creation, session access,
and the two ledger operations the ingestion side and the engine need.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Mapping

from sqlalchemy.orm import Session

from chainledger.database import engine as _engine_module
from chainledger.database.engine import DEFAULT_DATABASE_URL, dialect_insert, init_engine
from chainledger.database.models import Base, LedgerTransaction
from chainledger.models.transaction import parse_date

logger = logging.getLogger(__name__)

_LEDGER_COLUMNS = [col.key for col in LedgerTransaction.__table__.columns if col.key != "created_at"]
_DATE_COLUMNS = ("transaction_date", "expiration")


class DatabaseManager:
    def __init__(self, db_url: str = None):
        self.db_url = db_url or DEFAULT_DATABASE_URL
        self._initialized = False
        # Note: initialize_database() is called explicitly by the app lifespan or the CLI

    def ensure_initialized(self):
        """Ensure database is initialized (for standalone scripts)"""
        if not self._initialized:
            self.initialize_database()

    def initialize_database(self):
        """Create the engine and all tables"""
        start_time = time.time()
        logger.info("Starting database initialization...")
        engine = init_engine(self.db_url)
        Base.metadata.create_all(engine)
        self._initialized = True
        logger.info("Database initialized in %.3fs", time.time() - start_time)

    @contextmanager
    def get_session(self) -> Session:
        """Session scoped to one unit of work; commits on success, rolls back on error"""
        self.ensure_initialized()
        with _engine_module.get_session() as session:
            yield session

    def save_transactions(self, transactions: Iterable[Mapping[str, Any]]) -> int:
        """Append ledger rows.  Rows whose id already exists are left untouched.

        Returns the number of rows inserted.
        """
        saved_count = 0
        with self.get_session() as session:
            for txn in transactions:
                values: Dict[str, Any] = {key: txn.get(key) for key in _LEDGER_COLUMNS if key in txn}
                if values.get("id") is None:
                    logger.warning("Refusing to save ledger row without an id: %s", dict(txn))
                    continue
                values["id"] = str(values["id"])
                for key in _DATE_COLUMNS:
                    if key in values and values[key] is not None:
                        values[key] = parse_date(values[key])

                stmt = dialect_insert(LedgerTransaction).values(**values)
                result = session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
                saved_count += result.rowcount or 0

        logger.info("Saved %d ledger transactions", saved_count)
        return saved_count

    def get_ledger_records(self) -> List[Dict[str, Any]]:
        """All ledger rows as plain dicts, in (transaction_date, id) order"""
        with self.get_session() as session:
            rows = session.query(LedgerTransaction).order_by(
                LedgerTransaction.transaction_date.asc(),
                LedgerTransaction.id.asc(),
            ).all()
            return [row.to_dict() for row in rows]
