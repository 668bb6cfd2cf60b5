"""Ledger service: reads the transaction ledger for a chain rebuild."""

from typing import Any, Dict, List

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from chainledger.database.db_manager import DatabaseManager
from chainledger.models.errors import LedgerReadError


def load_ledger(database: DatabaseManager) -> List[Dict[str, Any]]:
    """Materialize the full ledger up front.

    Malformed rows are returned as-is; the engine skips and counts them.
    Raises LedgerReadError if the ledger cannot be read at all.
    """
    try:
        records = database.get_ledger_records()
    except SQLAlchemyError as e:
        logger.error(f"Failed to read transaction ledger: {e}")
        raise LedgerReadError(f"Transaction ledger could not be read: {e}") from e

    logger.debug(f"Loaded {len(records)} ledger rows")
    return records
