"""
Classifier - maps raw ledger rows to OPEN / CLOSE / NEUTRAL.

Pure and total: every Transaction gets a classification, and a broker type
string we do not know ends up NEUTRAL (``recognized=False``) so it can never
be mistaken for a match-eligible event.
"""

import logging
import re
from typing import Iterable, List

from chainledger.models.transaction import (
    ClassifiedTransaction,
    SecurityFamily,
    Transaction,
    TransactionKind,
)

logger = logging.getLogger(__name__)

__all__ = ["classify", "classify_all", "normalize_type"]

_SPLIT_TYPES = frozenset({
    "split", "stock split", "forward split", "reverse split", "reverse stock split",
})

# Known non-trading rows, neutral without a warning
_NEUTRAL_TYPES = frozenset({
    "dividend", "qualified dividend", "non-qualified dividend", "cash dividend",
    "interest", "interest income", "margin interest", "transfer", "journal",
    "wire in", "wire out", "deposit", "withdrawal", "fee", "adr fee",
    "service fee", "adjustment", "tax withholding", "spinoff", "name change",
})

_EQUITY_TRADE_PREFIXES = ("bought", "sold", "buy", "sell")
_EQUITY_DELIVERY_TYPES = frozenset({
    "option assigned", "option exercised", "assigned", "exercised",
})

_OPTION_CLOSE_TYPES = {
    "bought to cover": "MANUAL",
    "bought to close": "MANUAL",
    "buy to close": "MANUAL",
    "option assigned": "ASSIGNMENT",
    "assigned": "ASSIGNMENT",
    "assignment": "ASSIGNMENT",
    "option expired": "EXPIRATION",
    "expired": "EXPIRATION",
    "expiration": "EXPIRATION",
}


def normalize_type(raw_type: str) -> str:
    """Lower-case and collapse whitespace: ``'Sold  Short '`` -> ``'sold short'``."""
    return re.sub(r"\s+", " ", (raw_type or "").strip().lower())


def _neutral(tx: Transaction, *, recognized: bool, is_stock_split: bool = False) -> ClassifiedTransaction:
    return ClassifiedTransaction(
        transaction=tx,
        kind=TransactionKind.NEUTRAL,
        family=tx.security_family,
        is_stock_split=is_stock_split,
        recognized=recognized,
    )


def _classify_equity(tx: Transaction, raw: str) -> ClassifiedTransaction:
    if raw in _SPLIT_TYPES:
        return _neutral(tx, recognized=True, is_stock_split=True)
    if raw in _NEUTRAL_TYPES:
        return _neutral(tx, recognized=True)

    if not (raw.startswith(_EQUITY_TRADE_PREFIXES) or raw in _EQUITY_DELIVERY_TYPES):
        return _neutral(tx, recognized=False)

    if tx.signed_quantity > 0:
        kind = TransactionKind.OPEN
    elif tx.signed_quantity < 0:
        kind = TransactionKind.CLOSE
    else:
        return _neutral(tx, recognized=True)

    closing_type = None
    if kind == TransactionKind.CLOSE:
        closing_type = "ASSIGNMENT" if raw in _EQUITY_DELIVERY_TYPES else "MANUAL"

    return ClassifiedTransaction(
        transaction=tx,
        kind=kind,
        family=SecurityFamily.EQUITY,
        closing_type=closing_type,
    )


def _classify_option(tx: Transaction, raw: str) -> ClassifiedTransaction:
    if raw in _OPTION_CLOSE_TYPES:
        kind = TransactionKind.CLOSE
        closing_type = _OPTION_CLOSE_TYPES[raw]
    elif (raw.startswith("sold") and "close" not in raw) or raw == "sell to open":
        kind = TransactionKind.OPEN
        closing_type = None
    elif raw in _NEUTRAL_TYPES or raw in _SPLIT_TYPES:
        return _neutral(tx, recognized=True)
    else:
        return _neutral(tx, recognized=False)

    if tx.signed_quantity == 0:
        return _neutral(tx, recognized=True)

    return ClassifiedTransaction(
        transaction=tx,
        kind=kind,
        family=SecurityFamily.OPTION,
        closing_type=closing_type,
    )


def classify(tx: Transaction) -> ClassifiedTransaction:
    """Classify one transaction.  Never raises."""
    raw = normalize_type(tx.raw_type)
    if tx.security_family == SecurityFamily.OPTION:
        result = _classify_option(tx, raw)
    else:
        result = _classify_equity(tx, raw)

    if not result.recognized:
        logger.debug("Unrecognized %s type %r on %s", tx.security_family.value, tx.raw_type, tx.id)
    return result


def classify_all(transactions: Iterable[Transaction]) -> List[ClassifiedTransaction]:
    return [classify(tx) for tx in transactions]
