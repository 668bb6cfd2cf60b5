"""
Ledger transaction types.

A Transaction is one immutable row of the brokerage ledger.  The classifier
turns it into a ClassifiedTransaction (kind + family) before lot matching.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from chainledger.models.errors import MalformedTransactionError


class SecurityFamily(str, Enum):
    EQUITY = "EQUITY"
    OPTION = "OPTION"


class TransactionKind(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    NEUTRAL = "NEUTRAL"


# Broker codes seen in older exports
_FAMILY_ALIASES = {
    "EQUITY": SecurityFamily.EQUITY,
    "EQ": SecurityFamily.EQUITY,
    "STOCK": SecurityFamily.EQUITY,
    "OPTION": SecurityFamily.OPTION,
    "OPTN": SecurityFamily.OPTION,
    "EQUITY_OPTION": SecurityFamily.OPTION,
}


def parse_family(value: Any) -> Optional[SecurityFamily]:
    """Map a stored security type to a SecurityFamily, or None if unknown."""
    if isinstance(value, SecurityFamily):
        return value
    if value is None:
        return None
    return _FAMILY_ALIASES.get(str(value).strip().upper())


def transaction_id_key(transaction_id: str) -> Tuple[int, Any]:
    """Sort key for transaction ids: numeric ids numerically, then the rest."""
    text = str(transaction_id)
    if text.isdigit():
        return (0, int(text))
    return (1, text)


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        return None


_OPTION_TYPES = {"C": "CALL", "CALL": "CALL", "P": "PUT", "PUT": "PUT"}

# "CIFR Aug 29 '25 $4 Call"
_DESCRIPTION_DATED = re.compile(
    r"\b([A-Za-z]{3})[a-z]*\.?\s+(\d{1,2})\s+'(\d{2})\s+\$?(\d+(?:\.\d+)?)\s+(call|put)\b",
    re.IGNORECASE,
)
# "CALL CIFR   08/29/25     5.500 CALL CIPHER MINING INC"
_DESCRIPTION_SLASHED = re.compile(
    r"\b(call|put)\s+[A-Z.]+\s+(\d{2})/(\d{2})/(\d{2})\s+(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)


def parse_option_type(value: Any) -> Optional[str]:
    if value is None:
        return None
    return _OPTION_TYPES.get(str(value).strip().upper())


def parse_option_details(description: str) -> Optional[Tuple[str, float, date]]:
    """Read (option_type, strike, expiration) from a broker option description.

    Both export formats are understood::

        CIFR Aug 29 '25 $4 Call
        CALL CIFR   08/29/25     5.500 CALL CIPHER MINING INC

    Returns None when the description names no option series.
    """
    if not description:
        return None

    m = _DESCRIPTION_DATED.search(description)
    if m:
        month, day, year, strike, kind = m.groups()
        date_text, fmt = f"{month.title()} {day} {year}", "%b %d %y"
    else:
        m = _DESCRIPTION_SLASHED.search(description)
        if m is None:
            return None
        kind, month, day, year, strike = m.groups()
        date_text, fmt = f"{month}/{day}/{year}", "%m/%d/%y"

    try:
        expiration = datetime.strptime(date_text, fmt).date()
    except ValueError:
        return None
    return kind.upper(), float(strike), expiration


def _parse_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


@dataclass(frozen=True)
class Transaction:
    """One ledger row.  ``id`` must be unique and stable across runs."""
    id: str
    date: date
    symbol: str
    security_family: SecurityFamily
    raw_type: str
    signed_quantity: float
    amount: float
    strike: Optional[float] = None
    expiration: Optional[date] = None
    option_type: Optional[str] = None
    split_ratio: Optional[float] = None
    description: str = ""

    @property
    def sort_key(self) -> Tuple[date, Tuple[int, Any]]:
        return (self.date, transaction_id_key(self.id))

    @property
    def series_key(self) -> Optional[str]:
        """``PUT_20_20250221`` for an option contract, None for equities."""
        if self.security_family != SecurityFamily.OPTION:
            return None
        if self.option_type is None or self.strike is None or self.expiration is None:
            return None
        return f"{self.option_type}_{self.strike:g}_{self.expiration.strftime('%Y%m%d')}"

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Transaction":
        """Build a Transaction from a ledger dict or ORM ``to_dict()`` output.

        Raises MalformedTransactionError when id, date, symbol, security
        family, quantity or amount is missing or unparseable, or when an
        option row names no series in its columns or its description.
        """
        record_id = _first(record, "id", "transaction_id")
        if record_id is None or str(record_id).strip() == "":
            raise MalformedTransactionError("record has no id")
        record_id = str(record_id)

        tx_date = parse_date(_first(record, "date", "transaction_date"))
        if tx_date is None:
            raise MalformedTransactionError(f"transaction {record_id} has no valid date", record_id)

        symbol = _first(record, "symbol", "calculated_symbol")
        if not symbol or not str(symbol).strip():
            raise MalformedTransactionError(f"transaction {record_id} has no symbol", record_id)

        family = parse_family(_first(record, "security_family", "security_type"))
        if family is None:
            raise MalformedTransactionError(
                f"transaction {record_id} has unknown security type "
                f"{_first(record, 'security_family', 'security_type')!r}",
                record_id,
            )

        quantity = _parse_float(_first(record, "signed_quantity", "quantity"))
        if quantity is None:
            raise MalformedTransactionError(f"transaction {record_id} has no quantity", record_id)

        amount = _parse_float(record.get("amount"))
        if amount is None:
            raise MalformedTransactionError(f"transaction {record_id} has no amount", record_id)

        strike = _parse_float(record.get("strike"))
        expiration = parse_date(record.get("expiration"))
        option_type = parse_option_type(record.get("option_type"))
        description = str(record.get("description") or "")

        if family == SecurityFamily.OPTION and None in (strike, expiration, option_type):
            details = parse_option_details(description)
            if details is None:
                raise MalformedTransactionError(
                    f"option transaction {record_id} has no strike/expiration/type "
                    f"and none could be read from {description!r}",
                    record_id,
                )
            option_type = option_type or details[0]
            strike = strike if strike is not None else details[1]
            expiration = expiration or details[2]

        return cls(
            id=record_id,
            date=tx_date,
            symbol=str(symbol).strip().upper(),
            security_family=family,
            raw_type=str(_first(record, "raw_type", "transaction_type") or ""),
            signed_quantity=quantity,
            amount=amount,
            strike=strike,
            expiration=expiration,
            option_type=option_type,
            split_ratio=_parse_float(record.get("split_ratio")),
            description=description,
        )


@dataclass(frozen=True)
class ClassifiedTransaction:
    """A Transaction tagged with its matching semantics."""
    transaction: Transaction
    kind: TransactionKind
    family: SecurityFamily
    closing_type: Optional[str] = None  # MANUAL, ASSIGNMENT, EXPIRATION
    is_stock_split: bool = False
    recognized: bool = True

    @property
    def id(self) -> str:
        return self.transaction.id

    @property
    def date(self) -> date:
        return self.transaction.date

    @property
    def symbol(self) -> str:
        return self.transaction.symbol

    @property
    def amount(self) -> float:
        return self.transaction.amount

    @property
    def quantity(self) -> float:
        """Absolute quantity; the sign is already folded into ``kind``."""
        return abs(self.transaction.signed_quantity)

    @property
    def sort_key(self):
        return self.transaction.sort_key
