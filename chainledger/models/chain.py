"""Chain aggregates and run statistics."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Tuple

from chainledger.models.lots import Match
from chainledger.models.transaction import SecurityFamily


class ChainRole(str, Enum):
    OPENING = "OPENING"
    CLOSING = "CLOSING"
    INTERMEDIATE = "INTERMEDIATE"


@dataclass(frozen=True)
class Chain:
    """Matched history of one round-trip position, closed or still open."""
    chain_id: str
    symbol: str
    family: SecurityFamily
    transaction_ids: Tuple[str, ...]
    open_transaction_ids: Tuple[str, ...]
    close_transaction_ids: Tuple[str, ...]
    chain_start_date: date
    chain_end_date: Optional[date]
    total_realized_amount: float
    is_closed: bool
    opening_transaction_id: str
    closing_transaction_id: Optional[str] = None
    series: Optional[str] = None
    matches: Tuple[Match, ...] = field(default=(), repr=False)

    @property
    def transaction_count(self) -> int:
        return len(self.transaction_ids)

    def role_of(self, transaction_id: str) -> ChainRole:
        if transaction_id == self.opening_transaction_id:
            return ChainRole.OPENING
        if self.is_closed and transaction_id == self.closing_transaction_id:
            return ChainRole.CLOSING
        return ChainRole.INTERMEDIATE


@dataclass(frozen=True)
class ChainStatistics:
    """Counters from one completed run.

    Invariants: chained_transactions <= total_transactions and
    closed_chain_transactions <= chained_transactions.
    """
    total_transactions: int = 0
    chained_transactions: int = 0
    total_chains: int = 0
    closed_chains: int = 0
    open_chains: int = 0
    closed_chain_transactions: int = 0
    equity_chain_transactions: int = 0
    option_chain_transactions: int = 0
    equity_chains: int = 0
    option_chains: int = 0
    equity_transactions: int = 0
    option_transactions: int = 0
    unmatched_closes: int = 0
    split_transactions: int = 0
    neutral_transactions: int = 0
    stock_splits_applied: int = 0
    malformed_records: int = 0
