"""
Lot and match records for FIFO position tracking.

Lots are mutable and owned by exactly one LotQueue for the duration of a
run.  Matches and unmatched-close records are immutable results.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from chainledger.models.transaction import SecurityFamily

# Quantities below this are treated as zero (split ratios produce fractions)
QUANTITY_EPSILON = 1e-9


@dataclass
class Lot:
    """Unconsumed remainder of one opening transaction"""
    open_transaction_id: str
    symbol: str
    family: SecurityFamily
    open_date: date
    open_amount: float
    original_quantity: float  # rescaled by stock splits
    remaining_quantity: float
    expiration: Optional[date] = None
    series: Optional[str] = None  # option contract key, None for equities

    @property
    def unit_cost_or_credit(self) -> float:
        """Signed cash per unit at open (negative = paid, positive = received)."""
        if not self.original_quantity:
            return 0.0
        return self.open_amount / self.original_quantity

    @property
    def is_closed(self) -> bool:
        return self.remaining_quantity <= QUANTITY_EPSILON

    @property
    def is_option(self) -> bool:
        return self.family == SecurityFamily.OPTION

    def amount_share(self, quantity: float) -> float:
        """Proportional share of the open's cash effect for ``quantity`` units."""
        if not self.original_quantity:
            return 0.0
        return self.open_amount * quantity / self.original_quantity


@dataclass(frozen=True)
class Match:
    """One FIFO pairing of a close against an open lot.

    ``close_transaction_id`` is None for an implicit expiration, where the
    lot ran past its expiration date without a ledger row closing it.
    """
    close_transaction_id: Optional[str]
    open_transaction_id: str
    symbol: str
    family: SecurityFamily
    quantity_matched: float
    realized_amount: float
    close_date: date
    closing_type: str = "MANUAL"


@dataclass(frozen=True)
class UnmatchedClose:
    """The part of a close that found no funding lot"""
    transaction_id: str
    symbol: str
    family: SecurityFamily
    close_date: date
    unmatched_quantity: float
    requested_quantity: float
