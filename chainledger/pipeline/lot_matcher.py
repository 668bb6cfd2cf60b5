"""
Lot Matcher - FIFO matching of closes against open lots.

One LotQueue per position: a stock symbol, or a single option contract
(underlying, put/call, strike, expiration).  Transactions are replayed in
(date, id) order: opens push a lot, closes drain lots from the front of
their own queue, stock splits rescale whatever is still queued at that point
in time.  Nothing here touches the database or any state outside the queues
of the symbol it was handed, which is what lets the orchestrator run every
symbol on its own worker.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import date
from typing import Deque, Dict, Iterable, List, Optional

from chainledger.models.errors import LotInvariantError
from chainledger.models.lots import QUANTITY_EPSILON, Lot, Match, UnmatchedClose
from chainledger.models.transaction import (
    ClassifiedTransaction,
    SecurityFamily,
    TransactionKind,
)

logger = logging.getLogger(__name__)

__all__ = ["LotQueue", "SymbolMatchResult", "match_lots"]


@dataclass
class CloseOutcome:
    """What one close did to the queue"""
    matches: List[Match]
    unmatched_quantity: float
    is_split: bool


@dataclass
class SymbolMatchResult:
    """Everything one (symbol, family) replay produced."""
    symbol: str
    family: SecurityFamily
    matches: List[Match] = field(default_factory=list)
    unmatched_closes: List[UnmatchedClose] = field(default_factory=list)
    lots: List[Lot] = field(default_factory=list)
    transactions: List[ClassifiedTransaction] = field(default_factory=list)
    split_transaction_ids: List[str] = field(default_factory=list)
    stock_splits_applied: int = 0
    expired_lots: int = 0

    @property
    def open_lots(self) -> List[Lot]:
        return [lot for lot in self.lots if not lot.is_closed]


class LotQueue:
    """FIFO queue of open lots for one stock or one option contract."""

    def __init__(self, symbol: str, family: SecurityFamily, series: Optional[str] = None) -> None:
        self.symbol = symbol
        self.family = family
        self.series = series
        self._lots: Deque[Lot] = deque()

    def __len__(self) -> int:
        return len(self._lots)

    @property
    def total_remaining(self) -> float:
        return sum(lot.remaining_quantity for lot in self._lots)

    def lots(self) -> List[Lot]:
        return list(self._lots)

    def open(self, ctx: ClassifiedTransaction) -> Lot:
        """Push a new lot for an OPEN transaction."""
        tx = ctx.transaction
        lot = Lot(
            open_transaction_id=tx.id,
            symbol=self.symbol,
            family=self.family,
            open_date=tx.date,
            open_amount=tx.amount,
            original_quantity=ctx.quantity,
            remaining_quantity=ctx.quantity,
            expiration=tx.expiration,
            series=self.series,
        )
        self._lots.append(lot)
        logger.debug("Opened lot %s: %s %s qty=%s", tx.id, self.symbol, self.series or "", ctx.quantity)
        return lot

    def close(self, ctx: ClassifiedTransaction) -> CloseOutcome:
        """Drain lots from the front until the close is satisfied or the queue is empty.

        Realized amount per match is the close's proportional cash share plus
        the open's proportional (signed) cash share, i.e. cash in minus cash
        out for the matched units.
        """
        tx = ctx.transaction
        requested = ctx.quantity
        remaining_to_close = requested
        matches: List[Match] = []
        last_lot: Optional[Lot] = None

        while remaining_to_close > QUANTITY_EPSILON and self._lots:
            lot = self._lots[0]
            if lot.remaining_quantity < -QUANTITY_EPSILON:
                raise LotInvariantError(
                    f"Lot {lot.open_transaction_id} has negative remaining quantity "
                    f"({lot.remaining_quantity}) before matching {tx.id}"
                )
            take = min(lot.remaining_quantity, remaining_to_close)

            close_share = tx.amount * take / requested
            open_share = lot.amount_share(take)

            lot.remaining_quantity -= take
            if lot.remaining_quantity < -QUANTITY_EPSILON:
                raise LotInvariantError(
                    f"Lot {lot.open_transaction_id} went negative "
                    f"({lot.remaining_quantity}) while matching {tx.id}"
                )
            if lot.remaining_quantity <= QUANTITY_EPSILON:
                lot.remaining_quantity = 0.0
                self._lots.popleft()

            remaining_to_close -= take
            last_lot = lot
            matches.append(Match(
                close_transaction_id=tx.id,
                open_transaction_id=lot.open_transaction_id,
                symbol=self.symbol,
                family=self.family,
                quantity_matched=take,
                realized_amount=close_share + open_share,
                close_date=tx.date,
                closing_type=ctx.closing_type or "MANUAL",
            ))

        if remaining_to_close <= QUANTITY_EPSILON:
            remaining_to_close = 0.0

        is_split = len(matches) > 1 or (last_lot is not None and not last_lot.is_closed)
        return CloseOutcome(matches=matches, unmatched_quantity=remaining_to_close, is_split=is_split)

    def apply_split(self, ctx: ClassifiedTransaction) -> Optional[float]:
        """Rescale every queued lot by the split ratio.

        Quantity is multiplied and unit cost divided (the open amount is
        untouched).  Returns the applied ratio, or None if nothing changed.
        """
        tx = ctx.transaction
        held = self.total_remaining
        if held <= QUANTITY_EPSILON:
            logger.info("Split %s on %s with no open lots, nothing to rescale", tx.id, self.symbol)
            return None

        if tx.split_ratio is not None:
            ratio = tx.split_ratio
        else:
            # Quantity on a split row is the share delta it produced
            ratio = (held + tx.signed_quantity) / held

        if ratio <= 0:
            logger.warning("Ignoring split %s on %s: ratio %s is not positive", tx.id, self.symbol, ratio)
            return None

        for lot in self._lots:
            lot.remaining_quantity *= ratio
            lot.original_quantity *= ratio

        logger.info(
            "Applied split %s on %s: ratio %.6g across %d lots",
            tx.id, self.symbol, ratio, len(self._lots),
        )
        return ratio

    def expire(self, as_of: date) -> List[Match]:
        """Close option lots whose expiration is on or before ``as_of``."""
        matches: List[Match] = []
        kept: Deque[Lot] = deque()
        for lot in self._lots:
            if lot.is_option and lot.expiration is not None and lot.expiration <= as_of:
                quantity = lot.remaining_quantity
                matches.append(Match(
                    close_transaction_id=None,
                    open_transaction_id=lot.open_transaction_id,
                    symbol=self.symbol,
                    family=self.family,
                    quantity_matched=quantity,
                    realized_amount=lot.amount_share(quantity),
                    close_date=lot.expiration,
                    closing_type="EXPIRATION",
                ))
                lot.remaining_quantity = 0.0
                logger.debug("Implicitly expired lot %s on %s", lot.open_transaction_id, lot.expiration)
            else:
                kept.append(lot)
        self._lots = kept
        return matches


def _sorted(transactions: Iterable[ClassifiedTransaction]) -> List[ClassifiedTransaction]:
    return sorted(transactions, key=lambda ctx: ctx.sort_key)


def match_lots(
    symbol: str,
    family: SecurityFamily,
    transactions: Iterable[ClassifiedTransaction],
    as_of: Optional[date] = None,
) -> SymbolMatchResult:
    """Replay one symbol's classified transactions through fresh LotQueues.

    Parameters
    ----------
    symbol, family
        The group key.  Every transaction passed in must belong to it.
    transactions
        Classified transactions; re-sorted by (date, id) for determinism.
        Option transactions are queued per contract (``series_key``), so a
        close only ever drains lots of the contract it names.
    as_of
        When given, option lots still open at the end of the stream whose
        expiration is on or before this date are closed by an implicit
        EXPIRATION match.
    """
    queues: Dict[Optional[str], LotQueue] = {}
    result = SymbolMatchResult(symbol=symbol, family=family)

    def queue_for(ctx: ClassifiedTransaction) -> LotQueue:
        series = ctx.transaction.series_key
        if series not in queues:
            queues[series] = LotQueue(symbol, family, series=series)
        return queues[series]

    for ctx in _sorted(transactions):
        if ctx.symbol != symbol or ctx.family != family:
            raise ValueError(
                f"Transaction {ctx.id} ({ctx.symbol}/{ctx.family.value}) "
                f"does not belong to queue {symbol}/{family.value}"
            )
        result.transactions.append(ctx)

        if ctx.kind == TransactionKind.OPEN:
            result.lots.append(queue_for(ctx).open(ctx))

        elif ctx.kind == TransactionKind.CLOSE:
            outcome = queue_for(ctx).close(ctx)
            result.matches.extend(outcome.matches)
            if outcome.unmatched_quantity > 0:
                result.unmatched_closes.append(UnmatchedClose(
                    transaction_id=ctx.id,
                    symbol=symbol,
                    family=family,
                    close_date=ctx.date,
                    unmatched_quantity=outcome.unmatched_quantity,
                    requested_quantity=ctx.quantity,
                ))
                logger.debug(
                    "Unmatched close %s on %s: %s of %s units had no funding lot",
                    ctx.id, symbol, outcome.unmatched_quantity, ctx.quantity,
                )
            if outcome.is_split:
                result.split_transaction_ids.append(ctx.id)

        elif ctx.is_stock_split:
            if queue_for(ctx).apply_split(ctx) is not None:
                result.stock_splits_applied += 1

    if as_of is not None and family == SecurityFamily.OPTION:
        expired: List[Match] = []
        for queue in queues.values():
            expired.extend(queue.expire(as_of))
        result.matches.extend(expired)
        result.expired_lots = len(expired)

    return result
