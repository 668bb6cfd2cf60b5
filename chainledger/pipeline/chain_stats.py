"""
Chain statistics - a pure fold over one run's chains and ledger.
"""

import logging
from typing import Iterable, Sequence, Set, Union

from chainledger.models.chain import Chain, ChainStatistics
from chainledger.models.errors import LotInvariantError
from chainledger.models.lots import UnmatchedClose
from chainledger.models.transaction import (
    ClassifiedTransaction,
    SecurityFamily,
    Transaction,
    TransactionKind,
)

logger = logging.getLogger(__name__)

__all__ = ["aggregate"]


def _family(row: Union[Transaction, ClassifiedTransaction]) -> SecurityFamily:
    if isinstance(row, ClassifiedTransaction):
        return row.family
    return row.security_family


def aggregate(
    ledger: Sequence[Union[Transaction, ClassifiedTransaction]],
    chains: Iterable[Chain],
    unmatched_closes: Iterable[UnmatchedClose],
    *,
    split_transactions: int = 0,
    stock_splits_applied: int = 0,
    malformed_records: int = 0,
) -> ChainStatistics:
    """Reduce a run into ChainStatistics.

    Raises LotInvariantError if a transaction was assigned to more than one
    chain, which would mean the chain builder double-counted it.
    """
    chains = list(chains)
    seen: Set[str] = set()
    closed_chain_transactions = 0
    equity_chain_transactions = 0
    option_chain_transactions = 0
    closed_chains = 0
    equity_chains = 0

    for chain in chains:
        for tid in chain.transaction_ids:
            if tid in seen:
                raise LotInvariantError(f"Transaction {tid} assigned to more than one chain")
            seen.add(tid)

        count = chain.transaction_count
        if chain.is_closed:
            closed_chains += 1
            closed_chain_transactions += count
        if chain.family == SecurityFamily.EQUITY:
            equity_chains += 1
            equity_chain_transactions += count
        else:
            option_chain_transactions += count

    equity_transactions = sum(1 for row in ledger if _family(row) == SecurityFamily.EQUITY)
    neutral = sum(
        1 for row in ledger
        if isinstance(row, ClassifiedTransaction) and row.kind == TransactionKind.NEUTRAL
    )

    stats = ChainStatistics(
        total_transactions=len(ledger),
        chained_transactions=len(seen),
        total_chains=len(chains),
        closed_chains=closed_chains,
        open_chains=len(chains) - closed_chains,
        closed_chain_transactions=closed_chain_transactions,
        equity_chain_transactions=equity_chain_transactions,
        option_chain_transactions=option_chain_transactions,
        equity_chains=equity_chains,
        option_chains=len(chains) - equity_chains,
        equity_transactions=equity_transactions,
        option_transactions=len(ledger) - equity_transactions,
        unmatched_closes=len(list(unmatched_closes)),
        split_transactions=split_transactions,
        neutral_transactions=neutral,
        stock_splits_applied=stock_splits_applied,
        malformed_records=malformed_records,
    )

    if stats.chained_transactions > stats.total_transactions:
        raise LotInvariantError(
            f"{stats.chained_transactions} chained transactions exceed "
            f"{stats.total_transactions} processed"
        )
    return stats
