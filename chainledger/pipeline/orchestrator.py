"""
Pipeline Orchestrator - composes the chain engine into a single ``reprocess()`` call.

    ledger records -> parse (skip malformed) -> classify
                   -> group by (symbol, family)
                   -> lot matching, one worker task per group,
                      one FIFO queue per stock or option contract
                   -> chain graph -> statistics

The run is a pure batch transform.  Each call builds fresh lot queues and
throws them away afterwards; nothing is shared between runs or between
groups, so reruns over the same ledger produce identical chains.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from chainledger.models.chain import Chain, ChainStatistics
from chainledger.models.errors import MalformedTransactionError
from chainledger.models.lots import Match, UnmatchedClose
from chainledger.models.transaction import (
    ClassifiedTransaction,
    SecurityFamily,
    Transaction,
)
from chainledger.pipeline.chain_graph import build_chains
from chainledger.pipeline.chain_stats import aggregate
from chainledger.pipeline.classifier import classify
from chainledger.pipeline.lot_matcher import SymbolMatchResult, match_lots

logger = logging.getLogger(__name__)

__all__ = ["PipelineResult", "parse_ledger", "reprocess"]

GroupKey = Tuple[str, SecurityFamily]


@dataclass
class PipelineResult:
    """Result of a full chain run."""
    transactions: List[ClassifiedTransaction] = field(default_factory=list)
    chains: List[Chain] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    unmatched_closes: List[UnmatchedClose] = field(default_factory=list)
    split_transaction_ids: List[str] = field(default_factory=list)
    statistics: ChainStatistics = field(default_factory=ChainStatistics)
    malformed_records: int = 0
    unrecognized_types: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict[str, int]:
        """The counts a processChains caller gets back."""
        return {
            "total_transactions": self.statistics.total_transactions,
            "equity_chains": self.statistics.equity_chains,
            "option_chains": self.statistics.option_chains,
            "unmatched_closes": self.statistics.unmatched_closes,
            "split_transactions": self.statistics.split_transactions,
            "malformed_records": self.malformed_records,
        }


def parse_ledger(
    records: Iterable[Union[Transaction, Mapping[str, Any]]],
) -> Tuple[List[Transaction], int]:
    """Turn raw ledger records into Transactions.

    Malformed records and repeated ids are skipped and counted; the rest of
    the ledger is unaffected.
    """
    transactions: List[Transaction] = []
    seen_ids = set()
    malformed = 0

    for record in records:
        try:
            tx = record if isinstance(record, Transaction) else Transaction.from_record(record)
        except MalformedTransactionError as e:
            malformed += 1
            logger.warning("Skipping malformed ledger record: %s", e)
            continue

        if tx.id in seen_ids:
            malformed += 1
            logger.warning("Skipping duplicate ledger record %s", tx.id)
            continue
        seen_ids.add(tx.id)
        transactions.append(tx)

    return transactions, malformed


def _group(classified: List[ClassifiedTransaction]) -> Dict[GroupKey, List[ClassifiedTransaction]]:
    groups: Dict[GroupKey, List[ClassifiedTransaction]] = defaultdict(list)
    for ctx in classified:
        groups[(ctx.symbol, ctx.family)].append(ctx)
    return groups


def _match_groups(
    groups: Dict[GroupKey, List[ClassifiedTransaction]],
    max_workers: int,
    as_of: Optional[date],
) -> List[SymbolMatchResult]:
    keys = sorted(groups, key=lambda k: (k[0], k[1].value))

    def run(key: GroupKey) -> SymbolMatchResult:
        symbol, family = key
        return match_lots(symbol, family, groups[key], as_of=as_of)

    if max_workers <= 1 or len(keys) <= 1:
        return [run(key) for key in keys]

    # map() yields in key order, and re-raises the first worker failure
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lot-match") as pool:
        return list(pool.map(run, keys))


def reprocess(
    records: Iterable[Union[Transaction, Mapping[str, Any]]],
    *,
    max_workers: int = 1,
    as_of: Optional[date] = None,
) -> PipelineResult:
    """Run the chain engine over a full ledger.

    Parameters:
        records: Transactions or raw ledger dicts, in any order
        max_workers: Worker-pool size for per-(symbol, family) matching
        as_of: Close option lots whose expiration is on or before this date

    Returns:
        PipelineResult with chains, matches and statistics
    """
    transactions, malformed = parse_ledger(records)
    if not transactions:
        logger.info("No transactions to process, returning empty result")
        return PipelineResult(
            statistics=ChainStatistics(malformed_records=malformed),
            malformed_records=malformed,
        )

    classified = sorted((classify(tx) for tx in transactions), key=lambda ctx: ctx.sort_key)
    unrecognized = Counter(ctx.transaction.raw_type for ctx in classified if not ctx.recognized)
    for raw_type, count in sorted(unrecognized.items()):
        logger.warning("Unrecognized transaction type %r on %d rows, treated as neutral", raw_type, count)
    tx_by_id = {ctx.id: ctx for ctx in classified}

    groups = _group(classified)
    logger.info("Matching %d transactions across %d symbol groups", len(classified), len(groups))
    results = _match_groups(groups, max_workers, as_of)

    chains: List[Chain] = []
    matches: List[Match] = []
    unmatched: List[UnmatchedClose] = []
    split_ids: List[str] = []
    stock_splits = 0

    for result in results:
        chains.extend(build_chains(result.matches, result.lots, tx_by_id))
        matches.extend(result.matches)
        unmatched.extend(result.unmatched_closes)
        split_ids.extend(result.split_transaction_ids)
        stock_splits += result.stock_splits_applied

    statistics = aggregate(
        classified,
        chains,
        unmatched,
        split_transactions=len(split_ids),
        stock_splits_applied=stock_splits,
        malformed_records=malformed,
    )
    logger.info(
        "Chain run complete: %d chains (%d closed), %d unmatched closes, %d split closes",
        statistics.total_chains, statistics.closed_chains,
        statistics.unmatched_closes, statistics.split_transactions,
    )

    return PipelineResult(
        transactions=classified,
        chains=chains,
        matches=matches,
        unmatched_closes=unmatched,
        split_transaction_ids=split_ids,
        statistics=statistics,
        malformed_records=malformed,
        unrecognized_types=dict(unrecognized),
    )
