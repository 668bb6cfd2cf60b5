"""
Chain Graph - connected-component chain derivation from FIFO matches.

Every open transaction is a node; every Match adds an edge between the close
and the open it drained.  Each connected component is one Chain.  An open
that no close ever touched is a component of its own (an open chain).

Pure: reads the lot matcher's output, returns immutable Chain objects.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Mapping

from chainledger.models.chain import Chain
from chainledger.models.lots import Lot, Match
from chainledger.models.transaction import ClassifiedTransaction, transaction_id_key

logger = logging.getLogger(__name__)

__all__ = ["TransactionForest", "build_chains", "make_chain_id"]


# ---------------------------------------------------------------------------
# Disjoint sets of transaction ids
# ---------------------------------------------------------------------------

class TransactionForest:
    """Disjoint sets of transaction ids, each rooted at its earliest member.

    ``order`` maps an id to its replay position; joining two sets keeps the
    root that replays first, so a chain's root is always its first open.
    """

    def __init__(self, order: Callable[[str], Any] = transaction_id_key) -> None:
        self._order = order
        self._parent: Dict[str, str] = {}

    def __contains__(self, tid: str) -> bool:
        return tid in self._parent

    def add(self, tid: str) -> None:
        self._parent.setdefault(tid, tid)

    def root(self, tid: str) -> str:
        path = []
        while self._parent[tid] != tid:
            path.append(tid)
            tid = self._parent[tid]
        for node in path:
            self._parent[node] = tid
        return tid

    def join(self, a: str, b: str) -> str:
        ra, rb = self.root(a), self.root(b)
        if ra != rb:
            if self._order(rb) < self._order(ra):
                ra, rb = rb, ra
            self._parent[rb] = ra
        return ra

    def groups(self) -> Dict[str, List[str]]:
        """{root: members in replay order}"""
        members: Dict[str, List[str]] = defaultdict(list)
        for tid in sorted(self._parent, key=self._order):
            members[self.root(tid)].append(tid)
        return dict(members)


def make_chain_id(lot: Lot) -> str:
    """Chain id derived from the chain's earliest open, stable across reruns.

    Option chains carry their contract: ``XYZ_OPTION_PUT_20_20250221_20250102_1``.
    """
    position = f"{lot.symbol}_{lot.family.value}"
    if lot.series:
        position = f"{position}_{lot.series}"
    return f"{position}_{lot.open_date.strftime('%Y%m%d')}_{lot.open_transaction_id}"


# ---------------------------------------------------------------------------
# Chain builder
# ---------------------------------------------------------------------------

def build_chains(
    matches: Iterable[Match],
    lots: Iterable[Lot],
    transactions: Mapping[str, ClassifiedTransaction],
) -> List[Chain]:
    """Group matches into chains.

    Parameters
    ----------
    matches : iterable of Match
        In replay order; the last match of a closed component is the one
        that drained it.
    lots : iterable of Lot
        Every lot the matcher created, with its final remaining quantity.
    transactions : mapping of transaction id -> ClassifiedTransaction
        Used for member ordering and dates.
    """
    matches = list(matches)
    lot_by_open: Dict[str, Lot] = {lot.open_transaction_id: lot for lot in lots}

    forest = TransactionForest(order=lambda tid: transactions[tid].sort_key)
    for open_id in lot_by_open:
        forest.add(open_id)

    for m in matches:
        if m.open_transaction_id not in lot_by_open:
            logger.warning("Match references unknown open %s, skipping", m.open_transaction_id)
            continue
        if m.close_transaction_id is None:
            continue
        forest.add(m.close_transaction_id)
        forest.join(m.open_transaction_id, m.close_transaction_id)

    matches_by_root: Dict[str, List[Match]] = defaultdict(list)
    for m in matches:
        if m.open_transaction_id in lot_by_open:
            matches_by_root[forest.root(m.open_transaction_id)].append(m)

    chains: List[Chain] = []
    for root, ordered_ids in forest.groups().items():
        component_lots = [lot_by_open[tid] for tid in ordered_ids if tid in lot_by_open]
        if not component_lots:
            continue
        first = component_lots[0]
        component_matches = matches_by_root.get(root, [])

        open_ids = tuple(tid for tid in ordered_ids if tid in lot_by_open)
        close_ids = tuple(tid for tid in ordered_ids if tid not in lot_by_open)

        is_closed = all(lot.is_closed for lot in component_lots)
        chain_end_date = None
        closing_transaction_id = None
        if is_closed and component_matches:
            last = component_matches[-1]
            chain_end_date = last.close_date
            closing_transaction_id = last.close_transaction_id

        chains.append(Chain(
            chain_id=make_chain_id(first),
            symbol=first.symbol,
            family=first.family,
            transaction_ids=tuple(ordered_ids),
            open_transaction_ids=open_ids,
            close_transaction_ids=close_ids,
            chain_start_date=first.open_date,
            chain_end_date=chain_end_date,
            total_realized_amount=sum(m.realized_amount for m in component_matches),
            is_closed=is_closed,
            opening_transaction_id=first.open_transaction_id,
            closing_transaction_id=closing_transaction_id,
            series=first.series,
            matches=tuple(component_matches),
        ))

    chains.sort(key=lambda c: (c.chain_start_date, transaction_id_key(c.opening_transaction_id)))
    return chains
