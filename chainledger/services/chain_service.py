"""Chain service: full chain rebuilds and the read queries over their results."""

import threading
from dataclasses import asdict, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from chainledger.database.models import (
    ChainMember,
    ChainRun,
    LedgerTransaction,
    LotMatchRecord,
    TransactionChain,
    UnmatchedCloseRecord,
)
from chainledger.dependencies import AUTO_EXPIRE_OPTIONS, CHAIN_MATCH_WORKERS, db
from chainledger.models.chain import Chain, ChainStatistics
from chainledger.models.errors import ChainNotFoundError, RebuildInProgressError
from chainledger.models.transaction import ClassifiedTransaction, TransactionKind
from chainledger.pipeline.orchestrator import PipelineResult, reprocess
from chainledger.services.ledger_service import load_ledger

# Only one rebuild may replace the chain tables at a time
_rebuild_lock = threading.Lock()

_STAT_FIELDS = [f.name for f in fields(ChainStatistics)]


def is_rebuild_running() -> bool:
    return _rebuild_lock.locked()


# ---------------------------------------------------------------------------
# Rebuild
# ---------------------------------------------------------------------------

def process_chains(
    as_of: Optional[date] = None,
    expire_options: Optional[bool] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, int]:
    """Rebuild every chain from the full ledger and replace the stored chain state.

    Args:
        as_of: Expiration cut-off for open option lots, stored with the run.
               Reruns over an unchanged ledger match only for the same as_of.
               Defaults to today when option expiry is enabled.
        expire_options: Override CHAIN_AUTO_EXPIRE_OPTIONS for this run. An
                        explicit as_of turns expiry on unless this is False.
        max_workers: Override CHAIN_MATCH_WORKERS for this run.

    Returns:
        The run counts: total_transactions, equity_chains, option_chains,
        unmatched_closes, split_transactions, malformed_records.

    Raises:
        RebuildInProgressError: another rebuild holds the write lock.
        LedgerReadError / LotInvariantError: the run was aborted, nothing was written.
    """
    if not _rebuild_lock.acquire(blocking=False):
        raise RebuildInProgressError("A chain rebuild is already in progress")

    try:
        started_at = datetime.now()
        if expire_options is None:
            expire_options = as_of is not None or AUTO_EXPIRE_OPTIONS
        if not expire_options:
            as_of = None
        elif as_of is None:
            as_of = date.today()
        workers = max_workers if max_workers is not None else CHAIN_MATCH_WORKERS

        logger.info(f"[CHAINS] Starting rebuild (workers={workers}, expire_as_of={as_of})")
        records = load_ledger(db)
        result = reprocess(records, max_workers=workers, as_of=as_of)

        _replace_chain_state(result, started_at, as_of)

        summary = result.summary()
        logger.info(f"[CHAINS] Rebuild complete: {summary}")
        return summary
    except Exception:
        logger.exception("[CHAINS] Rebuild failed, previous chain state left in place")
        raise
    finally:
        _rebuild_lock.release()


def _member_quantity(chain: Chain, ctx: ClassifiedTransaction) -> float:
    """Units a transaction contributed to this chain"""
    if ctx.kind == TransactionKind.OPEN:
        return ctx.quantity
    return sum(m.quantity_matched for m in chain.matches if m.close_transaction_id == ctx.id)


def _chain_rows(chain: Chain, tx_by_id: Dict[str, ClassifiedTransaction]) -> List[Any]:
    """ORM rows for one chain: summary, members, then matches."""
    last_activity = max(
        [tx_by_id[tid].date for tid in chain.transaction_ids]
        + [m.close_date for m in chain.matches]
    )
    rows: List[Any] = [TransactionChain(
        chain_id=chain.chain_id,
        symbol=chain.symbol,
        security_family=chain.family.value,
        option_series=chain.series,
        chain_start_date=chain.chain_start_date,
        chain_end_date=chain.chain_end_date,
        last_activity_date=last_activity,
        is_closed=chain.is_closed,
        transaction_count=chain.transaction_count,
        total_realized_amount=round(chain.total_realized_amount, 6),
        opening_transaction_id=chain.opening_transaction_id,
        closing_transaction_id=chain.closing_transaction_id,
    )]

    for seq, tid in enumerate(chain.transaction_ids):
        ctx = tx_by_id[tid]
        rows.append(ChainMember(
            chain_id=chain.chain_id,
            transaction_id=tid,
            sequence_number=seq,
            role=chain.role_of(tid).value,
            kind=ctx.kind.value,
            quantity=_member_quantity(chain, ctx),
        ))

    for m in chain.matches:
        rows.append(LotMatchRecord(
            chain_id=chain.chain_id,
            open_transaction_id=m.open_transaction_id,
            close_transaction_id=m.close_transaction_id,
            quantity_matched=m.quantity_matched,
            realized_amount=m.realized_amount,
            close_date=m.close_date,
            closing_type=m.closing_type,
        ))
    return rows


def _replace_chain_state(result: PipelineResult, started_at: datetime, as_of: Optional[date]) -> None:
    """Swap the stored chain state for this run's in one database transaction."""
    tx_by_id = {ctx.id: ctx for ctx in result.transactions}

    with db.get_session() as session:
        session.query(LotMatchRecord).delete()
        session.query(ChainMember).delete()
        session.query(UnmatchedCloseRecord).delete()
        session.query(TransactionChain).delete()

        for chain in result.chains:
            rows = _chain_rows(chain, tx_by_id)
            session.add(rows[0])
            session.flush()
            session.add_all(rows[1:])

        for uc in result.unmatched_closes:
            session.add(UnmatchedCloseRecord(
                transaction_id=uc.transaction_id,
                symbol=uc.symbol,
                security_family=uc.family.value,
                close_date=uc.close_date,
                unmatched_quantity=uc.unmatched_quantity,
                requested_quantity=uc.requested_quantity,
            ))

        session.add(ChainRun(
            started_at=started_at,
            finished_at=datetime.now(),
            as_of=as_of,
            **asdict(result.statistics),
        ))

    logger.info(
        f"[CHAINS] Stored {len(result.chains)} chains, "
        f"{len(result.matches)} matches, {len(result.unmatched_closes)} unmatched closes"
    )


# ---------------------------------------------------------------------------
# Reads (last committed snapshot)
# ---------------------------------------------------------------------------

def get_chain_statistics() -> Dict[str, Any]:
    """Counters and expiry cut-off of the most recent successful rebuild, all zero before the first."""
    with db.get_session() as session:
        run = session.query(ChainRun).order_by(ChainRun.id.desc()).first()
        if run is None:
            stats = asdict(ChainStatistics())
            stats["last_run_at"] = None
            stats["as_of"] = None
            return stats

        stats = {name: getattr(run, name) or 0 for name in _STAT_FIELDS}
        stats["last_run_at"] = run.finished_at.isoformat()
        stats["as_of"] = run.as_of.isoformat() if run.as_of else None
        return stats


def list_symbols_with_chains() -> List[str]:
    with db.get_session() as session:
        rows = session.query(TransactionChain.symbol).distinct().order_by(TransactionChain.symbol.asc()).all()
        return [r[0] for r in rows]


def list_chains(symbol: str) -> List[Dict[str, Any]]:
    """Chain summaries for one symbol, oldest first."""
    symbol = symbol.strip().upper()
    with db.get_session() as session:
        chains = session.query(TransactionChain).filter(
            TransactionChain.symbol == symbol,
        ).order_by(
            TransactionChain.chain_start_date.asc(),
            TransactionChain.chain_id.asc(),
        ).all()

        return [
            {
                "chain_id": c.chain_id,
                "symbol": c.symbol,
                "security_family": c.security_family,
                "option_series": c.option_series,
                "start_date": c.chain_start_date,
                "end_date": c.last_activity_date,
                "close_date": c.chain_end_date if c.is_closed else None,
                "is_closed": bool(c.is_closed),
                "transaction_count": c.transaction_count,
                "total_realized_amount": c.total_realized_amount,
            }
            for c in chains
        ]


def get_chain_transactions(chain_id: str) -> List[Dict[str, Any]]:
    """Member transactions of one chain in (date, id) order, each with its role.

    Raises ChainNotFoundError for an unknown chain id.
    """
    with db.get_session() as session:
        exists = session.query(TransactionChain.chain_id).filter(
            TransactionChain.chain_id == chain_id,
        ).first()
        if exists is None:
            raise ChainNotFoundError(chain_id)

        rows = session.query(ChainMember, LedgerTransaction).outerjoin(
            LedgerTransaction, ChainMember.transaction_id == LedgerTransaction.id,
        ).filter(
            ChainMember.chain_id == chain_id,
        ).order_by(ChainMember.sequence_number.asc()).all()

        result = []
        for member, txn in rows:
            if txn is None:
                # Ledger row removed since the last rebuild
                logger.warning(f"Chain {chain_id} member {member.transaction_id} missing from ledger")
            result.append({
                "transaction_id": member.transaction_id,
                "sequence_number": member.sequence_number,
                "role": member.role,
                "kind": member.kind,
                "chain_quantity": member.quantity,
                "transaction_date": txn.transaction_date if txn else None,
                "symbol": txn.symbol if txn else None,
                "security_type": txn.security_type if txn else None,
                "transaction_type": txn.transaction_type if txn else None,
                "quantity": txn.quantity if txn else None,
                "amount": txn.amount if txn else None,
                "price": txn.price if txn else None,
                "strike": txn.strike if txn else None,
                "expiration": txn.expiration if txn else None,
                "option_type": txn.option_type if txn else None,
                "description": txn.description if txn else None,
            })
        return result
