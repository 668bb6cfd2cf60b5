"""Error taxonomy for the chain engine.

Per-row problems (malformed records, unmatched closes, unknown types) are
recovered locally and only surface as counters.  Everything raised from
here that is not caught by the ledger loader aborts the run.
"""

from typing import Optional


class ChainEngineError(Exception):
    """Base class for chain engine failures."""


class MalformedTransactionError(ChainEngineError):
    """A ledger record is missing a field the engine cannot do without."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class LotInvariantError(ChainEngineError):
    """A lot queue reached an impossible state (fatal)."""


class LedgerReadError(ChainEngineError):
    """The transaction ledger could not be read (fatal)."""


class RebuildInProgressError(ChainEngineError):
    """Another rebuild currently holds the chain write lock."""


class ChainNotFoundError(ChainEngineError):
    """No chain exists with the requested id."""

    def __init__(self, chain_id: str):
        super().__init__(f"Chain {chain_id} not found")
        self.chain_id = chain_id
