"""Pydantic response models for the chain ledger API."""

from datetime import date
from pydantic import BaseModel
from typing import List, Optional


class ProcessChainsResponse(BaseModel):
    total_transactions: int
    equity_chains: int
    option_chains: int
    unmatched_closes: int
    split_transactions: int
    malformed_records: int = 0


class ChainStatisticsResponse(BaseModel):
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
    last_run_at: Optional[str] = None
    as_of: Optional[date] = None


class SymbolsResponse(BaseModel):
    symbols: List[str]


class ChainSummary(BaseModel):
    chain_id: str
    symbol: str
    security_family: str
    option_series: Optional[str] = None
    start_date: date
    end_date: date
    close_date: Optional[date] = None
    is_closed: bool
    transaction_count: int
    total_realized_amount: float


class ChainListResponse(BaseModel):
    symbol: str
    chains: List[ChainSummary]


class ChainTransaction(BaseModel):
    transaction_id: str
    sequence_number: int
    role: str
    kind: str
    chain_quantity: float
    transaction_date: Optional[date] = None
    symbol: Optional[str] = None
    security_type: Optional[str] = None
    transaction_type: Optional[str] = None
    quantity: Optional[float] = None
    amount: Optional[float] = None
    price: Optional[float] = None
    strike: Optional[float] = None
    expiration: Optional[date] = None
    option_type: Optional[str] = None
    description: Optional[str] = None


class ChainTransactionsResponse(BaseModel):
    chain_id: str
    transactions: List[ChainTransaction]
