"""
SQLAlchemy 2.0 declarative models for the chain ledger tables.

``transactions`` is the ledger as supplied by the ingestion side; the chain
engine only reads it.  The remaining tables are derived state and are
replaced wholesale by every rebuild.
"""

from datetime import datetime, date as date_type
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


# ---------------------------------------------------------------------------
# Base class with to_dict() for JSON serialization
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base with a generic to_dict() helper."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize all columns to a plain dict."""
        result = {}
        for col in self.__table__.columns:
            value = getattr(self, col.key)
            if isinstance(value, (datetime, date_type)):
                value = value.isoformat()
            result[col.key] = value
        return result


# ---------------------------------------------------------------------------
# Ledger (read-only for the engine)
# ---------------------------------------------------------------------------

class LedgerTransaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    transaction_date = Column(Date, nullable=True)
    symbol = Column(String, nullable=True)
    security_type = Column(String, nullable=True)  # EQUITY / OPTION, legacy EQ / OPTN
    transaction_type = Column(String, nullable=True)
    quantity = Column(Float, nullable=True)
    amount = Column(Float, nullable=True)
    price = Column(Float, nullable=True)
    strike = Column(Float, nullable=True)
    expiration = Column(Date, nullable=True)
    option_type = Column(String(4), nullable=True)  # PUT / CALL
    split_ratio = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_symbol_date", "symbol", "transaction_date"),
    )


# ---------------------------------------------------------------------------
# Derived chain state
# ---------------------------------------------------------------------------

class TransactionChain(Base):
    __tablename__ = "transaction_chains"

    chain_id = Column(String, primary_key=True)
    symbol = Column(String, nullable=False)
    security_family = Column(String, nullable=False)
    option_series = Column(String, nullable=True)  # e.g. PUT_20_20250221, NULL for equities
    chain_start_date = Column(Date, nullable=False)
    chain_end_date = Column(Date, nullable=True)  # date of the draining close, NULL while open
    last_activity_date = Column(Date, nullable=False)
    is_closed = Column(Boolean, default=False)
    transaction_count = Column(Integer, default=0)
    total_realized_amount = Column(Float, default=0.0)
    opening_transaction_id = Column(String, nullable=False)
    closing_transaction_id = Column(String, nullable=True)

    # relationships
    members = relationship(
        "ChainMember",
        back_populates="chain",
        cascade="all, delete-orphan",
        order_by="ChainMember.sequence_number",
    )

    __table_args__ = (
        Index("idx_transaction_chains_symbol", "symbol"),
        Index("idx_transaction_chains_start", "symbol", "chain_start_date"),
    )


class ChainMember(Base):
    __tablename__ = "chain_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_id = Column(String, ForeignKey("transaction_chains.chain_id", ondelete="CASCADE"), nullable=False)
    transaction_id = Column(String, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    role = Column(String(16), nullable=False)  # OPENING / CLOSING / INTERMEDIATE
    kind = Column(String(8), nullable=False)  # OPEN / CLOSE
    quantity = Column(Float, default=0.0)

    # relationships
    chain = relationship("TransactionChain", back_populates="members")

    __table_args__ = (
        UniqueConstraint("transaction_id"),
        Index("idx_chain_members_sequence", "chain_id", "sequence_number"),
    )


class LotMatchRecord(Base):
    __tablename__ = "lot_matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_id = Column(String, ForeignKey("transaction_chains.chain_id", ondelete="CASCADE"), nullable=False)
    open_transaction_id = Column(String, nullable=False)
    close_transaction_id = Column(String, nullable=True)  # NULL for implicit expiration
    quantity_matched = Column(Float, nullable=False)
    realized_amount = Column(Float, nullable=False)
    close_date = Column(Date, nullable=False)
    closing_type = Column(String(16), default="MANUAL")

    __table_args__ = (
        Index("idx_lot_matches_chain", "chain_id"),
        Index("idx_lot_matches_open", "open_transaction_id"),
    )


class UnmatchedCloseRecord(Base):
    __tablename__ = "unmatched_closes"

    transaction_id = Column(String, primary_key=True)
    symbol = Column(String, nullable=False)
    security_family = Column(String, nullable=False)
    close_date = Column(Date, nullable=False)
    unmatched_quantity = Column(Float, nullable=False)
    requested_quantity = Column(Float, nullable=False)


class ChainRun(Base):
    __tablename__ = "chain_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=False)
    as_of = Column(Date, nullable=True)  # option expiry cut-off, NULL when expiry was off
    total_transactions = Column(Integer, default=0)
    chained_transactions = Column(Integer, default=0)
    total_chains = Column(Integer, default=0)
    closed_chains = Column(Integer, default=0)
    open_chains = Column(Integer, default=0)
    equity_chains = Column(Integer, default=0)
    option_chains = Column(Integer, default=0)
    closed_chain_transactions = Column(Integer, default=0)
    equity_chain_transactions = Column(Integer, default=0)
    option_chain_transactions = Column(Integer, default=0)
    equity_transactions = Column(Integer, default=0)
    option_transactions = Column(Integer, default=0)
    unmatched_closes = Column(Integer, default=0)
    split_transactions = Column(Integer, default=0)
    neutral_transactions = Column(Integer, default=0)
    stock_splits_applied = Column(Integer, default=0)
    malformed_records = Column(Integer, default=0)
