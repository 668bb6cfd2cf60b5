"""
Shared pytest fixtures and ledger record factory helpers for chain ledger tests.

Each test gets a fresh temporary SQLite database (auto-cleaned by pytest).
"""

import pytest
from datetime import date

from chainledger.database import engine as sa_engine
from chainledger.database.db_manager import DatabaseManager
from chainledger.models.transaction import Transaction
from chainledger.pipeline.classifier import classify


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db(tmp_path):
    """Temporary SQLite database, fully initialized and auto-cleaned."""
    db_manager = DatabaseManager(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    db_manager.initialize_database()
    yield db_manager
    sa_engine.dispose_engine()


@pytest.fixture
def chain_db(db, monkeypatch):
    """Temporary database wired into chain_service, with rebuilds run inline."""
    from chainledger.services import chain_service

    monkeypatch.setattr(chain_service, 'db', db)
    monkeypatch.setattr(chain_service, 'CHAIN_MATCH_WORKERS', 1)
    monkeypatch.setattr(chain_service, 'AUTO_EXPIRE_OPTIONS', False)
    return db


# ---------------------------------------------------------------------------
# Ledger record factory helpers
# ---------------------------------------------------------------------------

def make_equity_transaction(
    *,
    id="1",
    transaction_date="2025-01-02",
    symbol="XYZ",
    security_type="EQUITY",
    transaction_type=None,
    quantity=100,
    amount=None,
    price=10.0,
    description=None,
):
    """Build a ledger row for a stock trade.

    Positive quantity is a buy, negative a sale.  Amount defaults to the
    signed cash effect of quantity * price.
    """
    if transaction_type is None:
        transaction_type = "Bought" if quantity > 0 else "Sold"
    if amount is None:
        amount = -quantity * price
    return {
        "id": id,
        "transaction_date": transaction_date,
        "symbol": symbol,
        "security_type": security_type,
        "transaction_type": transaction_type,
        "quantity": quantity,
        "amount": amount,
        "price": price,
        "description": description or f"{transaction_type} {abs(quantity)} {symbol}",
    }


def make_option_transaction(
    *,
    id="1",
    transaction_date="2025-01-02",
    symbol="XYZ",
    security_type="OPTION",
    transaction_type="Sold Short",
    quantity=-1,
    amount=150.0,
    price=1.50,
    strike=20.0,
    expiration="2025-02-21",
    option_type="PUT",
    description=None,
):
    """Build a ledger row for an option event (defaults: one short put)."""
    return {
        "id": id,
        "transaction_date": transaction_date,
        "symbol": symbol,
        "security_type": security_type,
        "transaction_type": transaction_type,
        "quantity": quantity,
        "amount": amount,
        "price": price,
        "strike": strike,
        "expiration": expiration,
        "option_type": option_type,
        "description": description or f"{transaction_type} {abs(quantity)} {symbol} {option_type} {strike}",
    }


def make_split_transaction(
    *,
    id="1",
    transaction_date="2025-01-02",
    symbol="XYZ",
    quantity=0,
    split_ratio=None,
    transaction_type="Split",
):
    """Build a ledger row for a stock split.

    ``quantity`` is the share delta the split produced; ``split_ratio`` is
    new units per old unit when the broker reports it.
    """
    return {
        "id": id,
        "transaction_date": transaction_date,
        "symbol": symbol,
        "security_type": "EQUITY",
        "transaction_type": transaction_type,
        "quantity": quantity,
        "amount": 0.0,
        "split_ratio": split_ratio,
        "description": f"{transaction_type} {symbol}",
    }


def classified(record):
    """Parse and classify one ledger row."""
    return classify(Transaction.from_record(record))


def classified_all(*records):
    return [classified(r) for r in records]


def d(text):
    """ISO date string -> date"""
    return date.fromisoformat(text)
