"""Tests for the rebuild_chains command-line entry point."""

from scripts.rebuild_chains import main
from chainledger.services import chain_service
from tests.conftest import make_equity_transaction, make_option_transaction


def _seed(db):
    db.save_transactions([
        make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=10),
        make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-10, price=11.0),
        make_option_transaction(id="3", transaction_date="2025-01-02", symbol="ABC", expiration="2025-01-17"),
    ])


def test_rebuild_prints_counts(chain_db, capsys):
    _seed(chain_db)
    assert main(["--no-expire", "--workers", "2"]) == 0

    out = capsys.readouterr().out
    assert "Chain rebuild complete" in out
    assert "total_transactions" in out
    assert chain_service.list_symbols_with_chains() == ["ABC", "XYZ"]
    assert not chain_service.list_chains("ABC")[0]["is_closed"]


def test_as_of_expires_options(chain_db):
    _seed(chain_db)
    assert main(["--as-of", "2025-02-01"]) == 0
    assert chain_service.list_chains("ABC")[0]["is_closed"]


def test_rebuild_in_progress_exits_non_zero(chain_db):
    _seed(chain_db)
    chain_service._rebuild_lock.acquire()
    try:
        assert main([]) == 1
    finally:
        chain_service._rebuild_lock.release()
