"""
Unit tests for the chain_graph module.

Tests the TransactionForest helper and the pure ``build_chains()`` function on the
output of real lot matching.
"""

import pytest
from datetime import date

from chainledger.models.chain import ChainRole
from chainledger.models.transaction import SecurityFamily
from chainledger.pipeline.chain_graph import TransactionForest, build_chains
from chainledger.pipeline.lot_matcher import match_lots
from tests.conftest import (
    classified_all,
    d,
    make_equity_transaction,
    make_option_transaction,
)


def _chains(*rows, family=SecurityFamily.EQUITY, symbol="XYZ", as_of=None):
    txs = classified_all(*rows)
    result = match_lots(symbol, family, txs, as_of=as_of)
    return build_chains(result.matches, result.lots, {t.id: t for t in txs})


# =====================================================================
# TransactionForest unit tests
# =====================================================================

class TestTransactionForest:
    def test_single_member(self):
        forest = TransactionForest()
        forest.add("5")
        assert forest.root("5") == "5"
        assert forest.groups() == {"5": ["5"]}

    def test_join_keeps_earliest_root(self):
        forest = TransactionForest()
        for tid in ("30", "4", "12"):
            forest.add(tid)
        forest.join("30", "12")
        forest.join("12", "4")
        assert forest.root("30") == "4"
        assert forest.groups() == {"4": ["4", "12", "30"]}

    def test_custom_order(self):
        order = {"late": 2, "early": 1}
        forest = TransactionForest(order=order.__getitem__)
        forest.add("late")
        forest.add("early")
        assert forest.join("late", "early") == "early"

    def test_disjoint_members_stay_apart(self):
        forest = TransactionForest()
        for tid in ("1", "2", "3"):
            forest.add(tid)
        assert len(forest.groups()) == 3

    def test_repeat_add_and_self_join(self):
        forest = TransactionForest()
        forest.add("1")
        forest.join("1", "1")
        forest.add("1")
        assert len(forest.groups()) == 1
        assert "1" in forest
        assert "2" not in forest


# =====================================================================
# build_chains()
# =====================================================================

class TestRoundTrips:
    def test_buy_then_two_sales_is_one_closed_chain(self):
        chains = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=100, amount=-1000.0),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-60, amount=720.0),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=-40, amount=600.0),
        )
        assert len(chains) == 1
        chain = chains[0]
        assert chain.is_closed
        assert chain.total_realized_amount == pytest.approx(320.0)
        assert chain.chain_start_date == d("2025-01-02")
        assert chain.chain_end_date == d("2025-01-04")
        assert chain.transaction_ids == ("1", "2", "3")
        assert chain.open_transaction_ids == ("1",)
        assert chain.close_transaction_ids == ("2", "3")

    def test_roles(self):
        chain = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=100),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-60),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=-40),
        )[0]
        assert chain.role_of("1") == ChainRole.OPENING
        assert chain.role_of("2") == ChainRole.INTERMEDIATE
        assert chain.role_of("3") == ChainRole.CLOSING

    def test_open_short_put_is_open_chain(self):
        chains = _chains(make_option_transaction(id="1", amount=150.0), family=SecurityFamily.OPTION)
        assert len(chains) == 1
        chain = chains[0]
        assert not chain.is_closed
        assert chain.chain_end_date is None
        assert chain.closing_transaction_id is None
        assert chain.total_realized_amount == 0
        assert chain.family == SecurityFamily.OPTION

    def test_partial_close_keeps_chain_open(self):
        chain = _chains(
            make_equity_transaction(id="1", quantity=100),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-60),
        )[0]
        assert not chain.is_closed
        assert chain.chain_end_date is None
        assert chain.role_of("2") == ChainRole.INTERMEDIATE


class TestConnectivity:
    def test_shared_close_joins_two_opens(self):
        """O1, O2 both funded C, so they belong to one chain."""
        chains = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=10),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=10),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=-15),
            make_equity_transaction(id="4", transaction_date="2025-01-05", quantity=-5),
        )
        assert len(chains) == 1
        assert chains[0].transaction_ids == ("1", "2", "3", "4")
        assert chains[0].is_closed
        assert chains[0].closing_transaction_id == "4"

    def test_independent_round_trips_are_separate_chains(self):
        chains = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=10),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-10),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=10),
            make_equity_transaction(id="4", transaction_date="2025-01-05", quantity=-10),
        )
        assert [c.transaction_ids for c in chains] == [("1", "2"), ("3", "4")]
        assert all(c.is_closed for c in chains)

    def test_new_open_after_closed_chain_starts_new_chain(self):
        base = [
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=100),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-100),
        ]
        before = _chains(*base)
        after = _chains(*base, make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=50))

        assert len(after) == 2
        assert after[0] == before[0]
        assert after[0].is_closed
        assert not after[1].is_closed
        assert after[1].transaction_ids == ("3",)

    def test_fully_unmatched_close_is_in_no_chain(self):
        chains = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=-10),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=10),
        )
        assert len(chains) == 1
        assert chains[0].transaction_ids == ("2",)

    def test_partially_unmatched_close_closes_the_chain(self):
        chain = _chains(
            make_equity_transaction(id="1", quantity=30),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-50),
        )[0]
        assert chain.is_closed
        assert chain.transaction_ids == ("1", "2")

    def test_every_transaction_in_at_most_one_chain(self):
        chains = _chains(
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=5),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-3),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=4),
            make_equity_transaction(id="4", transaction_date="2025-01-05", quantity=-6),
            make_equity_transaction(id="5", transaction_date="2025-01-06", quantity=8),
        )
        ids = [tid for c in chains for tid in c.transaction_ids]
        assert len(ids) == len(set(ids))


class TestChainIds:
    def test_id_derives_from_earliest_open(self):
        chain = _chains(
            make_equity_transaction(id="7", transaction_date="2025-01-02", quantity=10),
            make_equity_transaction(id="8", transaction_date="2025-01-03", quantity=-10),
        )[0]
        assert chain.chain_id == "XYZ_EQUITY_20250102_7"
        assert chain.opening_transaction_id == "7"

    def test_ids_stable_across_rebuilds(self):
        rows = [
            make_equity_transaction(id="1", transaction_date="2025-01-02", quantity=10),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=10),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=-15),
        ]
        first = [c.chain_id for c in _chains(*rows)]
        second = [c.chain_id for c in _chains(*reversed(rows))]
        assert first == second

    def test_chains_sorted_by_start_date(self):
        chains = _chains(
            make_equity_transaction(id="9", transaction_date="2025-01-02", quantity=10),
            make_equity_transaction(id="2", transaction_date="2025-01-03", quantity=-10),
            make_equity_transaction(id="3", transaction_date="2025-01-04", quantity=10),
        )
        assert [c.chain_start_date for c in chains] == [d("2025-01-02"), d("2025-01-04")]


class TestExpiration:
    def test_implicit_expiry_closes_chain_on_expiration_date(self):
        chain = _chains(
            make_option_transaction(id="1", amount=150.0, expiration="2025-02-21"),
            family=SecurityFamily.OPTION,
            as_of=date(2025, 3, 1),
        )[0]
        assert chain.is_closed
        assert chain.chain_end_date == d("2025-02-21")
        assert chain.closing_transaction_id is None
        assert chain.transaction_ids == ("1",)
        assert chain.total_realized_amount == pytest.approx(150.0)
        assert chain.role_of("1") == ChainRole.OPENING


class TestOptionSeries:
    def test_option_chain_id_names_the_contract(self):
        chain = _chains(make_option_transaction(id="1"), family=SecurityFamily.OPTION)[0]
        assert chain.chain_id == "XYZ_OPTION_PUT_20_20250221_20250102_1"
        assert chain.series == "PUT_20_20250221"
        assert chain.symbol == "XYZ"

    def test_cover_on_one_contract_leaves_the_other_open(self):
        chains = _chains(
            make_option_transaction(id="1", transaction_date="2025-01-02", amount=150.0),
            make_option_transaction(id="2", transaction_date="2025-01-03", option_type="CALL",
                                    strike=25.0, amount=200.0),
            make_option_transaction(id="3", transaction_date="2025-01-04", option_type="CALL",
                                    strike=25.0, transaction_type="Bought To Cover",
                                    quantity=1, amount=-50.0),
            family=SecurityFamily.OPTION,
        )
        by_open = {c.opening_transaction_id: c for c in chains}

        assert not by_open["1"].is_closed
        assert by_open["1"].transaction_ids == ("1",)
        assert by_open["2"].is_closed
        assert by_open["2"].transaction_ids == ("2", "3")
        assert by_open["2"].total_realized_amount == pytest.approx(150.0)
        assert by_open["2"].chain_id == "XYZ_OPTION_CALL_25_20250221_20250103_2"
