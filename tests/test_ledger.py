"""
Ledger tests: balance deltas and the audit trail.
"""

import logging
from decimal import Decimal

import pytest

from dualarb.errors import ErrorKind
from dualarb.executor import SwapResult
from dualarb.journal import InMemoryAuditSink
from dualarb.ledger import ExecutionType, Ledger, total_profit
from dualarb.scanner import evaluate_opportunity

D = Decimal
HASH = "0x" + "cd" * 32


def ok(chain_id):
    return SwapResult.success(chain_id, HASH)


def failed(chain_id, kind=ErrorKind.UNKNOWN):
    return SwapResult.failure(chain_id, kind, "failed")


@pytest.fixture
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def ledger(pairs, registry, sink):
    return Ledger.from_config(pairs, registry, sink)


class TestBootstrap:

    def test_wallets_from_initial_balances(self, ledger):
        wallet_a = ledger.wallet("btc_usdt", 1)
        assert wallet_a.id == "btc_usdt:1"
        assert wallet_a.venue == "VenueA"
        assert wallet_a.token_pair == "BTC/USDT"
        assert wallet_a.base_balance == D("0.0523")
        assert wallet_a.quote_balance == D("2450.67")
        assert ledger.wallet("btc_usdt", 2).quote_balance == D("1823.92")
        assert len(ledger.wallets()) == 2

    def test_missing_balances_default_to_zero(self, pairs_raw, registry, sink):
        from dualarb.config_loader import parse_pairs

        del pairs_raw["btc_usdt"]["initialBalances"]
        ledger = Ledger.from_config(parse_pairs(pairs_raw, registry), registry, sink)
        assert ledger.wallet("btc_usdt", 1).base_balance == 0
        assert ledger.wallet("btc_usdt", 2).quote_balance == 0


class TestCommit:

    def test_buy_and_sell_deltas(self, ledger, pair, settings):
        opportunity = evaluate_opportunity(pair, D("100"), D("160.1"), settings)

        wallet_a, wallet_b, record = ledger.commit(opportunity, ok(1), ok(2), D("2"))

        # chain 1 bought 2 base at 100, chain 2 sold 2 base at 160.1
        assert wallet_a.base_balance == D("0.0523") + 2
        assert wallet_a.quote_balance == D("2450.67") - 200
        assert wallet_b.base_balance == D("0.0847") - 2
        assert wallet_b.quote_balance == D("1823.92") + D("320.2")
        assert ledger.wallet("btc_usdt", 1) == wallet_a
        assert record.both_succeeded
        assert record.total_profit == (D("160.1") - D("100")) * 2 - opportunity.fee_estimate

    def test_realized_prices_win(self, ledger, pair, settings):
        opportunity = evaluate_opportunity(pair, D("100"), D("160.1"), settings)

        wallet_a, _, record = ledger.commit(
            opportunity, ok(1), ok(2), D("1"),
            realized_buy_price=D("101"), realized_sell_price=D("159"),
        )

        assert wallet_a.quote_balance == D("2450.67") - 101
        assert record.realized_buy_price == D("101")
        assert record.total_profit == D("58") - opportunity.fee_estimate

    def test_failed_leg_leaves_wallet(self, ledger, pair, settings):
        opportunity = evaluate_opportunity(pair, D("100"), D("160.1"), settings)
        before_a = ledger.wallet("btc_usdt", 1)

        wallet_a, wallet_b, record = ledger.commit(
            opportunity, failed(1, ErrorKind.DEADLINE_EXCEEDED), ok(2), D("1")
        )

        assert wallet_a is before_a
        assert wallet_b.base_balance == D("0.0847") - 1
        assert record.total_profit == 0
        assert record.failed_legs == [record.result_a]

    def test_every_attempt_is_recorded(self, ledger, pair, settings, sink):
        opportunity = evaluate_opportunity(pair, D("100"), D("160.1"), settings)

        ledger.commit(opportunity, failed(1), failed(2), D("1"), execution_type=ExecutionType.AUTO)
        ledger.commit(opportunity, ok(1), ok(2), D("1"))

        assert len(sink) == 2
        first, second = sink.records
        assert first.execution_type is ExecutionType.AUTO
        assert not first.both_succeeded
        assert second.execution_type is ExecutionType.MANUAL
        assert first.id != second.id

    def test_audit_sink_failure_keeps_record(self, pair, pairs, registry, settings, caplog):
        class FullDisk:
            def append(self, record):
                raise OSError("No space left on device")

        ledger = Ledger.from_config(pairs, registry, FullDisk())
        opportunity = evaluate_opportunity(pair, D("100"), D("160.1"), settings)

        with caplog.at_level(logging.ERROR, logger="dualarb.ledger"):
            wallet_a, wallet_b, record = ledger.commit(opportunity, ok(1), ok(2), D("1"))

        assert record.both_succeeded
        assert wallet_a.base_balance == D("0.0523") + 1
        assert ledger.wallet("btc_usdt", 2) == wallet_b
        assert "audit sink" in caplog.text

    def test_record_to_dict(self, ledger, pair, settings):
        opportunity = evaluate_opportunity(pair, D("160.1"), D("100"), settings)

        _, _, record = ledger.commit(opportunity, ok(1), failed(2, ErrorKind.SLIPPAGE_EXCEEDED), D("1"))
        data = record.to_dict()

        assert data["pairId"] == "btc_usdt"
        assert data["buyChain"] == 2
        assert data["sellChain"] == 1
        assert data["totalProfit"] == "0"
        assert data["resultA"]["txHash"] == HASH
        assert data["resultB"]["errorKind"] == ErrorKind.SLIPPAGE_EXCEEDED.value


def test_total_profit_zero_unless_both_succeed():
    args = (D("100"), D("110"), D("1"), D("0.1"))
    assert total_profit(ok(1), ok(2), *args) == D("9.9")
    assert total_profit(ok(1), failed(2), *args) == 0
    assert total_profit(failed(1), failed(2), *args) == 0
