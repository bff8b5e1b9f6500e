"""
Engine wiring tests. Configuration comes from temporary JSON files and
monkeypatched environment variables; quotes are stubbed.
"""

import json
import random
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dualarb.config_loader import ConfigLoader
from dualarb.engine import MODE_REAL, MODE_SIMULATED, build_engine, select_mode
from dualarb.errors import BelowThresholdError, ConfigValidationError
from dualarb.executor import RealSwapExecutor, SimulatedSwapExecutor
from dualarb.journal import InMemoryAuditSink, TradeJournal
from dualarb.ledger import ExecutionType
from dualarb.notifications import ARBITRAGE_EXECUTED
from dualarb.scheduler import PriceMonitor
from dualarb.settings import InMemorySettingsStore

# well-known development key, never funded on a real network
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

ENV_VARS = (
    "EXECUTION_MODE",
    "PRIVATE_KEY_A",
    "PRIVATE_KEY_B",
    "PRIVATE_KEY_1",
    "PRIVATE_KEY_2",
    "TRADE_HISTORY_FILE",
    "CHAINS_CONFIG",
    "PAIRS_CONFIG",
    "CHAINA_RPC_OVERRIDE",
)


@pytest.fixture
def loader(tmp_path, monkeypatch, chains_raw, pairs_raw):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    chains = tmp_path / "chains.json"
    pairs = tmp_path / "pairs.json"
    chains.write_text(json.dumps(chains_raw), encoding="utf-8")
    pairs.write_text(json.dumps(pairs_raw), encoding="utf-8")
    return ConfigLoader(str(chains), str(pairs), env_path=str(tmp_path / "missing.env"))


def stub_prices(engine, prices):
    async def get_quote(chain_id, token_in, token_out, amount_in=None):
        return SimpleNamespace(chain_id=chain_id, unit_price=Decimal(prices[chain_id]))

    engine.scanner.quote_provider = MagicMock()
    engine.scanner.quote_provider.get_quote = AsyncMock(side_effect=get_quote)


class TestSelectMode:

    def test_auto_without_keys_is_simulated(self):
        assert select_mode("auto", {1: TEST_KEY, 2: None}) == MODE_SIMULATED

    def test_auto_with_all_keys_is_real(self):
        assert select_mode("auto", {1: TEST_KEY, 2: TEST_KEY}) == MODE_REAL

    def test_simulated_ignores_keys(self):
        assert select_mode("simulated", {1: TEST_KEY, 2: TEST_KEY}) == MODE_SIMULATED

    def test_real_requires_every_key(self):
        with pytest.raises(ConfigValidationError):
            select_mode("real", {1: TEST_KEY, 2: ""})


class TestBuildEngine:

    def test_simulated_by_default(self, loader):
        engine = build_engine(loader)

        assert engine.mode == MODE_SIMULATED
        executors = engine.orchestrator.executors
        assert set(executors) == {1, 2}
        assert all(isinstance(e, SimulatedSwapExecutor) for e in executors.values())
        assert engine.orchestrator.signers == {}
        assert isinstance(engine.ledger.audit_sink, InMemoryAuditSink)
        assert set(engine.networks) == {1, 2}

    def test_real_mode_with_keys(self, loader, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY_A", TEST_KEY)
        monkeypatch.setenv("PRIVATE_KEY_2", TEST_KEY[2:])

        engine = build_engine(loader)

        assert engine.mode == MODE_REAL
        assert all(isinstance(e, RealSwapExecutor) for e in engine.orchestrator.executors.values())
        assert {s.address for s in engine.orchestrator.signers.values()} == {TEST_ADDRESS}
        assert TEST_KEY[2:] not in repr(engine.orchestrator.signers[1])

    def test_real_mode_missing_key(self, loader, monkeypatch):
        monkeypatch.setenv("EXECUTION_MODE", "real")
        monkeypatch.setenv("PRIVATE_KEY_A", TEST_KEY)
        with pytest.raises(ConfigValidationError):
            build_engine(loader)

    def test_trade_history_file(self, loader, monkeypatch, tmp_path):
        monkeypatch.setenv("TRADE_HISTORY_FILE", str(tmp_path / "history.csv"))
        engine = build_engine(loader)
        assert isinstance(engine.ledger.audit_sink, TradeJournal)
        assert (tmp_path / "history.csv").exists()

    def test_wallets_bootstrapped(self, loader):
        engine = build_engine(loader)
        balances = {w.id: w.quote_balance for w in engine.wallets()}
        assert balances == {"btc_usdt:1": Decimal("2450.67"), "btc_usdt:2": Decimal("1823.92")}

    def test_monitor_uses_engine_interval(self, loader):
        engine = build_engine(loader)
        monitor = engine.create_monitor()
        assert isinstance(monitor, PriceMonitor)
        assert monitor.interval == engine.scan_interval
        assert engine.create_monitor(2.5).interval == 2.5


class TestExecuteArbitrage:

    @pytest.fixture
    def engine(self, loader, no_sleep):
        notifier = MagicMock()
        engine = build_engine(loader, InMemorySettingsStore(), notifier=notifier)
        simulated = SimulatedSwapExecutor(failure_rate=0.0, rng=random.Random(7), sleep=no_sleep)
        engine.orchestrator.executors = {1: simulated, 2: simulated}
        return engine

    @pytest.mark.asyncio
    async def test_profitable_pair_executes(self, engine):
        stub_prices(engine, {1: "100", 2: "160.1"})

        record = await engine.execute_arbitrage("btc_usdt", ExecutionType.MANUAL)

        assert record.both_succeeded
        assert record.opportunity.buy_chain == 1
        events = [c.args for c in engine.notifier.publish.call_args_list if c.args[0] == ARBITRAGE_EXECUTED]
        assert events == [(ARBITRAGE_EXECUTED, record.to_dict())]
        assert engine.ledger.wallet("btc_usdt", 1).base_balance == Decimal("1.0523")
        assert len(engine.ledger.audit_sink) == 1

    @pytest.mark.asyncio
    async def test_notifier_failure_keeps_record(self, engine):
        def publish(event_type, payload):
            if event_type == ARBITRAGE_EXECUTED:
                raise ConnectionError("push transport closed")

        engine.notifier.publish.side_effect = publish
        stub_prices(engine, {1: "100", 2: "160.1"})

        record = await engine.execute_arbitrage("btc_usdt")

        assert record.both_succeeded
        assert len(engine.ledger.audit_sink) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_rejected(self, engine):
        stub_prices(engine, {1: "43125.45", 2: "43212.77"})

        with pytest.raises(BelowThresholdError):
            await engine.execute_arbitrage("btc_usdt")

        assert len(engine.ledger.audit_sink) == 0

    @pytest.mark.asyncio
    async def test_settings_edits_apply_to_next_execution(self, loader, no_sleep):
        store = InMemorySettingsStore({"minProfitFixed": "100"})
        engine = build_engine(loader, store, notifier=MagicMock())
        simulated = SimulatedSwapExecutor(failure_rate=0.0, rng=random.Random(7), sleep=no_sleep)
        engine.orchestrator.executors = {1: simulated, 2: simulated}
        stub_prices(engine, {1: "100", 2: "160.1"})

        with pytest.raises(BelowThresholdError):
            await engine.execute_arbitrage("btc_usdt")

        store.set("minProfitFixed", "10")
        record = await engine.execute_arbitrage("btc_usdt")
        assert record.both_succeeded

    @pytest.mark.asyncio
    async def test_close_disconnects_networks(self, engine):
        for network in engine.networks.values():
            network.disconnect = AsyncMock()

        async with engine:
            pass

        for network in engine.networks.values():
            network.disconnect.assert_awaited_once()
