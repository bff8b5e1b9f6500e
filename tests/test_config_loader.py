"""
Chain registry, pair table and environment config tests.
"""

import json
from decimal import Decimal

import pytest

from dualarb.config_loader import ChainRegistry, ConfigLoader, parse_pairs
from dualarb.errors import (
    ConfigValidationError,
    ErrorKind,
    UnknownTokenError,
    UnsupportedChainError,
)


class TestChainRegistry:

    def test_loads_chains(self, registry):
        assert registry.chain_ids == [1, 2]
        chain = registry.get(2)
        assert chain.name == "ChainB"
        assert chain.venue == "VenueB"
        assert chain.native_token == "BBB"
        assert chain.gas_config.type == "eip1559"
        assert chain.gas_estimate == Decimal("0.60")

    def test_rpc_urls_primary_first(self, registry):
        assert registry.get(1).rpc_urls == ["http://127.0.0.1:8545", "http://127.0.0.1:8546"]

    def test_token_lookup_is_case_insensitive(self, registry):
        assert registry.resolve_token(1, "usdt") == "0x" + "3" * 40

    def test_decimals_default_to_18(self, registry):
        assert registry.get(1).token_decimals("USDT") == 18
        assert registry.get(2).token_decimals("USDT") == 6

    def test_unknown_chain(self, registry):
        with pytest.raises(UnsupportedChainError) as exc:
            registry.get(999)
        assert exc.value.kind is ErrorKind.UNSUPPORTED_CHAIN

    def test_unknown_token(self, registry):
        with pytest.raises(UnknownTokenError) as exc:
            registry.resolve_token(1, "DOGE")
        assert exc.value.kind is ErrorKind.UNKNOWN_TOKEN

    def test_symbol_for_reverse_lookup(self, registry):
        assert registry.get(2).symbol_for("0x" + "6" * 40) == "WBTC"
        assert registry.get(2).symbol_for("0x" + "9" * 40) is None

    @pytest.mark.parametrize("missing", ["name", "rpcEndpoint", "routerAddress", "nativeTokenSymbol", "tokens"])
    def test_missing_required_key(self, chains_raw, missing):
        del chains_raw["1"][missing]
        with pytest.raises(ConfigValidationError):
            ChainRegistry.from_dict(chains_raw)

    @pytest.mark.parametrize("address", ["0x1234", "1" * 42, "0x" + "g" * 40, "0x" + "_1" * 20])
    def test_malformed_address(self, chains_raw, address):
        chains_raw["1"]["routerAddress"] = address
        with pytest.raises(ConfigValidationError):
            ChainRegistry.from_dict(chains_raw)

    def test_needs_two_chains(self, chains_raw):
        del chains_raw["2"]
        with pytest.raises(ConfigValidationError):
            ChainRegistry.from_dict(chains_raw)

    def test_rpc_override_replaces_endpoints(self, chains_raw):
        registry = ChainRegistry.from_dict(chains_raw, rpc_overrides={"CHAINA": ["http://a", "http://b"]})
        assert registry.get(1).rpc_urls == ["http://a", "http://b"]
        assert registry.get(2).rpc_urls == ["http://127.0.0.1:9545"]

    def test_third_chain_is_data_only(self, chains_raw):
        chains_raw["3"] = dict(chains_raw["2"], name="ChainC")
        registry = ChainRegistry.from_dict(chains_raw)
        assert len(registry) == 3
        assert 3 in registry


class TestPairs:

    def test_parse(self, pair):
        assert pair.label == "BTC/USDT"
        assert pair.chain_ids == (1, 2)
        assert pair.base_symbol(1) == "BTCB"
        assert pair.base_symbol(2) == "WBTC"
        assert pair.trading_unit == Decimal("1")
        assert pair.fee_rate == Decimal("0.001")
        assert pair.initial_balances[1] == (Decimal("0.0523"), Decimal("2450.67"))

    def test_unknown_symbol_rejected_at_load(self, registry, pairs_raw):
        pairs_raw["btc_usdt"]["base"]["2"] = "BTCB"
        with pytest.raises(UnknownTokenError):
            parse_pairs(pairs_raw, registry)

    def test_same_chain_rejected(self, registry, pairs_raw):
        pairs_raw["btc_usdt"]["chainB"] = 1
        with pytest.raises(ConfigValidationError):
            parse_pairs(pairs_raw, registry)

    def test_non_positive_unit_rejected(self, registry, pairs_raw):
        pairs_raw["btc_usdt"]["tradingUnit"] = "0"
        with pytest.raises(ConfigValidationError):
            parse_pairs(pairs_raw, registry)

    def test_fee_rate_default(self, registry, pairs_raw):
        del pairs_raw["btc_usdt"]["feeRate"]
        assert parse_pairs(pairs_raw, registry)["btc_usdt"].fee_rate == Decimal("0.001")


class TestConfigLoader:

    @pytest.fixture
    def loader(self, tmp_path, chains_raw, pairs_raw, monkeypatch):
        for name in ("PRIVATE_KEY_1", "PRIVATE_KEY_2", "PRIVATE_KEY_A", "PRIVATE_KEY_B",
                     "EXECUTION_MODE", "CHAINA_RPC_OVERRIDE", "CHAINB_RPC_OVERRIDE"):
            monkeypatch.delenv(name, raising=False)
        chains = tmp_path / "chains.json"
        pairs = tmp_path / "pairs.json"
        chains.write_text(json.dumps(chains_raw))
        pairs.write_text(json.dumps(pairs_raw))
        return ConfigLoader(chains_path=str(chains), pairs_path=str(pairs), env_path=str(tmp_path / ".env"))

    def test_loads_files(self, loader):
        assert loader.registry.chain_ids == [1, 2]
        assert list(loader.pairs) == ["btc_usdt"]

    def test_private_key_per_chain(self, loader, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY_2", "0xabc")
        assert loader.private_key_for(2) == "0xabc"
        assert loader.private_key_for(1) is None

    def test_private_key_positional_fallback(self, loader, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY_A", "0xaaa")
        monkeypatch.setenv("PRIVATE_KEY_B", "0xbbb")
        assert loader.private_key_for(1) == "0xaaa"
        assert loader.private_key_for(2) == "0xbbb"

    def test_runtime_defaults(self, loader, monkeypatch):
        for name in ("SWAP_DEADLINE_SECONDS", "CONFIRMATION_TIMEOUT", "SCAN_INTERVAL"):
            monkeypatch.delenv(name, raising=False)
        runtime = loader.runtime
        assert runtime.execution_mode == "auto"
        assert runtime.swap_deadline_seconds == 1200
        assert runtime.confirmation_timeout == 180.0
        assert runtime.scan_interval == 5.0

    def test_invalid_execution_mode(self, loader, monkeypatch):
        monkeypatch.setenv("EXECUTION_MODE", "yolo")
        with pytest.raises(ConfigValidationError):
            loader.runtime

    def test_rpc_override_from_env(self, loader, monkeypatch):
        monkeypatch.setenv("CHAINA_RPC_OVERRIDE", "http://x, http://y")
        assert loader.registry.get(1).rpc_urls == ["http://x", "http://y"]

    def test_missing_file(self, tmp_path):
        loader = ConfigLoader(chains_path=str(tmp_path / "nope.json"), env_path=str(tmp_path / ".env"))
        with pytest.raises(ConfigValidationError):
            loader.registry
