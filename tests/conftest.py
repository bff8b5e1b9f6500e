"""
DualArb test configuration
==========================
Shared fixtures: a two-chain registry with fake addresses, a pair table
and settings. Nothing here touches a real network.
"""

import random
from decimal import Decimal

import pytest

from dualarb.config_loader import ChainRegistry, parse_pairs
from dualarb.settings import Settings

ROUTER_A = "0x" + "1" * 40
ROUTER_B = "0x" + "2" * 40
USDT_A = "0x" + "3" * 40
BTCB_A = "0x" + "4" * 40
USDT_B = "0x" + "5" * 40
WBTC_B = "0x" + "6" * 40


def chains_table():
    return {
        "1": {
            "name": "ChainA",
            "venue": "VenueA",
            "rpcEndpoint": "http://127.0.0.1:8545",
            "fallbackRpcEndpoints": ["http://127.0.0.1:8546"],
            "routerAddress": ROUTER_A,
            "nativeTokenSymbol": "AAA",
            "gasEstimate": "0.30",
            "tokens": {"USDT": USDT_A, "BTCB": BTCB_A},
        },
        "2": {
            "name": "ChainB",
            "venue": "VenueB",
            "rpcEndpoint": "http://127.0.0.1:9545",
            "routerAddress": ROUTER_B,
            "nativeTokenSymbol": "BBB",
            "gasType": "eip1559",
            "gasEstimate": "0.60",
            "tokens": {"USDT": USDT_B, "WBTC": WBTC_B},
            "decimals": {"USDT": 6, "WBTC": 8},
        },
    }


def pairs_table():
    return {
        "btc_usdt": {
            "label": "BTC/USDT",
            "chainA": 1,
            "chainB": 2,
            "base": {"1": "BTCB", "2": "WBTC"},
            "quote": "USDT",
            "tradingUnit": "1",
            "feeRate": "0.001",
            "initialBalances": {
                "1": {"base": "0.0523", "quote": "2450.67"},
                "2": {"base": "0.0847", "quote": "1823.92"},
            },
        },
    }


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def no_sleep():
    """Async sleep stub for the simulated executor."""
    return _no_sleep


@pytest.fixture
def chains_raw():
    return chains_table()


@pytest.fixture
def pairs_raw():
    return pairs_table()


@pytest.fixture
def registry():
    return ChainRegistry.from_dict(chains_table())


@pytest.fixture
def pairs(registry):
    return parse_pairs(pairs_table(), registry)


@pytest.fixture
def pair(pairs):
    return pairs["btc_usdt"]


@pytest.fixture
def settings():
    return Settings(gas_estimates={1: Decimal("0.30"), 2: Decimal("0.60")})


@pytest.fixture
def rng():
    return random.Random(1234)
