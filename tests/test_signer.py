"""
LocalKeySigner tests with a throwaway development key.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from dualarb.signer import LocalKeySigner

TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def make_network():
    network = MagicMock()
    network.config.name = "ChainA"
    network.send_raw_transaction = AsyncMock(return_value="0x" + "12" * 32)
    return network


def legacy_tx():
    return {
        "to": "0x" + "1" * 40,
        "value": 0,
        "gas": 21000,
        "gasPrice": 5 * 10 ** 9,
        "nonce": 0,
        "chainId": 1,
        "data": b"",
    }


class TestLocalKeySigner:

    def test_address_with_or_without_prefix(self):
        assert LocalKeySigner(TEST_KEY).address == TEST_ADDRESS
        assert LocalKeySigner(TEST_KEY[2:]).address == TEST_ADDRESS

    def test_repr_hides_key(self):
        text = repr(LocalKeySigner(TEST_KEY))
        assert TEST_ADDRESS in text
        assert TEST_KEY[2:] not in text

    @pytest.mark.asyncio
    async def test_sign_and_submit(self, caplog):
        network = make_network()
        signer = LocalKeySigner(TEST_KEY)

        with caplog.at_level(logging.INFO, logger="dualarb.signer"):
            tx_hash = await signer.sign_and_submit(network, legacy_tx())

        assert tx_hash == "0x" + "12" * 32
        raw = network.send_raw_transaction.await_args.args[0]
        assert isinstance(raw, bytes) and len(raw) > 0
        assert TEST_KEY[2:] not in caplog.text

    def test_raw_tx_attribute_names(self):
        assert LocalKeySigner._get_raw_tx(MagicMock(spec=["raw_transaction"], raw_transaction=b"\x01")) == b"\x01"
        assert LocalKeySigner._get_raw_tx(MagicMock(spec=["rawTransaction"], rawTransaction=b"\x02")) == b"\x02"
        assert LocalKeySigner._get_raw_tx(object()) is None
