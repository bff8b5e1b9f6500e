"""
Credential capability.

Swap executors never see a private key. They receive a TransactionSigner
that can only report its address and sign+submit a prepared transaction,
so a hardware or KMS backed signer can replace LocalKeySigner without
touching any business logic.
"""

import logging
from typing import Any, Dict, Optional, Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .network import NetworkManager

logger = logging.getLogger(__name__)


class TransactionSigner(Protocol):
    """Opaque signing capability for one wallet."""

    @property
    def address(self) -> str: ...

    async def sign_and_submit(self, network: NetworkManager, tx: Dict[str, Any]) -> str:
        """Sign tx and broadcast it on network. Returns the transaction hash."""
        ...


class LocalKeySigner:
    """Signs with an in-process eth_account key loaded once at startup."""

    def __init__(self, private_key: str):
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def __repr__(self) -> str:
        return f"LocalKeySigner({self.address})"

    @staticmethod
    def _get_raw_tx(signed: Any) -> Optional[bytes]:
        """Extract raw transaction bytes (eth-account version compatible)."""
        if hasattr(signed, "raw_transaction"):
            return signed.raw_transaction
        if hasattr(signed, "rawTransaction"):
            return signed.rawTransaction
        return None

    async def sign_and_submit(self, network: NetworkManager, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        raw_tx = self._get_raw_tx(signed)
        if raw_tx is None:
            raise ValueError("Could not extract raw transaction")
        tx_hash = await network.send_raw_transaction(raw_tx)
        logger.info(f"[{network.config.name}] broadcast {tx_hash} from {self.address}")
        return tx_hash
