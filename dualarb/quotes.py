"""
Router quote provider.

Reads constant-product quotes from a Uniswap V2 compatible router
(getAmountsOut) and derives a unit price with 8-decimal truncated
fixed-point arithmetic. Read-only: never signs or submits anything.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3RPCError

from .config_loader import ChainRegistry
from .errors import ErrorKind, QuoteUnavailableError, UnsupportedChainError
from .network import NetworkManager

logger = logging.getLogger(__name__)

# getAmountsOut(uint256,address[])
GET_AMOUNTS_OUT_SELECTOR = bytes(Web3.keccak(text="getAmountsOut(uint256,address[])")[:4])

PRICE_DECIMALS = 8
PRICE_SCALE = 10 ** PRICE_DECIMALS


@dataclass(frozen=True)
class Quote:
    """A single router quote. Value object, never mutated."""
    chain_id: int
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    unit_price: Decimal


def unit_price(amount_in: int, amount_out: int, decimals_in: int = 18, decimals_out: int = 18) -> Decimal:
    """
    amount_out / amount_in in whole-token terms, truncated to 8 decimals.

    Pure integer division so the price is never rounded up.
    """
    if amount_in <= 0:
        raise ValueError("amount_in must be positive")
    scaled = (amount_out * 10 ** decimals_in * PRICE_SCALE) // (amount_in * 10 ** decimals_out)
    return Decimal(scaled).scaleb(-PRICE_DECIMALS)


def encode_get_amounts_out(amount_in: int, path: Sequence[str]) -> bytes:
    return GET_AMOUNTS_OUT_SELECTOR + encode(
        ["uint256", "address[]"],
        [amount_in, [Web3.to_checksum_address(a) for a in path]],
    )


class QuoteProvider:
    """
    Quotes token pairs on the router of each configured chain.

    Configuration problems (UnsupportedChainError, UnknownTokenError) are
    raised before any network call. Transport failures surface as
    RpcUnavailableError from the network layer, so callers can tell the
    retryable case apart.
    """

    def __init__(self, registry: ChainRegistry, networks: Mapping[int, NetworkManager]):
        self.registry = registry
        self.networks = networks

    def _network(self, chain_id: int) -> NetworkManager:
        self.registry.get(chain_id)
        try:
            return self.networks[chain_id]
        except KeyError:
            raise UnsupportedChainError(f"No network client for chain {chain_id}") from None

    async def get_amount_out(self, chain_id: int, token_in: str, token_out: str, amount_in: int) -> int:
        """Router output for the two-hop path [token_in, token_out] (raw units)."""
        chain = self.registry.get(chain_id)
        network = self._network(chain_id)

        data = encode_get_amounts_out(amount_in, [token_in, token_out])
        try:
            raw = await network.call_contract(chain.router_address, data)
            (amounts,) = decode(["uint256[]"], bytes(raw))
        except ContractLogicError as e:
            raise QuoteUnavailableError(
                f"{chain.venue}: getAmountsOut reverted for {token_in} -> {token_out}: {e}",
                kind=ErrorKind.PAIR_NOT_FOUND,
            ) from e
        except DecodingError as e:
            raise QuoteUnavailableError(
                f"{chain.venue}: malformed getAmountsOut response: {e}",
                kind=ErrorKind.PAIR_NOT_FOUND,
            ) from e
        except Web3RPCError as e:
            raise QuoteUnavailableError(f"{chain.venue}: getAmountsOut rejected by node: {e}") from e

        if len(amounts) < 2:
            raise QuoteUnavailableError(
                f"{chain.venue}: getAmountsOut returned {len(amounts)} amounts",
                kind=ErrorKind.PAIR_NOT_FOUND,
            )
        return int(amounts[1])

    async def get_quote(
        self,
        chain_id: int,
        token_in_symbol: str,
        token_out_symbol: str,
        amount_in: Optional[int] = None,
    ) -> Quote:
        """
        Quote token_in -> token_out on chain_id.

        amount_in defaults to exactly one whole token_in.
        """
        chain = self.registry.get(chain_id)
        token_in = chain.token_address(token_in_symbol)
        token_out = chain.token_address(token_out_symbol)
        decimals_in = chain.token_decimals(token_in_symbol)
        decimals_out = chain.token_decimals(token_out_symbol)

        if amount_in is None:
            amount_in = 10 ** decimals_in

        amount_out = await self.get_amount_out(chain_id, token_in, token_out, amount_in)
        price = unit_price(amount_in, amount_out, decimals_in, decimals_out)

        logger.debug(
            f"{chain.venue} quote {token_in_symbol}->{token_out_symbol}: "
            f"{amount_in} -> {amount_out} (price {price})"
        )

        return Quote(
            chain_id=chain_id,
            token_in=token_in_symbol.upper(),
            token_out=token_out_symbol.upper(),
            amount_in=amount_in,
            amount_out=amount_out,
            unit_price=price,
        )
