"""
Swap Executor

Turns one SwapRequest into one SwapResult on a single chain. Two
interchangeable strategies:

- RealSwapExecutor: allowance check, conditional approve, quote re-fetch,
  slippage guard, swapExactTokensForTokens, confirmation wait.
- SimulatedSwapExecutor: randomized latency and failures, no chain calls.

Neither strategy raises. Every outcome, including configuration problems,
comes back as a SwapResult so a failing leg can never abort its sibling.
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from .errors import (
    EXECUTION_ERROR_KINDS,
    ArbitrageError,
    ConfigurationError,
    ErrorKind,
    InvalidSlippageError,
    UnsupportedChainError,
)
from .network import NetworkManager, TimeExhausted
from .quotes import QuoteProvider
from .signer import TransactionSigner
from .utils.abi_loader import get_erc20_abi, get_router_abi

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000
DEFAULT_DEADLINE_WINDOW = 1200  # seconds
DEFAULT_CONFIRMATION_TIMEOUT = 180.0  # seconds


class SwapStatus(Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class LegStage(Enum):
    """Stages of one leg, in execution order."""
    VALIDATE = "Validate"
    CHECK_ALLOWANCE = "CheckAllowance"
    APPROVE = "Approve"
    QUOTE = "Quote"
    COMPUTE_MIN_OUT = "ComputeMinOut"
    SUBMIT = "Submit"
    AWAIT_CONFIRMATION = "AwaitConfirmation"


@dataclass(frozen=True)
class SwapRequest:
    """
    One leg of an arbitrage.

    token_in / token_out are checksum addresses on chain_id. signer is an
    opaque capability; the simulated strategy ignores it. quoted_amount_out
    is the output expected at scan time, used only as the simulation anchor.
    """
    chain_id: int
    router_address: str
    token_in: str
    token_out: str
    amount_in: int
    slippage_bps: int
    deadline: int
    signer: Optional[TransactionSigner] = None
    quoted_amount_out: Optional[int] = None


@dataclass(frozen=True)
class SwapResult:
    """
    Terminal outcome of one leg.

    Exactly one of (tx_hash, error_kind) is set: a successful leg has a
    non-empty hash and no error kind, a failed leg has an empty hash and
    an error kind.
    """
    status: SwapStatus
    chain_id: int
    tx_hash: str = ""
    gas_used: Optional[int] = None
    amount_out: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    error_message: str = ""

    def __post_init__(self):
        if self.status is SwapStatus.SUCCESS:
            if not self.tx_hash or self.error_kind is not None:
                raise ValueError("successful SwapResult needs a tx_hash and no error_kind")
        elif self.tx_hash or self.error_kind is None:
            raise ValueError("failed SwapResult needs an error_kind and no tx_hash")

    @property
    def succeeded(self) -> bool:
        return self.status is SwapStatus.SUCCESS

    @classmethod
    def success(
        cls,
        chain_id: int,
        tx_hash: str,
        gas_used: Optional[int] = None,
        amount_out: Optional[int] = None,
    ) -> "SwapResult":
        return cls(
            status=SwapStatus.SUCCESS,
            chain_id=chain_id,
            tx_hash=tx_hash,
            gas_used=gas_used,
            amount_out=amount_out,
        )

    @classmethod
    def failure(cls, chain_id: int, kind: ErrorKind, message: str = "") -> "SwapResult":
        return cls(status=SwapStatus.FAILED, chain_id=chain_id, error_kind=kind, error_message=message)


# ============================================
# Pure helpers
# ============================================

def validate_slippage(slippage_bps: int) -> None:
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise InvalidSlippageError(f"slippageBps must be within [0, 10000], got {slippage_bps}")


def compute_min_out(expected_amount_out: int, slippage_bps: int) -> int:
    """expected * (10000 - bps) / 10000, integer floor division."""
    validate_slippage(slippage_bps)
    return expected_amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def deadline_from_now(window: int = DEFAULT_DEADLINE_WINDOW) -> int:
    return int(time.time()) + window


# Checked in order, so the more specific revert strings win over the
# generic "insufficient".
_ERROR_VOCABULARY: Tuple[Tuple[Tuple[str, ...], ErrorKind], ...] = (
    (("insufficient_output_amount", "slippage", "too little received"), ErrorKind.SLIPPAGE_EXCEEDED),
    (("expired", "deadline"), ErrorKind.DEADLINE_EXCEEDED),
    (("allowance", "transfer_from_failed"), ErrorKind.ALLOWANCE_INSUFFICIENT),
    (("insufficient",), ErrorKind.INSUFFICIENT_FUNDS),
    (("pair", "invalid_path"), ErrorKind.PAIR_NOT_FOUND),
)


def error_text(error: BaseException) -> str:
    """Readable message; web3 errors keep the revert reason in .message."""
    return str(getattr(error, "message", None) or error)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map an execution error to an ErrorKind.

    Typed errors keep their own kind; anything else is matched
    case-insensitively against the revert-reason vocabulary.
    """
    if isinstance(error, ArbitrageError):
        return error.kind
    if isinstance(error, TimeExhausted):
        return ErrorKind.DEADLINE_EXCEEDED

    message = error_text(error).lower()
    for needles, kind in _ERROR_VOCABULARY:
        if any(needle in message for needle in needles):
            return kind
    return ErrorKind.UNKNOWN


# ============================================
# Strategies
# ============================================

class SwapExecutor(ABC):
    """Chain-scoped swap strategy. execute() never raises."""

    @abstractmethod
    async def execute(self, request: SwapRequest) -> SwapResult:
        ...

    @staticmethod
    def _failed(request: SwapRequest, kind: ErrorKind, message: str, stage: LegStage) -> SwapResult:
        logger.warning(f"[chain {request.chain_id}] leg failed at {stage.value}: {kind.value} ({message})")
        return SwapResult.failure(request.chain_id, kind, message)


class RealSwapExecutor(SwapExecutor):
    """
    Signs and submits router swaps on one chain.

    Each stage that talks to the chain is a suspension point. Nothing is
    retried here: a broadcast transaction is awaited, never resubmitted.
    Receipts are awaited for confirmation_timeout seconds from submission;
    the swap deadline itself is enforced on chain by the router.
    """

    def __init__(
        self,
        network: NetworkManager,
        quote_provider: QuoteProvider,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_latency: float = 1.0,
    ):
        self.network = network
        self.quote_provider = quote_provider
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency

    async def _submit(self, signer: TransactionSigner, address: str, abi, fn_name: str, args) -> str:
        gas = await self.network.get_gas_params()
        nonce = await self.network.get_nonce(signer.address)
        tx = await self.network.build_transaction(
            address,
            abi,
            fn_name,
            args,
            {"from": signer.address, "nonce": nonce, **gas.to_tx_params()},
        )
        return await signer.sign_and_submit(self.network, tx)

    async def _approve(self, request: SwapRequest) -> None:
        tx_hash = await self._submit(
            request.signer,
            request.token_in,
            get_erc20_abi(),
            "approve",
            [request.router_address, request.amount_in],
        )
        logger.info(f"[{self.network.config.name}] approve submitted: {tx_hash}")
        receipt = await self.network.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.confirmation_timeout,
            poll_latency=self.poll_latency,
        )
        if receipt["status"] != 1:
            raise ArbitrageError(f"approve reverted in {tx_hash}", kind=ErrorKind.ALLOWANCE_INSUFFICIENT)

    async def execute(self, request: SwapRequest) -> SwapResult:
        stage = LegStage.VALIDATE
        try:
            validate_slippage(request.slippage_bps)
            if request.chain_id != self.network.chain_id:
                raise UnsupportedChainError(
                    f"executor for chain {self.network.chain_id} got a request for chain {request.chain_id}"
                )
            if request.signer is None:
                raise ConfigurationError(f"no signer configured for chain {request.chain_id}")
            signer = request.signer

            stage = LegStage.CHECK_ALLOWANCE
            logger.debug(f"[{self.network.config.name}] {stage.value}")
            allowance = await self.network.call_function(
                request.token_in, get_erc20_abi(), "allowance", signer.address, request.router_address
            )

            if allowance < request.amount_in:
                stage = LegStage.APPROVE
                logger.debug(f"[{self.network.config.name}] {stage.value}: allowance {allowance} < {request.amount_in}")
                await self._approve(request)

            stage = LegStage.QUOTE
            logger.debug(f"[{self.network.config.name}] {stage.value}")
            expected_out = await self.quote_provider.get_amount_out(
                request.chain_id, request.token_in, request.token_out, request.amount_in
            )

            stage = LegStage.COMPUTE_MIN_OUT
            min_out = compute_min_out(expected_out, request.slippage_bps)
            logger.debug(f"[{self.network.config.name}] {stage.value}: expected {expected_out}, min {min_out}")

            stage = LegStage.SUBMIT
            if request.deadline <= time.time():
                raise ArbitrageError("deadline passed before submission", kind=ErrorKind.DEADLINE_EXCEEDED)
            tx_hash = await self._submit(
                signer,
                request.router_address,
                get_router_abi(),
                "swapExactTokensForTokens",
                [
                    request.amount_in,
                    min_out,
                    [request.token_in, request.token_out],
                    signer.address,
                    request.deadline,
                ],
            )
            logger.info(f"[{self.network.config.name}] swap submitted: {tx_hash}")

            stage = LegStage.AWAIT_CONFIRMATION
            receipt = await self.network.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.poll_latency,
            )

        except TimeExhausted as e:
            # An approval that never confirms leaves the router without allowance.
            kind = ErrorKind.ALLOWANCE_INSUFFICIENT if stage is LegStage.APPROVE else ErrorKind.DEADLINE_EXCEEDED
            return self._failed(request, kind, error_text(e), stage)
        except Exception as e:
            return self._failed(request, classify_error(e), error_text(e), stage)

        if receipt["status"] != 1:
            return self._failed(request, ErrorKind.UNKNOWN, f"swap reverted in {tx_hash}", stage)

        return SwapResult.success(
            chain_id=request.chain_id,
            tx_hash=tx_hash,
            gas_used=receipt.get("gasUsed"),
            amount_out=expected_out,
        )


class SimulatedSwapExecutor(SwapExecutor):
    """
    Offline strategy with the same result shape as RealSwapExecutor.

    Sleeps for a random latency, fails with probability failure_rate using
    the execution-error vocabulary, and otherwise returns a synthetic hash,
    gas figure and an amount_out within +/-0.5% of the anchor (the quoted
    output if present, else amount_in).
    """

    def __init__(
        self,
        failure_rate: float = 0.05,
        latency_range: Tuple[float, float] = (1.0, 3.0),
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be within [0, 1]")
        self.failure_rate = failure_rate
        self.latency_range = latency_range
        self.rng = rng or random.Random()
        self.sleep = sleep

    async def execute(self, request: SwapRequest) -> SwapResult:
        try:
            validate_slippage(request.slippage_bps)
        except InvalidSlippageError as e:
            return self._failed(request, e.kind, str(e), LegStage.VALIDATE)

        await self.sleep(self.rng.uniform(*self.latency_range))

        if self.rng.random() < self.failure_rate:
            kind = self.rng.choice(EXECUTION_ERROR_KINDS)
            return self._failed(request, kind, f"simulated {kind.value}", LegStage.AWAIT_CONFIRMATION)

        anchor = request.quoted_amount_out if request.quoted_amount_out is not None else request.amount_in
        tx_hash = "0x" + format(self.rng.getrandbits(256), "064x")
        logger.info(f"[chain {request.chain_id}] simulated swap: {tx_hash}")
        return SwapResult.success(
            chain_id=request.chain_id,
            tx_hash=tx_hash,
            gas_used=21000 + self.rng.randint(0, 200000),
            amount_out=anchor * self.rng.randint(9950, 10050) // BPS_DENOMINATOR,
        )
