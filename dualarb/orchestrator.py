"""
Dual-chain orchestrator.

Runs the buy leg on the cheaper venue and the sell leg on the dearer one
concurrently, waits for both to finish and commits them through the
ledger. There is no cross-leg rollback and no early cancellation: each
leg is wallet-local and irreversible once broadcast.
"""

import asyncio
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Mapping, Optional, Tuple

from .config_loader import ChainRegistry, PairConfig
from .errors import BelowThresholdError, UnsupportedChainError
from .executor import (
    DEFAULT_DEADLINE_WINDOW,
    SwapExecutor,
    SwapRequest,
    SwapResult,
    classify_error,
    deadline_from_now,
    error_text,
)
from .ledger import ExecutionRecord, ExecutionType, Ledger
from .quotes import unit_price
from .scanner import ArbitrageOpportunity
from .settings import Settings
from .signer import TransactionSigner
from .threshold import min_profit_required

logger = logging.getLogger(__name__)


def to_raw_amount(amount: Decimal, decimals: int) -> int:
    """Whole-token Decimal -> integer token units, rounded down."""
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


class DualChainOrchestrator:
    """
    Execute(opportunity, executionType) -> ExecutionRecord

    executors maps chain_id to the strategy for that chain; the orchestrator
    does not know whether they are real or simulated.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        pairs: Mapping[str, PairConfig],
        executors: Mapping[int, SwapExecutor],
        settings_provider: Callable[[], Settings],
        ledger: Ledger,
        signers: Optional[Mapping[int, TransactionSigner]] = None,
        deadline_window: int = DEFAULT_DEADLINE_WINDOW,
    ):
        self.registry = registry
        self.pairs = pairs
        self.executors = executors
        self.settings_provider = settings_provider
        self.ledger = ledger
        self.signers = signers or {}
        self.deadline_window = deadline_window

    def _executor(self, chain_id: int) -> SwapExecutor:
        try:
            return self.executors[chain_id]
        except KeyError:
            raise UnsupportedChainError(f"No swap executor configured for chain {chain_id}") from None

    def build_requests(
        self,
        pair: PairConfig,
        opportunity: ArbitrageOpportunity,
        settings: Settings,
    ) -> Tuple[SwapRequest, SwapRequest]:
        """
        (buy, sell) requests sized by the pair's trading unit.

        Buy spends buy_price * unit of the quote token for the base token;
        sell spends unit of the base token for the quote token.
        """
        unit = pair.trading_unit
        deadline = deadline_from_now(self.deadline_window)

        def leg(chain_id: int, selling_base: bool, price: Decimal) -> SwapRequest:
            chain = self.registry.get(chain_id)
            base_symbol = pair.base_symbol(chain_id)
            base = chain.token_address(base_symbol)
            quote = chain.token_address(pair.quote_symbol)
            base_units = to_raw_amount(unit, chain.token_decimals(base_symbol))
            quote_units = to_raw_amount(price * unit, chain.token_decimals(pair.quote_symbol))
            return SwapRequest(
                chain_id=chain_id,
                router_address=chain.router_address,
                token_in=base if selling_base else quote,
                token_out=quote if selling_base else base,
                amount_in=base_units if selling_base else quote_units,
                slippage_bps=settings.slippage_bps,
                deadline=deadline,
                signer=self.signers.get(chain_id),
                quoted_amount_out=quote_units if selling_base else base_units,
            )

        buy = leg(opportunity.buy_chain, False, opportunity.buy_price)
        sell = leg(opportunity.sell_chain, True, opportunity.sell_price)
        return buy, sell

    def _realized_price(self, pair: PairConfig, request: SwapRequest, result: SwapResult, quoted: Decimal) -> Decimal:
        """Quote tokens per base token actually traded; the quoted price stands in without an amount_out."""
        if not result.succeeded or not result.amount_out:
            return quoted
        chain = self.registry.get(request.chain_id)
        base_decimals = chain.token_decimals(pair.base_symbol(request.chain_id))
        quote_decimals = chain.token_decimals(pair.quote_symbol)
        if request.token_out == chain.token_address(pair.base_symbol(request.chain_id)):
            # buy: quote spent / base received
            return unit_price(result.amount_out, request.amount_in, base_decimals, quote_decimals)
        # sell: quote received / base sold
        return unit_price(request.amount_in, result.amount_out, base_decimals, quote_decimals)

    @staticmethod
    async def _run_leg(executor: SwapExecutor, request: SwapRequest) -> SwapResult:
        try:
            return await executor.execute(request)
        except Exception as e:
            # executors report failures as results; anything escaping is still only this leg's failure
            logger.exception(f"[chain {request.chain_id}] executor raised")
            return SwapResult.failure(request.chain_id, classify_error(e), error_text(e))

    async def execute(
        self,
        opportunity: ArbitrageOpportunity,
        execution_type: ExecutionType = ExecutionType.MANUAL,
    ) -> ExecutionRecord:
        """
        Re-check the threshold, run both legs, commit.

        Raises BelowThresholdError, without touching either chain, when the
        estimated profit does not clear the current minimum.
        """
        settings = self.settings_provider()
        required = min_profit_required(settings, (opportunity.chain_a, opportunity.chain_b))
        if opportunity.estimated_profit < required:
            raise BelowThresholdError(
                f"{opportunity.pair_id}: estimated profit {opportunity.estimated_profit} "
                f"below required {required}"
            )

        pair = self.pairs[opportunity.pair_id]
        buy_executor = self._executor(opportunity.buy_chain)
        sell_executor = self._executor(opportunity.sell_chain)
        buy_request, sell_request = self.build_requests(pair, opportunity, settings)

        logger.info(
            f"{pair.label}: buying on chain {opportunity.buy_chain} at {opportunity.buy_price}, "
            f"selling on chain {opportunity.sell_chain} at {opportunity.sell_price} ({execution_type.value})"
        )

        buy_result, sell_result = await asyncio.gather(
            self._run_leg(buy_executor, buy_request),
            self._run_leg(sell_executor, sell_request),
        )

        realized_buy = self._realized_price(pair, buy_request, buy_result, opportunity.buy_price)
        realized_sell = self._realized_price(pair, sell_request, sell_result, opportunity.sell_price)

        if opportunity.buy_chain == opportunity.chain_a:
            result_a, result_b = buy_result, sell_result
        else:
            result_a, result_b = sell_result, buy_result

        _, _, record = self.ledger.commit(
            opportunity,
            result_a,
            result_b,
            pair.trading_unit,
            realized_buy_price=realized_buy,
            realized_sell_price=realized_sell,
            execution_type=execution_type,
        )
        return record
