"""
Dual-venue price scanner.

Quotes one base token unit on both chains of a pair concurrently and
turns the two prices into an ArbitrageOpportunity using the shared
threshold evaluator. Read-only: a scan never submits anything.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config_loader import ChainRegistry, PairConfig
from .errors import QuoteUnavailableError, RpcUnavailableError
from .notifications import ARBITRAGE_STATUS, Notifier
from .quotes import QuoteProvider
from .settings import Settings, ThresholdMode
from .threshold import estimate_profit, min_profit_required

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Snapshot of one pair across its two venues.

    spread = price_b - price_a. Recomputed on every scan, never mutated.
    """
    pair_id: str
    chain_a: int
    chain_b: int
    price_a: Decimal
    price_b: Decimal
    spread: Decimal
    fee_estimate: Decimal
    estimated_profit: Decimal
    min_profit_required: Decimal
    threshold_mode: ThresholdMode
    profitable: bool
    trading_unit: Decimal
    timestamp: float
    drift_a: Decimal = Decimal("0")
    drift_b: Decimal = Decimal("0")

    @property
    def buy_chain(self) -> int:
        """Chain of the cheaper venue."""
        return self.chain_a if self.price_a <= self.price_b else self.chain_b

    @property
    def sell_chain(self) -> int:
        return self.chain_b if self.buy_chain == self.chain_a else self.chain_a

    @property
    def buy_price(self) -> Decimal:
        return min(self.price_a, self.price_b)

    @property
    def sell_price(self) -> Decimal:
        return max(self.price_a, self.price_b)

    def price_on(self, chain_id: int) -> Decimal:
        return self.price_a if chain_id == self.chain_a else self.price_b

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pairId": self.pair_id,
            "chainA": self.chain_a,
            "chainB": self.chain_b,
            "priceA": str(self.price_a),
            "priceB": str(self.price_b),
            "spread": str(self.spread),
            "feeEstimate": str(self.fee_estimate),
            "estimatedProfit": str(self.estimated_profit),
            "minProfitRequired": str(self.min_profit_required),
            "thresholdMode": self.threshold_mode.value,
            "profitable": self.profitable,
            "driftA": str(self.drift_a),
            "driftB": str(self.drift_b),
            "timestamp": self.timestamp,
        }


def evaluate_opportunity(
    pair: PairConfig,
    price_a: Decimal,
    price_b: Decimal,
    settings: Settings,
    drift: Tuple[Decimal, Decimal] = (Decimal("0"), Decimal("0")),
    timestamp: Optional[float] = None,
) -> ArbitrageOpportunity:
    """Build an opportunity from two prices. Pure, no I/O."""
    estimate = estimate_profit(price_a, price_b, pair.trading_unit, pair.fee_rate)
    required = min_profit_required(settings, pair.chain_ids)
    return ArbitrageOpportunity(
        pair_id=pair.pair_id,
        chain_a=pair.chain_a,
        chain_b=pair.chain_b,
        price_a=price_a,
        price_b=price_b,
        spread=estimate.spread,
        fee_estimate=estimate.fee_estimate,
        estimated_profit=estimate.estimated_profit,
        min_profit_required=required,
        threshold_mode=settings.threshold_mode,
        profitable=estimate.estimated_profit >= required,
        trading_unit=pair.trading_unit,
        timestamp=timestamp if timestamp is not None else time.time(),
        drift_a=drift[0],
        drift_b=drift[1],
    )


class Scanner:
    """
    Scan query for the configured pairs.

    Keeps the last price seen per (pair, chain) so each scan can report
    drift. Every scan is published as an arbitrage_status event.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        pairs: Mapping[str, PairConfig],
        quote_provider: QuoteProvider,
        settings_provider: Callable[[], Settings],
        notifier: Optional[Notifier] = None,
    ):
        self.registry = registry
        self.pairs = pairs
        self.quote_provider = quote_provider
        self.settings_provider = settings_provider
        self.notifier = notifier
        self._last_prices: Dict[Tuple[str, int], Decimal] = {}

    def get_pair(self, pair_id: str) -> PairConfig:
        try:
            return self.pairs[pair_id]
        except KeyError:
            raise QuoteUnavailableError(f"Unknown pair '{pair_id}'") from None

    async def _price(self, pair: PairConfig, chain_id: int) -> Decimal:
        quote = await self.quote_provider.get_quote(chain_id, pair.base_symbol(chain_id), pair.quote_symbol)
        return quote.unit_price

    def _drift(self, pair_id: str, chain_id: int, price: Decimal) -> Decimal:
        previous = self._last_prices.get((pair_id, chain_id))
        self._last_prices[(pair_id, chain_id)] = price
        return Decimal("0") if previous is None else price - previous

    async def scan(self, pair_id: str) -> ArbitrageOpportunity:
        """
        Quote both venues and evaluate the pair.

        Transport failures are re-raised as QuoteUnavailableError with the
        retryable RpcUnavailable kind kept; configuration errors pass through.
        """
        pair = self.get_pair(pair_id)
        settings = self.settings_provider()

        try:
            price_a, price_b = await asyncio.gather(
                self._price(pair, pair.chain_a),
                self._price(pair, pair.chain_b),
            )
        except RpcUnavailableError as e:
            raise QuoteUnavailableError(f"{pair.label}: {e}", kind=e.kind) from e

        drift = (
            self._drift(pair_id, pair.chain_a, price_a),
            self._drift(pair_id, pair.chain_b, price_b),
        )
        opportunity = evaluate_opportunity(pair, price_a, price_b, settings, drift)

        logger.info(
            f"{pair.label}: {price_a} vs {price_b}, spread {opportunity.spread}, "
            f"est. profit {opportunity.estimated_profit} / required {opportunity.min_profit_required}"
            f"{' PROFITABLE' if opportunity.profitable else ''}"
        )
        if self.notifier is not None:
            self.notifier.publish(ARBITRAGE_STATUS, opportunity.to_dict())
        return opportunity

    async def scan_all(self) -> List[ArbitrageOpportunity]:
        """Scan every pair concurrently; pairs whose quote fails are logged and left out."""
        pair_ids = list(self.pairs)
        results = await asyncio.gather(*(self.scan(pair_id) for pair_id in pair_ids), return_exceptions=True)

        opportunities: List[ArbitrageOpportunity] = []
        for pair_id, result in zip(pair_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"scan of {pair_id} failed: {result}")
                continue
            opportunities.append(result)
        return opportunities
