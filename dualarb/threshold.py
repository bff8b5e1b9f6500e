"""
Threshold evaluator and the canonical profit estimate.

Every place that judges profitability (scan listing, auto execution,
manual execution) goes through min_profit_required() and estimate_profit()
so the answers cannot drift apart. Pure functions, no I/O.

    fee_estimate      = buy_price * trading_unit * fee_rate
    estimated_profit  = max(0, |price_b - price_a| * trading_unit - fee_estimate)
    min_required      = raw_threshold + gas(chain_a) + gas(chain_b)

Gas only ever enters through min_profit_required().
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .settings import Settings, ThresholdMode

ZERO = Decimal("0")


def raw_threshold(settings: Settings) -> Decimal:
    if settings.threshold_mode is ThresholdMode.PERCENT:
        return settings.max_position_size * settings.min_profit_percent / Decimal(100)
    return settings.min_profit_fixed


def min_profit_required(settings: Settings, chain_ids: Iterable[int]) -> Decimal:
    """Minimum profit (quote currency) an opportunity across chain_ids must clear."""
    gas = sum((settings.gas_estimate(chain_id) for chain_id in set(chain_ids)), ZERO)
    return raw_threshold(settings) + gas


@dataclass(frozen=True)
class ProfitEstimate:
    spread: Decimal
    fee_estimate: Decimal
    estimated_profit: Decimal


def estimate_profit(
    price_a: Decimal,
    price_b: Decimal,
    trading_unit: Decimal,
    fee_rate: Decimal,
) -> ProfitEstimate:
    """
    Gross spread on one trading unit minus the swap fee estimate, floored at 0.

    The fee is charged on the buy leg, i.e. the cheaper venue.
    """
    spread = price_b - price_a
    buy_price = min(price_a, price_b)
    fee_estimate = buy_price * trading_unit * fee_rate
    estimated = max(ZERO, abs(spread) * trading_unit - fee_estimate)
    return ProfitEstimate(spread=spread, fee_estimate=fee_estimate, estimated_profit=estimated)


def is_profitable(estimated_profit: Decimal, settings: Settings, chain_ids: Iterable[int]) -> bool:
    return estimated_profit >= min_profit_required(settings, chain_ids)
