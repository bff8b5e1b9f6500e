"""
Ledger: wallet balances and the execution audit trail.

The ledger is the only writer of WalletState. It runs after both legs
are terminal, applies the balance delta of each successful leg, and
hands one ExecutionRecord per attempt to the audit sink, failed
attempts included.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from .config_loader import ChainRegistry, PairConfig
from .executor import SwapResult
from .scanner import ArbitrageOpportunity

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ExecutionType(Enum):
    MANUAL = "manual"
    AUTO = "auto"


@dataclass(frozen=True)
class WalletState:
    id: str
    chain_id: int
    venue: str
    token_pair: str
    base_balance: Decimal
    quote_balance: Decimal
    last_updated: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chainId": self.chain_id,
            "venue": self.venue,
            "tokenPair": self.token_pair,
            "baseBalance": str(self.base_balance),
            "quoteBalance": str(self.quote_balance),
            "lastUpdated": self.last_updated.isoformat(),
        }


def _leg_dict(result: SwapResult) -> Dict[str, Any]:
    return {
        "chainId": result.chain_id,
        "status": result.status.value,
        "txHash": result.tx_hash,
        "gasUsed": result.gas_used,
        "amountOut": str(result.amount_out) if result.amount_out is not None else None,
        "errorKind": result.error_kind.value if result.error_kind else None,
        "errorMessage": result.error_message,
    }


@dataclass(frozen=True)
class ExecutionRecord:
    """
    One execution attempt. Both legs are always present: result_a is the
    leg on opportunity.chain_a, result_b the leg on opportunity.chain_b.
    """
    opportunity: ArbitrageOpportunity
    result_a: SwapResult
    result_b: SwapResult
    realized_buy_price: Decimal
    realized_sell_price: Decimal
    total_profit: Decimal
    execution_type: ExecutionType
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def both_succeeded(self) -> bool:
        return self.result_a.succeeded and self.result_b.succeeded

    @property
    def failed_legs(self) -> List[SwapResult]:
        return [r for r in (self.result_a, self.result_b) if not r.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pairId": self.opportunity.pair_id,
            "executionType": self.execution_type.value,
            "buyChain": self.opportunity.buy_chain,
            "sellChain": self.opportunity.sell_chain,
            "estimatedProfit": str(self.opportunity.estimated_profit),
            "realizedBuyPrice": str(self.realized_buy_price),
            "realizedSellPrice": str(self.realized_sell_price),
            "totalProfit": str(self.total_profit),
            "resultA": _leg_dict(self.result_a),
            "resultB": _leg_dict(self.result_b),
            "timestamp": self.timestamp,
        }


class AuditSink(Protocol):
    """External append-only history store."""

    def append(self, record: ExecutionRecord) -> None: ...


def total_profit(
    result_a: SwapResult,
    result_b: SwapResult,
    buy_price: Decimal,
    sell_price: Decimal,
    trading_unit: Decimal,
    fee_estimate: Decimal,
) -> Decimal:
    """Realized spread on the trading unit minus the fee, 0 unless both legs succeeded."""
    if not (result_a.succeeded and result_b.succeeded):
        return ZERO
    return (sell_price - buy_price) * trading_unit - fee_estimate


class Ledger:
    """
    Wallet balances per (pair, chain) plus the audit hand-off.

    Balances use the realized prices when the caller has them, otherwise
    the opportunity's quoted prices.
    """

    def __init__(self, audit_sink: AuditSink, wallets: Optional[Mapping[Tuple[str, int], WalletState]] = None):
        self.audit_sink = audit_sink
        self._wallets: Dict[Tuple[str, int], WalletState] = dict(wallets or {})
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        pairs: Mapping[str, PairConfig],
        registry: ChainRegistry,
        audit_sink: AuditSink,
    ) -> "Ledger":
        """One wallet per (pair, chain), seeded from initialBalances (default 0)."""
        now = datetime.now(timezone.utc)
        wallets: Dict[Tuple[str, int], WalletState] = {}
        for pair in pairs.values():
            for chain_id in pair.chain_ids:
                chain = registry.get(chain_id)
                base, quote = pair.initial_balances.get(chain_id, (ZERO, ZERO))
                wallets[(pair.pair_id, chain_id)] = WalletState(
                    id=f"{pair.pair_id}:{chain_id}",
                    chain_id=chain_id,
                    venue=chain.venue or chain.name,
                    token_pair=pair.label,
                    base_balance=base,
                    quote_balance=quote,
                    last_updated=now,
                )
        return cls(audit_sink, wallets)

    def wallet(self, pair_id: str, chain_id: int) -> WalletState:
        with self._lock:
            return self._wallets[(pair_id, chain_id)]

    def wallets(self) -> List[WalletState]:
        with self._lock:
            return list(self._wallets.values())

    def _wallet_or_empty(self, pair_id: str, chain_id: int) -> WalletState:
        existing = self._wallets.get((pair_id, chain_id))
        if existing is not None:
            return existing
        return WalletState(
            id=f"{pair_id}:{chain_id}",
            chain_id=chain_id,
            venue="",
            token_pair=pair_id,
            base_balance=ZERO,
            quote_balance=ZERO,
            last_updated=datetime.now(timezone.utc),
        )

    @staticmethod
    def _apply(wallet: WalletState, result: SwapResult, is_buy: bool, price: Decimal, unit: Decimal) -> WalletState:
        if not result.succeeded:
            return wallet
        sign = 1 if is_buy else -1
        return replace(
            wallet,
            base_balance=wallet.base_balance + sign * unit,
            quote_balance=wallet.quote_balance - sign * price * unit,
            last_updated=datetime.now(timezone.utc),
        )

    def commit(
        self,
        opportunity: ArbitrageOpportunity,
        result_a: SwapResult,
        result_b: SwapResult,
        trading_unit: Decimal,
        realized_buy_price: Optional[Decimal] = None,
        realized_sell_price: Optional[Decimal] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
    ) -> Tuple[WalletState, WalletState, ExecutionRecord]:
        """
        Apply both legs and append the record.

        Buy leg: base += unit, quote -= price * unit. Sell leg: the inverse.
        A failed leg leaves its wallet untouched. An audit sink failure is
        logged and does not hide the record from the caller.
        """
        buy_price = realized_buy_price if realized_buy_price is not None else opportunity.buy_price
        sell_price = realized_sell_price if realized_sell_price is not None else opportunity.sell_price
        buy_chain = opportunity.buy_chain

        with self._lock:
            updated = []
            for chain_id, result in ((opportunity.chain_a, result_a), (opportunity.chain_b, result_b)):
                is_buy = chain_id == buy_chain
                wallet = self._apply(
                    self._wallet_or_empty(opportunity.pair_id, chain_id),
                    result,
                    is_buy,
                    buy_price if is_buy else sell_price,
                    trading_unit,
                )
                self._wallets[(opportunity.pair_id, chain_id)] = wallet
                updated.append(wallet)

        record = ExecutionRecord(
            opportunity=opportunity,
            result_a=result_a,
            result_b=result_b,
            realized_buy_price=buy_price,
            realized_sell_price=sell_price,
            total_profit=total_profit(
                result_a, result_b, buy_price, sell_price, trading_unit, opportunity.fee_estimate
            ),
            execution_type=execution_type,
        )
        try:
            self.audit_sink.append(record)
        except Exception:
            # wallets are already committed at this point
            logger.exception(f"{opportunity.pair_id}: failed to append execution record to audit sink")

        logger.info(
            f"{opportunity.pair_id} {execution_type.value} execution: "
            f"A={result_a.status.value} B={result_b.status.value} profit={record.total_profit}"
        )
        return updated[0], updated[1], record
