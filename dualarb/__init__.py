"""
DualArb - two-venue, two-chain DEX arbitrage core
"""

from .config_loader import ChainConfig, ChainRegistry, ConfigLoader, PairConfig
from .engine import ArbitrageEngine, build_engine
from .errors import ArbitrageError, ErrorKind
from .executor import (
    RealSwapExecutor,
    SimulatedSwapExecutor,
    SwapExecutor,
    SwapRequest,
    SwapResult,
    SwapStatus,
    compute_min_out,
)
from .ledger import ExecutionRecord, ExecutionType, Ledger, WalletState
from .orchestrator import DualChainOrchestrator
from .quotes import Quote, QuoteProvider
from .scanner import ArbitrageOpportunity, Scanner
from .scheduler import PriceMonitor
from .settings import Settings, ThresholdMode
from .threshold import min_profit_required

__version__ = "1.0.0"

__all__ = [
    "ArbitrageEngine",
    "ArbitrageError",
    "ArbitrageOpportunity",
    "ChainConfig",
    "ChainRegistry",
    "ConfigLoader",
    "DualChainOrchestrator",
    "ErrorKind",
    "ExecutionRecord",
    "ExecutionType",
    "Ledger",
    "PairConfig",
    "PriceMonitor",
    "Quote",
    "QuoteProvider",
    "RealSwapExecutor",
    "Scanner",
    "Settings",
    "SimulatedSwapExecutor",
    "SwapExecutor",
    "SwapRequest",
    "SwapResult",
    "SwapStatus",
    "ThresholdMode",
    "WalletState",
    "build_engine",
    "compute_min_out",
    "min_profit_required",
]
