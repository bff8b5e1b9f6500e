"""
DualArb engine: wiring and the public surface.

build_engine() is the only place that decides between the real and the
simulated swap strategy. Everything below it receives executors and
signers already chosen.

    Scan(pairId)                        -> ArbitrageOpportunity
    ScanAll()                           -> [ArbitrageOpportunity]
    ExecuteArbitrage(pairId, execType)  -> ExecutionRecord
"""

import asyncio
import logging
import random
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config_loader import ChainRegistry, ConfigLoader, PairConfig
from .errors import ConfigValidationError
from .executor import RealSwapExecutor, SimulatedSwapExecutor, SwapExecutor
from .journal import InMemoryAuditSink, TradeJournal
from .ledger import AuditSink, ExecutionRecord, ExecutionType, Ledger, WalletState
from .network import NetworkManager
from .notifications import ARBITRAGE_EXECUTED, LoggingNotifier, Notifier
from .orchestrator import DualChainOrchestrator
from .quotes import QuoteProvider
from .scanner import ArbitrageOpportunity, Scanner
from .scheduler import PriceMonitor
from .settings import InMemorySettingsStore, Settings, SettingsStore, chain_gas_defaults, load_settings
from .signer import LocalKeySigner, TransactionSigner

logger = logging.getLogger(__name__)

MODE_REAL = "real"
MODE_SIMULATED = "simulated"


class ArbitrageEngine:
    """Facade over scanner, orchestrator, ledger and monitor."""

    def __init__(
        self,
        registry: ChainRegistry,
        pairs: Mapping[str, PairConfig],
        scanner: Scanner,
        orchestrator: DualChainOrchestrator,
        ledger: Ledger,
        settings_provider,
        notifier: Optional[Notifier] = None,
        networks: Optional[Mapping[int, NetworkManager]] = None,
        mode: str = MODE_SIMULATED,
        scan_interval: float = 5.0,
    ):
        self.registry = registry
        self.pairs = pairs
        self.scanner = scanner
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.settings_provider = settings_provider
        self.notifier = notifier
        self.networks = dict(networks or {})
        self.mode = mode
        self.scan_interval = scan_interval

    async def __aenter__(self) -> "ArbitrageEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await asyncio.gather(*(network.disconnect() for network in self.networks.values()))

    @property
    def settings(self) -> Settings:
        return self.settings_provider()

    async def scan(self, pair_id: str) -> ArbitrageOpportunity:
        return await self.scanner.scan(pair_id)

    async def scan_all(self) -> List[ArbitrageOpportunity]:
        return await self.scanner.scan_all()

    async def execute_opportunity(
        self,
        opportunity: ArbitrageOpportunity,
        execution_type: ExecutionType = ExecutionType.MANUAL,
    ) -> ExecutionRecord:
        record = await self.orchestrator.execute(opportunity, execution_type)
        if self.notifier is not None:
            try:
                self.notifier.publish(ARBITRAGE_EXECUTED, record.to_dict())
            except Exception:
                logger.exception(f"{opportunity.pair_id}: failed to publish {ARBITRAGE_EXECUTED}")
        return record

    async def execute_arbitrage(
        self,
        pair_id: str,
        execution_type: ExecutionType = ExecutionType.MANUAL,
    ) -> ExecutionRecord:
        """
        Re-quote the pair and execute it.

        Raises QuoteUnavailableError when either venue cannot be quoted and
        BelowThresholdError when the fresh estimate does not clear the
        threshold. Leg failures are reported inside the record.
        """
        opportunity = await self.scanner.scan(pair_id)
        return await self.execute_opportunity(opportunity, execution_type)

    def wallets(self) -> List[WalletState]:
        return self.ledger.wallets()

    def create_monitor(self, interval: Optional[float] = None) -> PriceMonitor:
        return PriceMonitor(
            scanner=self.scanner,
            execute=self.execute_opportunity,
            settings_provider=self.settings_provider,
            notifier=self.notifier,
            interval=interval or self.scan_interval,
        )


def select_mode(requested: str, private_keys: Mapping[int, Optional[str]]) -> str:
    """
    Resolve EXECUTION_MODE into real or simulated.

    auto picks real only when every chain has a credential.
    """
    missing = [chain_id for chain_id, key in private_keys.items() if not key]
    if requested == MODE_SIMULATED:
        return MODE_SIMULATED
    if requested == MODE_REAL:
        if missing:
            raise ConfigValidationError(f"EXECUTION_MODE=real but no private key for chains {missing}")
        return MODE_REAL
    return MODE_SIMULATED if missing else MODE_REAL


def build_engine(
    loader: Optional[ConfigLoader] = None,
    settings_store: Optional[SettingsStore] = None,
    notifier: Optional[Notifier] = None,
    audit_sink: Optional[AuditSink] = None,
    rng: Optional[random.Random] = None,
) -> ArbitrageEngine:
    """Assemble an engine from configuration, choosing the swap strategy once."""
    loader = loader or ConfigLoader()
    registry = loader.registry
    pairs = loader.pairs
    runtime = loader.runtime
    settings_store = settings_store or InMemorySettingsStore()
    notifier = notifier or LoggingNotifier()

    gas_defaults = chain_gas_defaults(registry)

    def settings_provider() -> Settings:
        return load_settings(settings_store, gas_defaults)

    networks: Dict[int, NetworkManager] = {chain.chain_id: NetworkManager(chain) for chain in registry}
    quote_provider = QuoteProvider(registry, networks)

    keys = {chain_id: loader.private_key_for(chain_id) for chain_id in registry.chain_ids}
    mode = select_mode(runtime.execution_mode, keys)

    executors: Dict[int, SwapExecutor] = {}
    signers: Dict[int, TransactionSigner] = {}
    if mode == MODE_REAL:
        for chain_id, network in networks.items():
            signers[chain_id] = LocalKeySigner(keys[chain_id])
            executors[chain_id] = RealSwapExecutor(
                network, quote_provider, confirmation_timeout=runtime.confirmation_timeout
            )
    else:
        simulated = SimulatedSwapExecutor(rng=rng)
        executors = {chain_id: simulated for chain_id in networks}

    if audit_sink is None:
        if runtime.trade_history_file:
            audit_sink = TradeJournal(Path(runtime.trade_history_file))
        else:
            audit_sink = InMemoryAuditSink()

    ledger = Ledger.from_config(pairs, registry, audit_sink)
    scanner = Scanner(registry, pairs, quote_provider, settings_provider, notifier)
    orchestrator = DualChainOrchestrator(
        registry,
        pairs,
        executors,
        settings_provider,
        ledger,
        signers=signers,
        deadline_window=runtime.swap_deadline_seconds,
    )

    logger.info(
        f"engine ready: {len(registry)} chains, {len(pairs)} pairs, "
        f"{mode} execution"
        + (f" ({', '.join(f'{cid}={s.address}' for cid, s in signers.items())})" if signers else "")
    )
    return ArbitrageEngine(
        registry=registry,
        pairs=pairs,
        scanner=scanner,
        orchestrator=orchestrator,
        ledger=ledger,
        settings_provider=settings_provider,
        notifier=notifier,
        networks=networks,
        mode=mode,
        scan_interval=runtime.scan_interval,
    )
