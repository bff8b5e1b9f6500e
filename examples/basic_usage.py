"""
DualArb: 基础使用示例

此示例演示如何使用核心组件:
1. 加载链注册表和交易对表
2. 在两条链上查询报价
3. 计算利润阈值
4. 用模拟执行器执行一次套利
"""

import asyncio
import logging
import random
from decimal import Decimal

# 配置示例的日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

from dualarb.config_loader import ConfigLoader
from dualarb.errors import ArbitrageError
from dualarb.executor import SimulatedSwapExecutor
from dualarb.journal import InMemoryAuditSink
from dualarb.ledger import ExecutionType, Ledger
from dualarb.network import NetworkManager
from dualarb.orchestrator import DualChainOrchestrator
from dualarb.quotes import QuoteProvider
from dualarb.scanner import evaluate_opportunity
from dualarb.settings import Settings, ThresholdMode, chain_gas_defaults
from dualarb.threshold import min_profit_required


async def example_registry():
    """示例: 链注册表和交易对"""
    print("\n" + "=" * 60)
    print("示例 1: 链注册表")
    print("=" * 60)

    loader = ConfigLoader()
    for chain in loader.registry:
        print(f"链 {chain.chain_id}: {chain.name} ({chain.venue})")
        print(f"  路由: {chain.router_address}")
        print(f"  RPC: 配置了 {len(chain.rpc_urls)} 个端点")
        print(f"  代币: {', '.join(chain.tokens)}")

    for pair in loader.pairs.values():
        print(f"交易对 {pair.pair_id}: {pair.label}, 单位 {pair.trading_unit}, 手续费率 {pair.fee_rate}")


async def example_quotes():
    """示例: 在两个场所报价一个交易对"""
    print("\n" + "=" * 60)
    print("示例 2: 双链报价")
    print("=" * 60)

    loader = ConfigLoader()
    registry = loader.registry
    pair = loader.pairs["btc_usdt"]

    networks = {chain_id: NetworkManager(registry.get(chain_id)) for chain_id in pair.chain_ids}
    provider = QuoteProvider(registry, networks)
    try:
        for chain_id in pair.chain_ids:
            try:
                quote = await provider.get_quote(chain_id, pair.base_symbol(chain_id), pair.quote_symbol)
                print(f"链 {chain_id}: 1 {quote.token_in} = {quote.unit_price} {quote.token_out}")
            except ArbitrageError as e:
                print(f"链 {chain_id}: 报价失败 ({e.kind.value}: {e})")
    finally:
        for network in networks.values():
            await network.disconnect()


async def example_threshold():
    """示例: 固定和百分比阈值"""
    print("\n" + "=" * 60)
    print("示例 3: 利润阈值")
    print("=" * 60)

    loader = ConfigLoader()
    gas = chain_gas_defaults(loader.registry)
    pair = loader.pairs["btc_usdt"]

    fixed = Settings(min_profit_fixed=Decimal("50"), gas_estimates=gas)
    opportunity = evaluate_opportunity(pair, Decimal("43125.45"), Decimal("43212.77"), fixed)
    print(f"价差: {opportunity.spread}")
    print(f"手续费估算: {opportunity.fee_estimate}")
    print(f"预计利润: {opportunity.estimated_profit}")
    print(f"最低要求: {opportunity.min_profit_required}")
    print(f"可盈利: {opportunity.profitable}")

    percent = Settings(
        threshold_mode=ThresholdMode.PERCENT,
        min_profit_percent=Decimal("0.5"),
        max_position_size=Decimal("1000"),
        gas_estimates=gas,
    )
    print(f"百分比模式最低要求: {min_profit_required(percent, pair.chain_ids)}")


async def example_simulated_execution():
    """示例: 模拟执行一次套利"""
    print("\n" + "=" * 60)
    print("示例 4: 模拟执行")
    print("=" * 60)

    loader = ConfigLoader()
    registry = loader.registry
    pairs = loader.pairs
    pair = pairs["btc_usdt"]
    settings = Settings(min_profit_fixed=Decimal("10"), gas_estimates=chain_gas_defaults(registry))

    sink = InMemoryAuditSink()
    ledger = Ledger.from_config(pairs, registry, sink)
    simulated = SimulatedSwapExecutor(rng=random.Random(42))
    orchestrator = DualChainOrchestrator(
        registry,
        pairs,
        {chain_id: simulated for chain_id in pair.chain_ids},
        lambda: settings,
        ledger,
    )

    opportunity = evaluate_opportunity(pair, Decimal("43125.45"), Decimal("43312.77"), settings)
    record = await orchestrator.execute(opportunity, ExecutionType.MANUAL)

    for leg, result in (("A", record.result_a), ("B", record.result_b)):
        print(f"腿 {leg} (链 {result.chain_id}): {result.status.value} {result.tx_hash or result.error_kind.value}")
    print(f"总利润: {record.total_profit}")
    for wallet in ledger.wallets():
        print(f"钱包 {wallet.id}: 基础 {wallet.base_balance}, 报价 {wallet.quote_balance}")


async def main():
    """运行所有示例"""
    print("=" * 60)
    print("DualArb 使用示例")
    print("=" * 60)

    await example_registry()
    await example_threshold()
    await example_simulated_execution()

    # 需要可访问的 RPC 端点
    await example_quotes()

    print("\n" + "=" * 60)
    print("所有示例已完成!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
