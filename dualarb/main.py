#!/usr/bin/env python3
"""
DualArb command line

    dualarb scan [PAIR]                 quote one pair (or all) on both venues
    dualarb execute PAIR                re-quote and execute one pair
    dualarb monitor [--auto]            scan every SCAN_INTERVAL seconds

Settings normally come from an external key/value store; on the command
line they can be given as repeated --set key=value options.
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from .config_loader import ConfigLoader
from .engine import build_engine
from .errors import ArbitrageError, SettingsError
from .ledger import ExecutionType
from .settings import InMemorySettingsStore

logger = logging.getLogger("dualarb")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def parse_overrides(items: List[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise SettingsError(f"expected key=value, got {item!r}")
        values[key.strip()] = value.strip()
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dualarb",
        description="Two-venue, two-chain DEX arbitrage scanner and executor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dualarb scan
  dualarb scan btc_usdt --set thresholdMode=percent --set minProfitPercent=1
  dualarb execute eth_usdt
  dualarb monitor --auto --interval 10
        """,
    )
    parser.add_argument("--chains", help="chain table JSON (default: config/chains.json)")
    parser.add_argument("--pairs", help="pair table JSON (default: config/pairs.json)")
    parser.add_argument("--env", help=".env file to load")
    parser.add_argument(
        "--set", dest="settings", action="append", default=[], metavar="KEY=VALUE",
        help="settings value, e.g. minProfitFixed=25 (repeatable)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="quote pairs on both venues")
    scan.add_argument("pair", nargs="?", help="pair id (default: all pairs)")

    execute = sub.add_parser("execute", help="execute one pair now")
    execute.add_argument("pair", help="pair id")

    monitor = sub.add_parser("monitor", help="scan continuously")
    monitor.add_argument("--interval", type=float, default=None, help="seconds between scans")
    monitor.add_argument("--auto", action="store_true", help="enable auto execution")

    return parser


async def run(args: argparse.Namespace) -> int:
    loader = ConfigLoader(chains_path=args.chains, pairs_path=args.pairs, env_path=args.env)
    runtime = loader.runtime
    setup_logging(runtime.log_level, runtime.log_file)

    store = InMemorySettingsStore(parse_overrides(args.settings))
    if getattr(args, "auto", False):
        store.set("autoExecute", "true")

    async with build_engine(loader, store) as engine:
        if args.command == "scan":
            if args.pair:
                opportunities = [await engine.scan(args.pair)]
            else:
                opportunities = await engine.scan_all()
            for o in opportunities:
                flag = "PROFITABLE" if o.profitable else "-"
                print(
                    f"{o.pair_id:<12} A={o.price_a:<16} B={o.price_b:<16} spread={o.spread:<14} "
                    f"profit={o.estimated_profit:<12} required={o.min_profit_required:<10} {flag}"
                )
            return 0

        if args.command == "execute":
            record = await engine.execute_arbitrage(args.pair, ExecutionType.MANUAL)
            for leg, result in (("A", record.result_a), ("B", record.result_b)):
                detail = result.tx_hash if result.succeeded else f"{result.error_kind.value}: {result.error_message}"
                print(f"leg {leg} (chain {result.chain_id}): {result.status.value} {detail}")
            print(f"total profit: {record.total_profit}")
            return 0 if record.both_succeeded else 1

        monitor = engine.create_monitor(args.interval)
        monitor.start()
        try:
            await monitor.wait()
        finally:
            await monitor.stop()
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nStopped by user")
        return 0
    except ArbitrageError as e:
        logger.error(f"{e.kind.value}: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
