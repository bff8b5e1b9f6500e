"""
Price monitor: the recurring scan task.

Owns one asyncio task with explicit start()/stop() and a configurable
interval. Every tick scans all pairs and publishes a price_update event.
With autoExecute on, a tick may also execute the best profitable pair,
bounded by an auto-execution session (duration and execution count);
when the session ends the monitor stops itself.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from .errors import ArbitrageError
from .ledger import ExecutionRecord, ExecutionType
from .notifications import AUTO_EXECUTION_STOPPED, PRICE_UPDATE, Notifier
from .scanner import ArbitrageOpportunity, Scanner
from .settings import Settings

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[ArbitrageOpportunity, ExecutionType], Awaitable[ExecutionRecord]]


@dataclass
class AutoExecutionSession:
    started_at: float
    duration_sec: float
    max_executions: int
    executions: int = 0

    def expired(self, now: float) -> bool:
        return now - self.started_at >= self.duration_sec

    @property
    def exhausted(self) -> bool:
        return self.executions >= self.max_executions


class PriceMonitor:
    """Periodic scanner with optional auto execution."""

    def __init__(
        self,
        scanner: Scanner,
        execute: ExecuteFn,
        settings_provider: Callable[[], Settings],
        notifier: Optional[Notifier] = None,
        interval: float = 5.0,
        time_fn: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.scanner = scanner
        self.execute = execute
        self.settings_provider = settings_provider
        self.notifier = notifier
        self.interval = interval
        self._time_fn = time_fn
        self._sleep = sleep

        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self.session: Optional[AutoExecutionSession] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_requested = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"price monitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        self._stop_requested = True
        task, self._task = self._task, None
        if task is None:
            return
        if task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("price monitor stopped")

    async def wait(self) -> None:
        """Block until the monitor stops (e.g. at the end of an auto-execution session)."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while not self._stop_requested:
            try:
                await self.tick()
            except Exception:
                logger.exception("price monitor tick failed")
            if self._stop_requested:
                break
            await self._sleep(self.interval)

    def _publish(self, event_type: str, payload: dict) -> None:
        if self.notifier is not None:
            self.notifier.publish(event_type, payload)

    def _end_session(self, reason: str) -> None:
        session = self.session
        self.session = None
        self._stop_requested = True
        logger.info(f"auto execution stopped: {reason}")
        self._publish(AUTO_EXECUTION_STOPPED, {
            "reason": reason,
            "executions": session.executions if session else 0,
        })

    async def tick(self) -> List[ArbitrageOpportunity]:
        """One scan cycle. Returns the opportunities that were scanned successfully."""
        self.ticks += 1
        opportunities = await self.scanner.scan_all()
        self._publish(PRICE_UPDATE, {"opportunities": [o.to_dict() for o in opportunities]})

        settings = self.settings_provider()
        if not settings.auto_execute:
            self.session = None
            return opportunities

        now = self._time_fn()
        if self.session is None:
            self.session = AutoExecutionSession(
                started_at=now,
                duration_sec=settings.session_duration_sec,
                max_executions=settings.auto_exec_max_per_session,
            )
        elif self.session.expired(now):
            self._end_session("session duration elapsed")
            return opportunities

        if self.session.exhausted:
            self._end_session("maximum executions per session reached")
            return opportunities

        profitable = [o for o in opportunities if o.profitable]
        if profitable:
            best = max(profitable, key=lambda o: o.estimated_profit)
            try:
                await self.execute(best, ExecutionType.AUTO)
            except ArbitrageError as e:
                logger.warning(f"auto execution of {best.pair_id} rejected: {e}")
            else:
                self.session.executions += 1

            if self.session.exhausted:
                self._end_session("maximum executions per session reached")

        return opportunities
