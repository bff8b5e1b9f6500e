"""
Notification sinks.

Opportunity and execution events leave the core as (event_type, payload)
pairs. Payloads are plain JSON-serializable dicts; the core knows nothing
about how subscribers receive them.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

import orjson

logger = logging.getLogger(__name__)

ARBITRAGE_STATUS = "arbitrage_status"
PRICE_UPDATE = "price_update"
ARBITRAGE_EXECUTED = "arbitrage_executed"
AUTO_EXECUTION_STOPPED = "auto_execution_stopped"

Event = Tuple[str, Dict[str, Any]]


class Notifier(Protocol):
    def publish(self, event_type: str, payload: Mapping[str, Any]) -> None: ...


def encode_event(event_type: str, payload: Mapping[str, Any]) -> bytes:
    """Wire form used by push transports: {"type": ..., "data": ...}."""
    return orjson.dumps({"type": event_type, "data": dict(payload)})


class LoggingNotifier:
    """Writes every event to the log. Default sink for the CLI."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish(self, event_type: str, payload: Mapping[str, Any]) -> None:
        logger.log(self.level, f"{event_type}: {encode_event(event_type, payload).decode()}")


class BroadcastHub:
    """
    In-process fan-out to asyncio queues.

    Each subscriber gets its own bounded queue. A subscriber that falls
    behind loses its oldest event rather than blocking the publisher.
    """

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_type: str, payload: Mapping[str, Any]) -> None:
        event: Event = (event_type, dict(payload))
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                logger.debug(f"subscriber queue full, dropped oldest event before {event_type}")
            queue.put_nowait(event)


class CompositeNotifier:
    """Publishes each event to several sinks."""

    def __init__(self, sinks: Sequence[Notifier]):
        self.sinks = list(sinks)

    def publish(self, event_type: str, payload: Mapping[str, Any]) -> None:
        for sink in self.sinks:
            sink.publish(event_type, payload)
