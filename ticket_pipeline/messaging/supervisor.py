import asyncio
import logging
from typing import Iterable, List, Optional

from ..errors import BrokerUnavailable
from ..models import ConsumerState
from .bus import BrokerConnection, Handler

logger = logging.getLogger(__name__)


class ConsumerSupervisor:
    """
    Keeps one queue subscription alive.

    `state` is the only record of whether the consumer is subscribed.
    `ensure_running()` is cheap when it is, and re-subscribes when it isn't,
    so it can be called as often as anyone likes.
    """

    def __init__(self, broker: BrokerConnection, queue: str, handler: Handler, name: Optional[str] = None):
        self.broker = broker
        self.queue = queue
        self.handler = handler
        self.name = name or queue
        self.state = ConsumerState()
        self.restarts = 0
        self._lock = asyncio.Lock()
        broker.add_close_listener(self.reset)

    async def ensure_running(self) -> bool:
        if self.state.running:
            return True

        async with self._lock:
            # Another caller may have subscribed while we waited for the lock
            if self.state.running:
                return True
            if not self.broker.is_connected:
                logger.debug("Broker not connected, consumer stays down", extra={"consumer": self.name})
                return False
            try:
                tag = await self.broker.consume(self.queue, self.handler)
            except Exception as exc:
                logger.warning(
                    "Failed to start consumer, will retry on next check",
                    extra={"consumer": self.name, "queue": self.queue, "error": str(exc)},
                )
                return False

            self.state = ConsumerState(running=True, tag=tag)
            self.restarts += 1
            logger.info(
                "Consumer started",
                extra={"consumer": self.name, "queue": self.queue, "consumer_tag": tag},
            )
            return True

    def reset(self) -> None:
        """Forget the subscription; its channel is gone."""
        if self.state.running:
            logger.warning("Consumer lost its subscription", extra={"consumer": self.name})
        self.state = ConsumerState()

    async def stop(self) -> None:
        tag = self.state.tag
        self.state = ConsumerState()
        if tag is not None:
            await self.broker.cancel(tag)


class KeepAliveScheduler:
    """Periodic sweep: reconnect the broker if needed, then restart idle consumers."""

    def __init__(self, broker: BrokerConnection, supervisors: Iterable[ConsumerSupervisor], interval: float = 300.0):
        self.broker = broker
        self.supervisors: List[ConsumerSupervisor] = list(supervisors)
        self.interval = interval
        self.sweeps = 0

    async def sweep(self) -> bool:
        """Run one keep-alive check; True when every consumer is subscribed."""
        self.sweeps += 1
        if not self.broker.is_connected:
            try:
                await self.broker.connect()
            except BrokerUnavailable:
                logger.error("Keep-alive could not reach RabbitMQ", exc_info=True)
                return False

        results = [await supervisor.ensure_running() for supervisor in self.supervisors]
        return all(results)

    async def run(self) -> None:
        logger.info("Keep-alive scheduler started", extra={"interval_seconds": self.interval})
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.error("Keep-alive sweep failed", exc_info=True)
