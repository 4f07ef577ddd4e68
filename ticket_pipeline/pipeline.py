import asyncio
import logging
from typing import List, Optional

from .analytics_service.consumers import AnalyticsAggregator
from .analytics_service.stats import AggregateStats
from .config import PipelineConfig
from .errors import BrokerUnavailable
from .fulfillment_service.consumers import FulfillmentWorker
from .messaging.bus import BrokerConnection, RetryPolicy
from .messaging.supervisor import ConsumerSupervisor, KeepAliveScheduler
from .order_service.intake import OrderIntake
from .order_service.store import OrderStore

logger = logging.getLogger(__name__)


class Pipeline:
    """
    Wires the stages a process runs onto one broker connection.

    Each stage is built only when it is enabled in the config, so the same
    code runs the three-service layout or everything in one process.
    """

    def __init__(self, config: PipelineConfig, broker: Optional[BrokerConnection] = None, sleep=asyncio.sleep):
        self.config = config
        self.broker = broker or BrokerConnection(
            config.rabbitmq_url,
            queues=(config.order_queue, config.analytics_queue),
            retry_policy=RetryPolicy(config.connect_max_attempts, config.connect_retry_delay),
            prefetch_count=config.prefetch_count,
            rpc_timeout=config.rpc_timeout,
        )

        self.store: Optional[OrderStore] = None
        self.intake: Optional[OrderIntake] = None
        self.worker: Optional[FulfillmentWorker] = None
        self.fulfillment: Optional[ConsumerSupervisor] = None
        self.stats: Optional[AggregateStats] = None
        self.aggregator: Optional[AnalyticsAggregator] = None
        self.analytics: Optional[ConsumerSupervisor] = None

        if config.runs("api"):
            self.store = OrderStore()
            self.intake = OrderIntake(self.store, self.broker, queue=config.order_queue)

        if config.runs("fulfillment"):
            self.worker = FulfillmentWorker(self.broker, analytics_queue=config.analytics_queue, sleep=sleep)
            self.fulfillment = ConsumerSupervisor(
                self.broker, config.order_queue, self.worker.handle, name="fulfillment"
            )

        if config.runs("analytics"):
            self.stats = AggregateStats(limit=config.recent_orders_limit)
            self.aggregator = AnalyticsAggregator(self.stats)
            self.analytics = ConsumerSupervisor(
                self.broker, config.analytics_queue, self.aggregator.handle, name="analytics"
            )

        self.keepalive = KeepAliveScheduler(self.broker, self.supervisors, interval=config.keepalive_interval)
        self._tasks: List[asyncio.Task] = []

    @property
    def supervisors(self) -> List[ConsumerSupervisor]:
        return [s for s in (self.fulfillment, self.analytics) if s is not None]

    async def keep_alive(self) -> None:
        """On-demand consumer check used by request handlers."""
        if self.config.eager_keepalive:
            for supervisor in self.supervisors:
                await supervisor.ensure_running()

    async def connect_and_subscribe(self) -> None:
        try:
            await self.broker.connect()
        except BrokerUnavailable:
            # Keep serving HTTP; the keep-alive sweep will try again later
            logger.critical("RabbitMQ connection failed", exc_info=True)
            return
        logger.info("RabbitMQ connection established")
        for supervisor in self.supervisors:
            await supervisor.ensure_running()

    async def start(self) -> None:
        self._tasks.append(asyncio.create_task(self.connect_and_subscribe()))
        self._tasks.append(asyncio.create_task(self.keepalive.run()))
        if self.aggregator is not None and self.config.stats_report_interval:
            self._tasks.append(asyncio.create_task(self.aggregator.report(self.config.stats_report_interval)))
        logger.info("Pipeline started", extra={"services": sorted(self.config.services)})

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for supervisor in self.supervisors:
            try:
                await supervisor.stop()
            except Exception:
                logger.error("Error stopping consumer", exc_info=True, extra={"consumer": supervisor.name})
        await self.broker.close()
        logger.info("Pipeline stopped")

    def health(self) -> dict:
        return {
            "broker": self.broker.state.value,
            "consumers": {s.name: s.state.model_dump() for s in self.supervisors},
        }
