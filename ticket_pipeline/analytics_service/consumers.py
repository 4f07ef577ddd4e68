import asyncio
import logging

import pika.exceptions

from ..errors import MessageParseError
from ..logger import CorrelationAdapter
from ..messaging.bus import Delivery
from ..models import CompletionEvent
from .stats import AggregateStats

logger = logging.getLogger(__name__)


class AnalyticsAggregator:
    """Folds completion events from the analytics queue into AggregateStats."""

    def __init__(self, stats: AggregateStats):
        self.stats = stats

    async def handle(self, delivery: Delivery) -> None:
        try:
            event = CompletionEvent.from_message(delivery.body)
        except MessageParseError:
            logger.error(
                "Could not parse completion message, requeueing",
                exc_info=True,
                extra={"delivery_tag": delivery.delivery_tag},
            )
            try:
                delivery.nack(requeue=True)
            except pika.exceptions.AMQPError:
                logger.warning("Could not nack message, channel closed")
            return

        # Completions may arrive in any order relative to submission, and
        # after a redelivery the same order can be counted twice.
        self.stats.record(event)
        event_logger = CorrelationAdapter(logger, {"correlation_id": event.order_id})
        try:
            delivery.ack()
        except pika.exceptions.AMQPError:
            # Already counted; the broker will redeliver it on a new channel
            event_logger.warning(
                "Could not ack completion, channel closed",
                extra={"delivery_tag": delivery.delivery_tag},
            )

        event_logger.info(
            f"Analytics: {event.quantity}x {event.event_type} ticket(s) for {event.customer}",
            extra={"redelivered": delivery.redelivered, "total_tickets": self.stats.total_tickets},
        )

    async def report(self, interval: float) -> None:
        """Log a summary of the running totals every `interval` seconds."""
        while True:
            await asyncio.sleep(interval)
            logger.info(
                "Event ticket analytics",
                extra={"summary": self.stats.summary(), "events": self.stats.breakdown()},
            )
