import asyncio
import logging

import pika.exceptions

from ..errors import MessageParseError
from ..logger import CorrelationAdapter
from ..messaging.bus import BrokerConnection, Delivery
from ..models import CompletionEvent, Order, processing_time_ms

logger = logging.getLogger(__name__)


class FulfillmentWorker:
    """
    Consumes ticket-order, fulfils each order and reports it to analytics.

    Fulfilment is simulated with a per-event-type delay. The original message
    is acked only after the completion event has been published, so a crash in
    between can produce a duplicate completion but never lose one.
    """

    def __init__(self, broker: BrokerConnection, analytics_queue: str = "analytics", sleep=asyncio.sleep):
        self.broker = broker
        self.analytics_queue = analytics_queue
        self._sleep = sleep
        self.processed = 0
        self.failed = 0

    async def handle(self, delivery: Delivery) -> None:
        order_logger = logger
        try:
            order = Order.from_message(delivery.body)
            order_logger = CorrelationAdapter(logger, {"correlation_id": order.id})
            order_logger.info(
                f"Processing ticket order #{order.id}: {order.quantity}x {order.event_type} for {order.customer}",
                extra={"redelivered": delivery.redelivered},
            )

            await self._sleep(processing_time_ms(order.event_type) / 1000)

            completion = CompletionEvent.for_order(order)
            await self.broker.publish(self.analytics_queue, completion.to_message())
            delivery.ack()

            self.processed += 1
            order_logger.info(
                f"Fulfilled: {order.quantity}x {order.event_type} ticket(s) for {order.customer}",
                extra={"processed": self.processed},
            )
        except MessageParseError:
            self.failed += 1
            logger.error(
                "Could not parse order message, requeueing",
                exc_info=True,
                extra={"delivery_tag": delivery.delivery_tag},
            )
            self._requeue(delivery)
        except Exception:
            self.failed += 1
            order_logger.error("Error processing order, requeueing", exc_info=True)
            self._requeue(delivery)

    def _requeue(self, delivery: Delivery) -> None:
        try:
            delivery.nack(requeue=True)
        except pika.exceptions.AMQPError:
            # The channel is gone; RabbitMQ requeues unacked messages on its own
            logger.warning("Could not nack message, channel closed", extra={"delivery_tag": delivery.delivery_tag})
