import logging
from typing import List, Optional

from ..errors import InvalidEventType, PublishFailure
from ..logger import CorrelationAdapter
from ..messaging.bus import BrokerConnection
from ..models import VALID_EVENTS, Order
from .store import OrderStore

logger = logging.getLogger(__name__)


class OrderIntake:
    """Accepts ticket orders, records them and queues them for fulfillment."""

    def __init__(self, store: OrderStore, broker: BrokerConnection, queue: str = "ticket-order"):
        self.store = store
        self.broker = broker
        self.queue = queue
        self.published = 0
        self.unqueued = 0

    async def submit_order(self, event_type: str, customer: str, quantity: int = 1) -> Order:
        """
        Validate, store and publish a new order.

        Raises InvalidEventType for anything outside VALID_EVENTS; in that case
        nothing is stored or published. If RabbitMQ isn't connected yet the
        order is kept but never queued, so it stays pending.
        """
        if event_type not in VALID_EVENTS:
            raise InvalidEventType(event_type, VALID_EVENTS)

        order = self.store.add(
            Order(
                id=self.store.next_id(),
                event_type=event_type,
                customer=customer,
                quantity=quantity,
            )
        )
        order_logger = CorrelationAdapter(logger, {"correlation_id": order.id})

        if self.broker.is_connected:
            try:
                await self.broker.publish(self.queue, order.to_message())
                self.published += 1
            except PublishFailure:
                self.unqueued += 1
                order_logger.error("Failed to send order to RabbitMQ", exc_info=True)
        else:
            self.unqueued += 1
            order_logger.warning("RabbitMQ not connected - order created but not queued for processing")

        order_logger.info(
            f"Ticket order received: {quantity}x {event_type} for {customer}",
            extra={"event_type": event_type, "customer": customer, "quantity": quantity},
        )
        return order

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.store.get(order_id)

    def list_orders(self) -> List[Order]:
        return self.store.all()

    def list_orders_by_customer(self, name: str) -> List[Order]:
        return self.store.by_customer(name)
