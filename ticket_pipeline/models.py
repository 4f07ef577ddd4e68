from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .errors import MessageParseError


class EventType(str, Enum):
    MOVIE = "movie"
    GAME = "game"
    CONCERT = "concert"
    SPORTS = "sports"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FULFILLED = "fulfilled"


VALID_EVENTS = [event.value for event in EventType]

EVENT_DESCRIPTIONS = {
    "movie": "Movie tickets",
    "game": "Gaming event tickets",
    "concert": "Concert tickets",
    "sports": "Sports event tickets",
}

# Ticket prices in dollars, used for revenue. Unknown types earn nothing.
TICKET_PRICES = {"movie": 15, "game": 50, "concert": 75, "sports": 60}

# Simulated fulfillment time per event type, in milliseconds.
PROCESSING_TIMES_MS = {"movie": 2000, "game": 3000, "concert": 4000, "sports": 3500}
DEFAULT_PROCESSING_TIME_MS = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ticket_price(event_type: str) -> int:
    return TICKET_PRICES.get(event_type, 0)


def processing_time_ms(event_type: str) -> int:
    return PROCESSING_TIMES_MS.get(event_type, DEFAULT_PROCESSING_TIME_MS)


class WireModel(BaseModel):
    """Base for records that travel over the broker as camelCase JSON."""

    model_config = ConfigDict(populate_by_name=True)

    def to_message(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_message(cls, body: bytes):
        try:
            return cls.model_validate_json(body)
        except ValidationError as exc:
            raise MessageParseError(f"Invalid {cls.__name__} message: {exc}") from exc


class Order(WireModel):
    """A ticket order as stored by the order API and queued on ticket-order.

    `event_type` is a plain string on the wire so that a consumer can still
    handle orders for types it doesn't know about.
    """

    id: int = Field(ge=1)
    event_type: str = Field(alias="eventType", validation_alias=AliasChoices("eventType", "event"))
    customer: str
    quantity: int = Field(ge=1)
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")


class CompletionEvent(WireModel):
    """Published on the analytics queue once an order has been fulfilled."""

    order_id: int = Field(alias="orderId", validation_alias=AliasChoices("orderId", "id"))
    event_type: str = Field(alias="eventType", validation_alias=AliasChoices("eventType", "event"))
    customer: str
    quantity: int = Field(ge=1)
    fulfilled_at: datetime = Field(default_factory=utcnow, alias="fulfilledAt")

    @classmethod
    def for_order(cls, order: Order, fulfilled_at: Optional[datetime] = None) -> "CompletionEvent":
        return cls(
            order_id=order.id,
            event_type=order.event_type,
            customer=order.customer,
            quantity=order.quantity,
            fulfilled_at=fulfilled_at or utcnow(),
        )


class ConsumerState(BaseModel):
    """Whether a supervised consumer currently holds a broker subscription."""

    running: bool = False
    tag: Optional[str] = None
