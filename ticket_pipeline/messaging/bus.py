import asyncio
import enum
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Tuple

import pika
import pika.exceptions
from pika.adapters.asyncio_connection import AsyncioConnection

from ..errors import BrokerUnavailable, PublishFailure

logger = logging.getLogger(__name__)

PERSISTENT = 2  # delivery_mode that makes RabbitMQ write the message to disk


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry: `max_attempts` tries, `delay` seconds apart."""

    max_attempts: int = 10
    delay: float = 5.0


class Delivery:
    """One message handed to a consumer, with the means to settle it."""

    def __init__(self, channel, method, properties, body: bytes):
        self._channel = channel
        self.delivery_tag = method.delivery_tag
        self.redelivered = bool(getattr(method, "redelivered", False))
        self.routing_key = getattr(method, "routing_key", None)
        self.properties = properties
        self.body = body

    def ack(self) -> None:
        self._channel.basic_ack(delivery_tag=self.delivery_tag)

    def nack(self, requeue: bool = True) -> None:
        self._channel.basic_nack(delivery_tag=self.delivery_tag, requeue=requeue)


Handler = Callable[[Delivery], Awaitable[None]]
Opener = Callable[[], Awaitable[Tuple[Any, Any]]]


async def open_pika_channel(url: str, timeout: float = 10.0) -> Tuple[AsyncioConnection, Any]:
    """Open an AsyncioConnection on the running loop and one channel on it.

    Raises asyncio.TimeoutError when the channel is not open after `timeout`
    seconds; the half-open connection is closed first.
    """
    loop = asyncio.get_running_loop()
    opened = loop.create_future()

    def on_channel_open(channel):
        if not opened.done():
            opened.set_result((connection, channel))

    def on_open(conn):
        conn.channel(on_open_callback=on_channel_open)

    def on_open_error(conn, error):
        if not opened.done():
            if not isinstance(error, BaseException):
                error = pika.exceptions.AMQPConnectionError(error)
            opened.set_exception(error)

    def on_close(conn, reason):
        if not opened.done():
            opened.set_exception(pika.exceptions.AMQPConnectionError(reason))
        else:
            logger.warning("RabbitMQ connection closed", extra={"reason": str(reason)})

    connection = AsyncioConnection(
        parameters=pika.URLParameters(url),
        on_open_callback=on_open,
        on_open_error_callback=on_open_error,
        on_close_callback=on_close,
        custom_ioloop=loop,
    )
    try:
        return await asyncio.wait_for(opened, timeout)
    except asyncio.TimeoutError:
        try:
            connection.close()
        except pika.exceptions.AMQPError:
            logger.debug("Ignoring error while closing timed out connection", exc_info=True)
        raise


class BrokerConnection:
    """
    Owns the RabbitMQ connection and the single channel every stage uses.

    Connecting retries with a fixed delay and, once the channel is open,
    declares the durable queues the pipeline needs. Nothing is published or
    consumed before `connect()` has returned.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        queues: Iterable[str] = ("ticket-order", "analytics"),
        retry_policy: RetryPolicy = RetryPolicy(),
        prefetch_count: int = 0,
        rpc_timeout: float = 10.0,
        opener: Optional[Opener] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if opener is None:
            if not url:
                raise ValueError("RABBITMQ_URL not set")
            opener = functools.partial(open_pika_channel, url, timeout=rpc_timeout)
        self.queues = tuple(queues)
        self.retry_policy = retry_policy
        self.prefetch_count = prefetch_count
        self.rpc_timeout = rpc_timeout
        self._opener = opener
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._close_listeners: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()
        self.state = ConnectionState.DISCONNECTED
        self.connection = None
        self.channel = None
        self.attempts = 0

    @property
    def is_connected(self) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self.channel is not None
            and self.channel.is_open
        )

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run whenever the channel goes away."""
        self._close_listeners.append(listener)

    async def connect(self) -> None:
        """Connect with bounded retry; raises BrokerUnavailable when exhausted."""
        async with self._lock:
            if self.is_connected:
                return

            policy = self.retry_policy
            self.state = ConnectionState.CONNECTING
            last_error: Optional[BaseException] = None

            for attempt in range(1, policy.max_attempts + 1):
                self.attempts = attempt
                logger.info(
                    f"Attempting to connect to RabbitMQ... (attempt {attempt}/{policy.max_attempts})",
                    extra={"attempt": attempt, "max_attempts": policy.max_attempts},
                )
                try:
                    connection, channel = await self._opener()
                    self.connection, self.channel = connection, channel
                    await self._provision(channel)
                except Exception as exc:
                    last_error = exc
                    self._discard_connection()
                    if attempt < policy.max_attempts:
                        logger.warning(
                            f"Failed to connect to RabbitMQ, retrying in {policy.delay}s",
                            extra={"attempt": attempt, "error": str(exc)},
                        )
                        await self._sleep(policy.delay)
                    continue

                channel.add_on_close_callback(self._on_channel_closed)
                self.state = ConnectionState.CONNECTED
                logger.info("Connected to RabbitMQ", extra={"queues": list(self.queues)})
                return

            self.state = ConnectionState.FAILED
            raise BrokerUnavailable(
                f"Failed to connect to RabbitMQ after {policy.max_attempts} attempts: {last_error}"
            ) from last_error

    async def _provision(self, channel) -> None:
        # queue_declare is idempotent as long as the properties match
        for queue in self.queues:
            await self._rpc(channel.queue_declare, queue=queue, durable=True)
        if self.prefetch_count:
            await self._rpc(channel.basic_qos, prefetch_count=self.prefetch_count)

    async def _rpc(self, method, **kwargs):
        """Call a pika channel method that replies through `callback`."""
        loop = asyncio.get_running_loop()
        reply = loop.create_future()

        def on_reply(frame):
            if not reply.done():
                reply.set_result(frame)

        method(callback=on_reply, **kwargs)
        return await asyncio.wait_for(reply, self.rpc_timeout)

    def _discard_connection(self) -> None:
        connection, self.connection, self.channel = self.connection, None, None
        if connection is not None and getattr(connection, "is_open", False):
            try:
                connection.close()
            except pika.exceptions.AMQPError:
                logger.debug("Ignoring error while closing failed connection", exc_info=True)

    def _on_channel_closed(self, channel, reason) -> None:
        if channel is not self.channel:
            return
        logger.warning("RabbitMQ channel closed", extra={"reason": str(reason)})
        self.channel = None
        self.state = ConnectionState.DISCONNECTED
        for listener in self._close_listeners:
            listener()

    async def publish(self, queue: str, body: bytes) -> None:
        """Publish a persistent message to `queue` through the default exchange."""
        if not self.is_connected:
            raise PublishFailure(f"Cannot publish to {queue!r}: broker not connected")
        try:
            self.channel.basic_publish(
                exchange="",
                routing_key=queue,
                body=body,
                properties=pika.BasicProperties(
                    delivery_mode=PERSISTENT,
                    content_type="application/json",
                ),
            )
        except pika.exceptions.AMQPError as exc:
            raise PublishFailure(f"Failed to publish to {queue!r}: {exc!r}") from exc

    async def consume(self, queue: str, handler: Handler) -> str:
        """Subscribe `handler` to `queue` with manual acks; returns the consumer tag."""
        if not self.is_connected:
            raise BrokerUnavailable(f"Cannot consume from {queue!r}: broker not connected")

        def on_message(channel, method, properties, body):
            task = asyncio.ensure_future(handler(Delivery(channel, method, properties, body)))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        loop = asyncio.get_running_loop()
        subscribed = loop.create_future()

        def on_consume_ok(frame):
            if not subscribed.done():
                subscribed.set_result(frame)

        tag = self.channel.basic_consume(
            queue=queue,
            on_message_callback=on_message,
            auto_ack=False,
            callback=on_consume_ok,
        )
        await asyncio.wait_for(subscribed, self.rpc_timeout)
        logger.info("Subscribed to queue", extra={"queue": queue, "consumer_tag": tag})
        return tag

    async def cancel(self, tag: str) -> None:
        if self.is_connected:
            await self._rpc(self.channel.basic_cancel, consumer_tag=tag)
            logger.info("Cancelled subscription", extra={"consumer_tag": tag})

    async def drain(self) -> None:
        """Wait until no delivery is being handled, including ones started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.connection is not None and self.connection.is_open:
            self.connection.close()
        self.connection = None
        self.channel = None
        self.state = ConnectionState.DISCONNECTED
        logger.info("RabbitMQ connection closed")
