"""RabbitMQ job queue client.

This client wraps aio-pika with the delivery contract the conversion
pipeline relies on:

- The queue is durable with a per-queue message TTL; declaring it is
  idempotent, so every process declares it at startup.
- Messages are published persistent to the default exchange.
- Consumption uses manual acknowledgement with a prefetch count of 1, so a
  worker holds at most one unacknowledged delivery at a time.
- Each delivery is wrapped in a QueueMessage whose ack() may be awaited
  exactly once.

Boot-time connection is retried with a capped backoff and, for the worker,
no attempt ceiling: the worker must outlive a broker that starts slower
than it does. Once connected, the connection is not robust; losing it is
fatal and the process supervisor restarts the worker.

Usage:
    async with JobQueueClient(settings.broker) as queue:
        async for message in queue.messages():
            ...
            await message.ack()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.exceptions import AMQPError

from docgen.core.errors import AlreadyAcknowledgedError, BrokerConnectionError

if TYPE_CHECKING:
    from aio_pika.abc import (
        AbstractChannel,
        AbstractConnection,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from docgen.core.config import BrokerSettings

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable["AbstractConnection"]]
Sleeper = Callable[[float], Awaitable[Any]]


class QueueMessage:
    """One broker delivery with a single-use acknowledgement handle."""

    def __init__(
        self,
        body: bytes,
        ack: Callable[[], Awaitable[Any]],
        delivery_tag: int | None = None,
        redelivered: bool = False,
        message_id: str | None = None,
    ) -> None:
        self.body = body
        self.delivery_tag = delivery_tag
        self.redelivered = redelivered
        self.message_id = message_id
        self._ack = ack
        self._acknowledged = False

    @classmethod
    def from_incoming(cls, message: AbstractIncomingMessage) -> QueueMessage:
        """Wrap an aio-pika incoming message."""
        return cls(
            body=message.body,
            ack=message.ack,
            delivery_tag=message.delivery_tag,
            redelivered=bool(message.redelivered),
            message_id=message.message_id,
        )

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged

    async def ack(self) -> None:
        """Acknowledge the delivery, removing it from the queue.

        Raises:
            AlreadyAcknowledgedError: The handle was already used.
        """
        if self._acknowledged:
            msg = f"Message already acknowledged: delivery_tag={self.delivery_tag}"
            raise AlreadyAcknowledgedError(msg)
        self._acknowledged = True
        await self._ack()

    def __repr__(self) -> str:
        return (
            f"QueueMessage(delivery_tag={self.delivery_tag!r}, "
            f"redelivered={self.redelivered!r}, size={len(self.body)})"
        )


def retry_delay(attempt: int, initial: float, maximum: float) -> float:
    """Delay before retrying after the given failed attempt (1-based), capped."""
    return min(initial * 2 ** (attempt - 1), maximum)


class JobQueueClient:
    """aio-pika client for the durable conversion queue.

    Attributes:
        settings: Broker settings (host, credentials, queue, TTL, prefetch).
    """

    def __init__(
        self,
        settings: BrokerSettings,
        connector: Connector = aio_pika.connect,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Broker settings.
            connector: Coroutine function opening a connection from an AMQP URL.
            sleep: Coroutine function used to wait between connection attempts.
        """
        self.settings = settings
        self._connector = connector
        self._sleep = sleep
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._queue: AbstractQueue | None = None

    async def __aenter__(self) -> JobQueueClient:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(self, max_attempts: int | None = None) -> AbstractConnection:
        """Connect to the broker, retrying until it is reachable.

        Args:
            max_attempts: Give up after this many attempts. None retries forever.

        Returns:
            The open connection.

        Raises:
            BrokerConnectionError: max_attempts reached.
        """
        host, port = self.settings.host, self.settings.port
        attempt = 0
        while True:
            attempt += 1
            try:
                connection = await self._connector(self.settings.url)
            except (AMQPError, OSError) as e:
                if max_attempts is not None and attempt >= max_attempts:
                    raise BrokerConnectionError(
                        f"Broker unavailable at {host}:{port} after {attempt} attempt(s): {e}"
                    ) from e
                delay = retry_delay(
                    attempt, self.settings.retry_delay, self.settings.retry_max_delay
                )
                logger.warning(
                    "Broker unavailable at %s:%d (attempt %d: %s), retrying in %.1fs",
                    host,
                    port,
                    attempt,
                    e,
                    delay,
                )
                await self._sleep(delay)
                continue

            logger.info("Connected to broker at %s:%d (attempt %d)", host, port, attempt)
            self._connection = connection
            return connection

    async def open(self, max_attempts: int | None = None) -> None:
        """Connect, open a channel with the configured prefetch and declare the queue."""
        connection = await self.connect(max_attempts=max_attempts)
        self._channel = await connection.channel()
        await self._channel.set_qos(prefetch_count=self.settings.prefetch_count)
        self._queue = await self.declare_queue()

    async def declare_queue(self, name: str | None = None) -> AbstractQueue:
        """Declare a durable queue with the configured message TTL.

        Args:
            name: Queue name. Defaults to the configured queue.
        """
        channel = self._get_channel()
        queue_name = name or self.settings.queue
        queue = await channel.declare_queue(
            queue_name,
            durable=True,
            arguments={"x-message-ttl": self.settings.message_ttl_ms},
        )
        logger.debug(
            "Declared queue %s (ttl=%dms)", queue_name, self.settings.message_ttl_ms
        )
        return queue

    async def publish(
        self, body: bytes | str | dict[str, Any], queue_name: str | None = None
    ) -> None:
        """Publish a persistent message to a queue through the default exchange.

        Args:
            body: Message body; dicts are JSON-encoded.
            queue_name: Target queue. Defaults to the configured queue.
        """
        channel = self._get_channel()
        if isinstance(body, dict):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")

        routing_key = queue_name or self.settings.queue
        await channel.default_exchange.publish(
            Message(
                body,
                content_type="application/json",
                delivery_mode=DeliveryMode.PERSISTENT,
            ),
            routing_key=routing_key,
        )
        logger.info("Published %d bytes to queue %s", len(body), routing_key)

    async def messages(self) -> AsyncGenerator[QueueMessage, None]:
        """Yield deliveries from the configured queue, one at a time.

        Messages must be acknowledged by the caller.

        Raises:
            BrokerConnectionError: The consumer stopped (channel or connection closed).
        """
        if self._queue is None:
            msg = "JobQueueClient must be opened before consuming"
            raise RuntimeError(msg)

        async with self._queue.iterator() as iterator:
            async for incoming in iterator:
                yield QueueMessage.from_incoming(incoming)

        raise BrokerConnectionError(f"Consumer on queue {self.settings.queue} stopped")

    async def close(self) -> None:
        """Close the channel and the connection. Safe to call more than once."""
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None
        self._queue = None

        if channel is not None and not channel.is_closed:
            await channel.close()
        if connection is not None and not connection.is_closed:
            await connection.close()
            logger.info("Broker connection closed")

    def _get_channel(self) -> AbstractChannel:
        if self._channel is None:
            msg = "JobQueueClient must be opened before use"
            raise RuntimeError(msg)
        return self._channel
