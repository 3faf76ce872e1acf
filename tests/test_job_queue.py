"""Tests for the RabbitMQ job queue client.

The aio-pika connection is replaced by mocks injected through the client's
connector, so these tests need no running broker.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aio_pika import DeliveryMode

from docgen.core.errors import AlreadyAcknowledgedError, BrokerConnectionError
from docgen.services.job_queue import JobQueueClient, QueueMessage, retry_delay


class FakeIterator:
    """Stand-in for aio-pika's queue iterator context manager."""

    def __init__(self, incoming: list) -> None:
        self._incoming = list(incoming)

    async def __aenter__(self) -> FakeIterator:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    def __aiter__(self) -> FakeIterator:
        return self

    async def __anext__(self):
        if not self._incoming:
            raise StopAsyncIteration
        return self._incoming.pop(0)


def make_incoming(body: bytes, delivery_tag: int) -> MagicMock:
    incoming = MagicMock()
    incoming.body = body
    incoming.delivery_tag = delivery_tag
    incoming.redelivered = False
    incoming.message_id = f"msg-{delivery_tag}"
    incoming.ack = AsyncMock()
    return incoming


def make_connection(incoming: list | None = None) -> MagicMock:
    """Build a mock connection whose channel declares a queue over ``incoming``."""
    queue = MagicMock()
    queue.iterator.return_value = FakeIterator(incoming or [])

    channel = MagicMock()
    channel.is_closed = False
    channel.close = AsyncMock()
    channel.set_qos = AsyncMock()
    channel.declare_queue = AsyncMock(return_value=queue)
    channel.default_exchange.publish = AsyncMock()

    connection = MagicMock()
    connection.is_closed = False
    connection.close = AsyncMock()
    connection.channel = AsyncMock(return_value=channel)
    return connection


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


class TestRetryDelay:
    """Tests for the capped backoff."""

    def test_fixed_delay_with_default_bounds(self):
        assert [retry_delay(n, 5, 5) for n in (1, 2, 10)] == [5, 5, 5]

    def test_doubles_until_cap(self):
        assert [retry_delay(n, 1, 8) for n in range(1, 6)] == [1, 2, 4, 8, 8]


class TestConnect:
    """Tests for boot-time connection retry."""

    async def test_retries_until_broker_reachable(self, broker_settings, sleep):
        connection = make_connection()
        connector = AsyncMock(
            side_effect=[ConnectionRefusedError("refused"), OSError("no route"), connection]
        )
        client = JobQueueClient(broker_settings, connector=connector, sleep=sleep)

        result = await client.connect()

        assert result is connection
        assert connector.await_count == 3
        connector.assert_awaited_with(broker_settings.url)
        assert [c.args[0] for c in sleep.await_args_list] == [0.01, 0.02]
        assert client.is_open

    async def test_unbounded_by_default(self, broker_settings, sleep):
        """Without max_attempts the client keeps trying."""
        failures = [ConnectionRefusedError("refused")] * 50
        connector = AsyncMock(side_effect=[*failures, make_connection()])
        client = JobQueueClient(broker_settings, connector=connector, sleep=sleep)

        await client.connect()

        assert sleep.await_count == 50
        assert max(c.args[0] for c in sleep.await_args_list) == broker_settings.retry_max_delay

    async def test_gives_up_after_max_attempts(self, broker_settings, sleep):
        connector = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        client = JobQueueClient(broker_settings, connector=connector, sleep=sleep)

        with pytest.raises(BrokerConnectionError, match="after 1 attempt"):
            await client.connect(max_attempts=1)

        sleep.assert_not_awaited()
        assert not client.is_open

    async def test_logs_each_failed_attempt(self, broker_settings, sleep, caplog):
        connector = AsyncMock(side_effect=[ConnectionRefusedError("refused"), make_connection()])
        client = JobQueueClient(broker_settings, connector=connector, sleep=sleep)

        await client.connect()

        assert "Broker unavailable at rabbit.test:5672 (attempt 1" in caplog.text


class TestOpen:
    """Tests for channel setup and queue declaration."""

    async def test_sets_prefetch_and_declares_durable_queue(self, broker_settings):
        connection = make_connection()
        client = JobQueueClient(broker_settings, connector=AsyncMock(return_value=connection))

        await client.open()

        channel = connection.channel.return_value
        channel.set_qos.assert_awaited_once_with(prefetch_count=1)
        channel.declare_queue.assert_awaited_once_with(
            "documentgenerator_create",
            durable=True,
            arguments={"x-message-ttl": 86_400_000},
        )

    async def test_context_manager_closes(self, broker_settings):
        connection = make_connection()
        client = JobQueueClient(broker_settings, connector=AsyncMock(return_value=connection))

        async with client:
            assert client.is_open

        connection.channel.return_value.close.assert_awaited_once()
        connection.close.assert_awaited_once()

    async def test_close_is_idempotent(self, broker_settings):
        connection = make_connection()
        client = JobQueueClient(broker_settings, connector=AsyncMock(return_value=connection))
        await client.open()

        await client.close()
        await client.close()

        connection.close.assert_awaited_once()

    async def test_use_before_open_refused(self, broker_settings):
        client = JobQueueClient(broker_settings)
        with pytest.raises(RuntimeError, match="opened"):
            await client.publish({"file": "http://h/a.docx"})


class TestPublish:
    """Tests for persistent publishing."""

    async def test_publishes_json_to_default_exchange(self, broker_settings):
        connection = make_connection()
        client = JobQueueClient(broker_settings, connector=AsyncMock(return_value=connection))
        await client.open()

        await client.publish({"file": "http://h/q1.docx", "back_url": "http://cb/x"})

        exchange = connection.channel.return_value.default_exchange
        message = exchange.publish.await_args.args[0]
        assert json.loads(message.body) == {"file": "http://h/q1.docx", "back_url": "http://cb/x"}
        assert message.delivery_mode == DeliveryMode.PERSISTENT
        assert message.content_type == "application/json"
        assert exchange.publish.await_args.kwargs["routing_key"] == "documentgenerator_create"

    async def test_publish_to_other_queue(self, broker_settings):
        connection = make_connection()
        client = JobQueueClient(broker_settings, connector=AsyncMock(return_value=connection))
        await client.open()

        await client.publish(b'{"file": "http://h/a.docx"}', queue_name="priority")

        exchange = connection.channel.return_value.default_exchange
        assert exchange.publish.await_args.kwargs["routing_key"] == "priority"


class TestMessages:
    """Tests for consumption."""

    async def test_yields_wrapped_deliveries(self, broker_settings):
        incoming = [make_incoming(b'{"file": "a"}', 1), make_incoming(b'{"file": "b"}', 2)]
        client = JobQueueClient(
            broker_settings, connector=AsyncMock(return_value=make_connection(incoming))
        )
        await client.open()

        stream = client.messages()
        first = await anext(stream)
        second = await anext(stream)

        assert (first.body, first.delivery_tag, first.message_id) == (b'{"file": "a"}', 1, "msg-1")
        assert second.delivery_tag == 2
        await first.ack()
        incoming[0].ack.assert_awaited_once()
        await stream.aclose()

    async def test_consumer_end_is_a_broker_failure(self, broker_settings):
        """The iterator only ends when the channel goes away."""
        client = JobQueueClient(
            broker_settings, connector=AsyncMock(return_value=make_connection([]))
        )
        await client.open()

        with pytest.raises(BrokerConnectionError, match="stopped"):
            await anext(client.messages())

    async def test_consume_before_open_refused(self, broker_settings):
        client = JobQueueClient(broker_settings)
        with pytest.raises(RuntimeError):
            await anext(client.messages())


class TestQueueMessage:
    """Tests for the single-use acknowledgement handle."""

    async def test_ack_once(self):
        ack = AsyncMock()
        message = QueueMessage(b"{}", ack=ack, delivery_tag=7)

        assert not message.acknowledged
        await message.ack()

        assert message.acknowledged
        ack.assert_awaited_once()

    async def test_second_ack_raises(self):
        ack = AsyncMock()
        message = QueueMessage(b"{}", ack=ack, delivery_tag=7)
        await message.ack()

        with pytest.raises(AlreadyAcknowledgedError, match="delivery_tag=7"):
            await message.ack()
        ack.assert_awaited_once()

    def test_from_incoming(self):
        incoming = make_incoming(b"body", 3)
        incoming.redelivered = True

        message = QueueMessage.from_incoming(incoming)

        assert message.body == b"body"
        assert message.delivery_tag == 3
        assert message.redelivered is True
        assert "delivery_tag=3" in repr(message)
