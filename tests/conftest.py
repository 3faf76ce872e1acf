"""Pytest configuration and shared fixtures.

Tests are fully in-process: HTTP collaborators (source server, gateway,
callback receiver) are served by httpx.MockTransport and the broker is
replaced by mocks, so no RabbitMQ or Gotenberg instance is needed.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from docgen.core.config import (
    APISettings,
    BrokerSettings,
    GatewaySettings,
    Settings,
    WorkerSettings,
)
from docgen.services.job_queue import QueueMessage

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served, in order."""

    def __init__(self, handler: Handler) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def requests_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]


# ---------------------------------------------------------------------------
# Settings fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def broker_settings() -> BrokerSettings:
    """Broker settings with fast retries for tests."""
    return BrokerSettings(
        host="rabbit.test",
        queue="documentgenerator_create",
        retry_delay=0.01,
        retry_max_delay=0.05,
    )


@pytest.fixture
def settings(broker_settings: BrokerSettings, tmp_path) -> Settings:
    """Complete settings pointing at test hosts, independent of the environment."""
    return Settings(
        _env_file=None,
        broker=broker_settings,
        gateway=GatewaySettings(url="http://gotenberg.test:3000"),
        worker=WorkerSettings(max_jobs=3, request_timeout=5.0, scratch_dir=str(tmp_path)),
        api=APISettings(),
    )


# ---------------------------------------------------------------------------
# HTTP and queue fakes
# ---------------------------------------------------------------------------
@pytest.fixture
def recording_transport() -> Callable[[Handler], RecordingTransport]:
    """Factory for a RecordingTransport around a request handler."""
    return RecordingTransport


@pytest.fixture
def make_message() -> Callable[..., QueueMessage]:
    """Factory for QueueMessages whose ack is an AsyncMock."""

    def _make(body: bytes | str, delivery_tag: int = 1) -> QueueMessage:
        if isinstance(body, str):
            body = body.encode("utf-8")
        return QueueMessage(body=body, ack=AsyncMock(), delivery_tag=delivery_tag)

    return _make
