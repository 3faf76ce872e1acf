"""docgen worker service entry point.

This module provides the main Worker class that:
- Connects to RabbitMQ, retrying until the broker is reachable
- Consumes conversion jobs one at a time and hands them to the JobProcessor
- Exits after a fixed number of jobs so the supervisor restarts it fresh
- Stops between jobs on SIGTERM/SIGINT

Exit codes of run():
    0: job limit reached or shutdown requested
    1: broker lost mid-run, or any unexpected failure
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, NoReturn

from aio_pika.exceptions import AMQPError

from docgen.core.errors import BrokerConnectionError
from docgen.core.logging import configure_logging
from docgen.core.settings import get_settings
from docgen.services.job_queue import JobQueueClient, QueueMessage
from docgen.services.transfer import TransferClient
from docgen.worker.processor import JobProcessor

if TYPE_CHECKING:
    from docgen.core.config import Settings

logger = logging.getLogger(__name__)


class WorkerExit(str, Enum):
    """Why the consume loop returned."""

    JOB_LIMIT = "job_limit"
    SHUTDOWN = "shutdown"


class Worker:
    """Background worker that processes conversion jobs from RabbitMQ.

    Messages are handled strictly one after another. Scale out by running
    more worker processes against the same queue.

    Example:
        worker = Worker(get_settings())
        reason = await worker.start()
    """

    def __init__(
        self,
        settings: Settings,
        queue_client: JobQueueClient | None = None,
        processor: JobProcessor | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            settings: Application settings.
            queue_client: Queue client to use. Built from settings when None.
            processor: Job processor to use. Built around a fresh TransferClient when None.
            shutdown_event: Event that requests a stop between jobs.
        """
        self.settings = settings
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self._queue_client = queue_client or JobQueueClient(settings.broker)
        self._processor = processor
        self._shutdown_event = shutdown_event or asyncio.Event()
        self._started_at: datetime | None = None
        self._jobs_processed = 0
        self._consuming = False

    @property
    def consuming(self) -> bool:
        """True once the queue is open and messages are being consumed."""
        return self._consuming

    @property
    def jobs_processed(self) -> int:
        return self._jobs_processed

    async def start(self) -> WorkerExit:
        """Connect and process jobs until the job limit or a shutdown request.

        Returns:
            The reason the loop ended.

        Raises:
            BrokerConnectionError: The broker connection was lost mid-run.
        """
        self._started_at = datetime.now(UTC)
        logger.info(
            "Worker starting: worker_id=%s, queue=%s, broker=%s:%d",
            self.worker_id,
            self.settings.broker.queue,
            self.settings.broker.host,
            self.settings.broker.port,
        )

        try:
            await self._queue_client.open()
            logger.info("Listening on queue '%s'", self.settings.broker.queue)
            self._consuming = True

            async with self._processor_context() as processor:
                return await self._consume(processor)
        finally:
            self._consuming = False
            await self._queue_client.close()
            logger.info(
                "Worker stopped: worker_id=%s, processed=%d, uptime=%s",
                self.worker_id,
                self._jobs_processed,
                self._get_uptime(),
            )

    def request_stop(self) -> None:
        """Request a stop; a job in progress still runs to completion."""
        logger.info("Worker shutdown requested: worker_id=%s", self.worker_id)
        self._shutdown_event.set()

    @contextlib.asynccontextmanager
    async def _processor_context(self) -> AsyncIterator[JobProcessor]:
        if self._processor is not None:
            yield self._processor
            return
        async with TransferClient(timeout=self.settings.worker.request_timeout) as transfer:
            yield JobProcessor.from_settings(transfer, self.settings)

    async def _consume(self, processor: JobProcessor) -> WorkerExit:
        """Main loop: fetch, process, repeat until the job limit is reached."""
        max_jobs = self.settings.worker.max_jobs
        messages = self._queue_client.messages()
        try:
            while self._jobs_processed < max_jobs:
                message = await self._next_message(messages)
                if message is None:
                    return WorkerExit.SHUTDOWN

                await processor.process(message)
                self._jobs_processed += 1

                if self._shutdown_event.is_set():
                    return WorkerExit.SHUTDOWN
        finally:
            await messages.aclose()

        logger.info("Processed %d jobs. Restarting to free memory", self._jobs_processed)
        return WorkerExit.JOB_LIMIT

    async def _next_message(
        self, messages: AsyncGenerator[QueueMessage, None]
    ) -> QueueMessage | None:
        """Wait for the next delivery, or return None if shutdown is requested first."""
        if self._shutdown_event.is_set():
            return None

        next_task = asyncio.ensure_future(anext(messages))
        stop_task = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            await asyncio.wait({next_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()

        if next_task.done():
            try:
                return next_task.result()
            except StopAsyncIteration as e:
                raise BrokerConnectionError("Message stream ended unexpectedly") from e

        next_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await next_task
        return None

    def _get_uptime(self) -> str:
        """Calculate worker uptime as a human-readable string."""
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"


def _handle_shutdown(signum: int, worker: Worker, task: asyncio.Task[WorkerExit]) -> None:
    """Handle shutdown signals gracefully.

    While the worker is still waiting for the broker there is nothing to
    finish, so the task is cancelled outright.
    """
    logger.info("Shutdown signal received (signal=%d)", signum)
    if worker.consuming:
        worker.request_stop()
    else:
        task.cancel()


async def _async_main(settings: Settings) -> WorkerExit:
    """Async entry point for the worker."""
    worker = Worker(settings)
    task = asyncio.ensure_future(worker.start())

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, _handle_shutdown, signum, worker, task)

    return await task


def run() -> NoReturn:
    """Run the worker process.

    This is the main entry point for the worker. It:
    - Loads configuration from environment variables
    - Sets up logging
    - Registers signal handlers for graceful shutdown
    - Runs the async worker loop and maps its outcome to an exit code
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("docgen worker starting...")

    try:
        reason = asyncio.run(_async_main(settings))
    except asyncio.CancelledError:
        logger.info("Worker interrupted before it started consuming")
        sys.exit(0)
    except (BrokerConnectionError, AMQPError, ConnectionError) as e:
        logger.error("Broker connection lost: %s", e)
        sys.exit(1)
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("docgen worker exiting: reason=%s", reason.value)
    sys.exit(0)


if __name__ == "__main__":
    run()
