"""Job processor: turns one queue message into a finished or failed conversion.

Pipeline for one message:

1. Parse the body into a ConversionJob.
2. Download the source document into a scratch file.
3. Convert it through the gateway and write the PDF next to it.
4. If the job has a callback URL, deliver the PDF with the callback protocol.
5. Remove both scratch files.
6. Acknowledge the message.

Every failure is terminal for its message: a malformed payload, an
unreachable source or an unreachable callback does not get better on blind
retry, and requeueing it would occupy the worker's single in-flight slot
forever. Failures are logged with their step and the message is acknowledged
like a success.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docgen.core.errors import JobError, JobStep
from docgen.services.callback import CallbackClient
from docgen.services.gateway import ConversionGatewayClient
from docgen.worker.job import ConversionJob, WorkingFiles

if TYPE_CHECKING:
    from docgen.core.config import Settings
    from docgen.services.job_queue import QueueMessage
    from docgen.services.transfer import TransferClient

logger = logging.getLogger(__name__)


class JobProcessor:
    """Processes conversion jobs with a fixed set of collaborators.

    One instance is built per worker and reused for every message; it holds
    no per-job state, so processing the same message twice makes the same
    external calls.

    Example:
        async with TransferClient(timeout=300) as transfer:
            processor = JobProcessor.from_settings(transfer, settings)
            await processor.process(message)
    """

    def __init__(
        self,
        transfer: TransferClient,
        gateway: ConversionGatewayClient,
        callback: CallbackClient,
        scratch_dir: str | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            transfer: HTTP client used for source downloads.
            gateway: Conversion gateway client.
            callback: Callback protocol client.
            scratch_dir: Directory for scratch files (system temp dir when None).
        """
        self._transfer = transfer
        self._gateway = gateway
        self._callback = callback
        self._scratch_dir = scratch_dir

    @classmethod
    def from_settings(cls, transfer: TransferClient, settings: Settings) -> JobProcessor:
        """Build a processor and its gateway/callback clients around one transfer client."""
        return cls(
            transfer=transfer,
            gateway=ConversionGatewayClient(
                transfer,
                base_url=settings.gateway.url,
                convert_path=settings.gateway.convert_path,
            ),
            callback=CallbackClient(transfer),
            scratch_dir=settings.worker.scratch_dir,
        )

    async def process(self, message: QueueMessage) -> None:
        """Process one message and acknowledge it.

        Job failures are logged, never raised. Only errors from the
        acknowledgement itself (a lost broker) propagate. A cancelled task
        leaves the message unacknowledged so the broker redelivers it.
        """
        job: ConversionJob | None = None
        logger.info(
            "Processing message: delivery_tag=%s, redelivered=%s",
            message.delivery_tag,
            message.redelivered,
        )

        try:
            job = ConversionJob.from_message(message.body)
            await self._run(job)
        except JobError as e:
            logger.error(
                "Job failed: step=%s, source=%s, error=%s",
                e.step.value,
                job.source_file_url if job else "<unparsed>",
                e.message,
            )
        except Exception as e:
            logger.exception(
                "Job failed unexpectedly: source=%s, error=%s",
                job.source_file_url if job else "<unparsed>",
                e,
            )

        await message.ack()
        logger.info("Message acknowledged: delivery_tag=%s", message.delivery_tag)

    async def _run(self, job: ConversionJob) -> None:
        with WorkingFiles(suffix=job.source_suffix, scratch_dir=self._scratch_dir) as files:
            logger.info("Downloading %s", job.source_file_url)
            size = await self._transfer.download(job.source_file_url, files.input_path)
            logger.debug("Downloaded %d bytes to %s", size, files.input_path)

            logger.info("Converting %s via %s", job.gateway_filename, self._gateway.convert_url)
            pdf = await self._gateway.convert(files.input_path, job.gateway_filename)
            try:
                files.output_path.write_bytes(pdf)
            except OSError as e:
                raise JobError(f"Could not write PDF: {e}", step=JobStep.CONVERT) from e
            logger.info("Conversion successful: %s, %d bytes", job.pdf_filename, len(pdf))

            if job.callback_url:
                session = await self._callback.deliver(
                    job.callback_url, files.output_path, job.pdf_filename
                )
                logger.info(
                    "Callback delivered: url=%s, target=%s",
                    job.callback_url,
                    session.target_path,
                )

        logger.info("Job completed: source=%s", job.source_file_url)
