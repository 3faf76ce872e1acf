"""Clients for the systems the conversion pipeline talks to.

- transfer: outbound HTTP with a bounded time budget
- gateway: Gotenberg conversion endpoint
- callback: three-step locate/upload/finish receiver protocol
- job_queue: RabbitMQ queue declaration, publishing and consumption
"""

from docgen.services.callback import CallbackClient, CallbackSession
from docgen.services.gateway import ConversionGatewayClient
from docgen.services.job_queue import JobQueueClient, QueueMessage
from docgen.services.transfer import TransferClient, TransferError

__all__ = [
    "CallbackClient",
    "CallbackSession",
    "ConversionGatewayClient",
    "JobQueueClient",
    "QueueMessage",
    "TransferClient",
    "TransferError",
]
