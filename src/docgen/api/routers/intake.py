"""Job intake router.

Accepts a conversion request over HTTP and publishes it to the job queue.
Callers either POST the job directly:

    {"file": "http://h/reports/q1.docx", "back_url": "http://cb/x"}

or wrap it in ``params`` (form-encoded as ``params[file]=...``), optionally
naming the target queue in ``QUEUE``. When ``api.security_token`` is
configured, the ``token`` query parameter must match it.
"""

from __future__ import annotations

import hmac
import json
import logging
import re
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Annotated, Any

from aio_pika.exceptions import AMQPError
from fastapi import APIRouter, Query, Request

from docgen.api.middleware.errors import (
    AuthorizationError,
    ServiceUnavailableError,
    ValidationAPIError,
)
from docgen.core.errors import BrokerConnectionError, ValidationError
from docgen.worker.job import ConversionJob

if TYPE_CHECKING:
    from docgen.core.config import BrokerSettings, Settings
    from docgen.services.job_queue import JobQueueClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["intake"])

QueueFactory = Callable[["BrokerSettings"], "JobQueueClient"]

PARAMS_FIELD = "params"
QUEUE_FIELD = "QUEUE"

_BRACKET_KEY = re.compile(r"\[([^\]]*)\]")


def unflatten_form(items: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Rebuild nested mappings from bracketed form keys.

    ``params[file]=x`` becomes ``{"params": {"file": "x"}}``. Later keys
    win over earlier ones; a scalar is replaced if a nested key follows.
    """
    result: dict[str, Any] = {}
    for key, value in items:
        head, _, rest = key.partition("[")
        parts = [head, *_BRACKET_KEY.findall("[" + rest)] if rest else [head]
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return result


async def read_fields(request: Request) -> dict[str, Any]:
    """Read the request body as a mapping, from JSON or form encoding."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            fields = await request.json()
        except ValueError as e:
            raise ValidationAPIError(f"Malformed JSON body: {e}") from e
        if not isinstance(fields, dict):
            raise ValidationAPIError("JSON body must be an object")
        return fields

    form = await request.form()
    return unflatten_form((key, value) for key, value in form.multi_items())


def extract_job(fields: dict[str, Any]) -> ConversionJob:
    """Pick the job payload out of the request fields and validate it.

    Raises:
        ValidationAPIError: The payload is not a valid conversion job.
    """
    payload = fields.get(PARAMS_FIELD, fields)
    if not isinstance(payload, str):
        payload = json.dumps(payload, default=str)
    try:
        return ConversionJob.from_message(payload)
    except ValidationError as e:
        raise ValidationAPIError(e.message) from e


def check_token(settings: Settings, token: str | None) -> None:
    """Compare the request token with the configured one, if any."""
    expected = settings.api.security_token
    if expected is None:
        return
    if token is None or not hmac.compare_digest(
        token.encode("utf-8"), expected.get_secret_value().encode("utf-8")
    ):
        raise AuthorizationError("Access denied")


async def publish_job(
    queue_factory: QueueFactory,
    settings: Settings,
    job: ConversionJob,
    queue_name: str,
) -> None:
    """Publish one job with a single connection attempt.

    Raises:
        ServiceUnavailableError: The broker could not be reached or rejected the publish.
    """
    client = queue_factory(settings.broker)
    try:
        await client.open(max_attempts=1)
        if queue_name != settings.broker.queue:
            await client.declare_queue(queue_name)
        await client.publish(
            job.model_dump(by_alias=True, exclude_none=True), queue_name=queue_name
        )
    except (BrokerConnectionError, AMQPError) as e:
        logger.error("Could not enqueue job to %s: %s", queue_name, e)
        raise ServiceUnavailableError("Message broker unavailable") from e
    finally:
        await client.close()


@router.post("/")
async def enqueue_job(
    request: Request,
    token: Annotated[str | None, Query()] = None,
) -> dict[str, Any]:
    """Queue one document for conversion."""
    settings: Settings = request.app.state.settings
    client_host = request.client.host if request.client else "unknown"

    try:
        check_token(settings, token)
    except AuthorizationError:
        logger.warning("Access denied: invalid token from %s", client_host)
        raise

    logger.info("New request received from %s", client_host)
    fields = await read_fields(request)
    job = extract_job(fields)

    # A flat body is the job itself; only a params envelope may pick the queue
    queue_name = settings.broker.queue
    if PARAMS_FIELD in fields:
        queue_name = fields.get(QUEUE_FIELD) or queue_name
    if not isinstance(queue_name, str):
        raise ValidationAPIError(f"{QUEUE_FIELD} must be a string")

    await publish_job(request.app.state.queue_factory, settings, job, queue_name)
    logger.info("Task queued successfully to %s: source=%s", queue_name, job.source_file_url)

    return {"success": True, "status": "success", "data": []}
