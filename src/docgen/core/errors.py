"""Error taxonomy shared by the worker, its HTTP clients and the queue client.

Every job-level failure is a JobError tagged with the step that failed. The
job processor handles all of them the same way (log, clean up, acknowledge),
so adding a new step only means adding a JobStep member.
"""

from __future__ import annotations

from enum import Enum


class JobStep(str, Enum):
    """Steps of the conversion pipeline, used to tag failures in logs."""

    PARSE = "parse"
    DOWNLOAD = "download"
    CONVERT = "convert"
    CALLBACK_LOCATE = "callback_locate"
    CALLBACK_UPLOAD = "callback_upload"
    CALLBACK_FINISH = "callback_finish"


class JobError(Exception):
    """Base exception for permanent job failures.

    Attributes:
        message: Human-readable error description.
        step: Pipeline step that failed.
    """

    default_step: JobStep = JobStep.PARSE

    def __init__(self, message: str, step: JobStep | None = None) -> None:
        self.message = message
        self.step = step or self.default_step
        super().__init__(message)


class ValidationError(JobError):
    """The message body is not a valid conversion job."""

    default_step = JobStep.PARSE


class DownloadError(JobError):
    """The source document could not be downloaded."""

    default_step = JobStep.DOWNLOAD

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GatewayError(JobError):
    """The conversion gateway failed or was unreachable.

    Attributes:
        status_code: HTTP status returned by the gateway, if any.
        body: Response body kept as diagnostic text.
    """

    default_step = JobStep.CONVERT

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class CallbackError(JobError):
    """A step of the callback protocol failed."""

    default_step = JobStep.CALLBACK_LOCATE

    def __init__(
        self, message: str, step: JobStep | None = None, status_code: int | None = None
    ) -> None:
        self.status_code = status_code
        super().__init__(message, step)


class BrokerConnectionError(Exception):
    """The message broker is unreachable or the consumer was lost."""

    pass


class AlreadyAcknowledgedError(Exception):
    """A queue message was acknowledged more than once."""

    pass
