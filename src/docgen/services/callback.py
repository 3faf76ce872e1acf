"""Client for the callback receiver's three-step upload protocol.

The receiver is stateful across the three calls, so they must run in order
against the same URL:

1. locate: ask where the file should go; the receiver answers with the
   absolute target path it allocated (JSON ``{"name": ...}``).
2. upload: send the PDF in one part, naming the located target path.
3. finish: tell the receiver the transfer is complete and where the PDF is.

Skipping a step leaves the receiver inconsistent, so every failure is
reported as a CallbackError and fails the job.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from docgen.core.errors import CallbackError, JobStep
from docgen.services.transfer import TransferClient, TransferError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# File key the receiver uses to pick the target extension
PDF_FILE_ID = "pdf"


@dataclass
class CallbackSession:
    """State carried through the three callback calls of a single job."""

    url: str
    pdf_filename: str
    file_size: int
    target_path: str | None = None


def encode_nested_form(fields: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested mappings into bracketed form keys.

    ``{"result": {"files": {"pdf": "/x"}}}`` becomes ``{"result[files][pdf]": "/x"}``,
    the form encoding that PHP-based receivers parse back into nested arrays.
    """
    flat: dict[str, str] = {}
    for key, value in fields.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(encode_nested_form(value, name))
        else:
            flat[name] = str(value)
    return flat


class CallbackClient:
    """Runs the locate, upload and finish calls against a callback URL."""

    def __init__(self, transfer: TransferClient) -> None:
        self._transfer = transfer

    async def deliver(self, url: str, pdf_path: Path, pdf_filename: str) -> CallbackSession:
        """Deliver a converted PDF to the receiver.

        Args:
            url: Callback URL supplied with the job.
            pdf_path: Local PDF file.
            pdf_filename: Filename presented in the upload part.

        Returns:
            The completed session, including the receiver's target path.

        Raises:
            CallbackError: Any of the three steps failed.
        """
        session = CallbackSession(
            url=url,
            pdf_filename=pdf_filename,
            file_size=pdf_path.stat().st_size,
        )
        await self.locate(session)
        await self.upload(session, pdf_path)
        await self.finish(session)
        return session

    async def locate(self, session: CallbackSession) -> str:
        """Ask the receiver for the target path and store it on the session."""
        step = JobStep.CALLBACK_LOCATE
        logger.info("Requesting upload location from %s", session.url)

        response = await self._post(
            session.url,
            step,
            data={
                "upload": "where",
                "file_id": PDF_FILE_ID,
                "file_size": str(session.file_size),
            },
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise CallbackError(
                f"Locate response is not JSON: {response.text[:200]}", step=step
            ) from e

        name = payload.get("name") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name:
            raise CallbackError(
                f"Locate response has no target name: {response.text[:200]}", step=step
            )

        session.target_path = name
        return name

    async def upload(self, session: CallbackSession, pdf_path: Path) -> None:
        """Upload the PDF as a single final part."""
        step = JobStep.CALLBACK_UPLOAD
        target = self._require_target(session, step)
        logger.info("Uploading %s to %s as %s", session.pdf_filename, session.url, target)

        with pdf_path.open("rb") as fh:
            response = await self._post(
                session.url,
                step,
                data={
                    "file_name": target,
                    "last_part": "y",
                    "file_size": str(session.file_size),
                },
                files={"file": (session.pdf_filename, fh, PDF_CONTENT_TYPE)},
            )
        logger.debug("Upload status: %d", response.status_code)

    async def finish(self, session: CallbackSession) -> None:
        """Signal the receiver that the transfer is complete."""
        step = JobStep.CALLBACK_FINISH
        target = self._require_target(session, step)
        logger.info("Finishing transfer at %s", session.url)

        response = await self._post(
            session.url,
            step,
            data=encode_nested_form({"finish": "y", "result": {"files": {"pdf": target}}}),
        )
        logger.debug("Finish status: %d", response.status_code)

    async def _post(
        self,
        url: str,
        step: JobStep,
        data: dict[str, Any],
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """POST one protocol step and reject transport failures and non-2xx answers."""
        try:
            response = await self._transfer.post(url, data=data, files=files)
        except TransferError as e:
            raise CallbackError(f"Callback {step.value} failed: {e}", step=step) from e

        if not response.is_success:
            raise CallbackError(
                f"Callback {step.value} failed: HTTP {response.status_code}",
                step=step,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _require_target(session: CallbackSession, step: JobStep) -> str:
        if session.target_path is None:
            raise CallbackError(
                f"Callback {step.value} attempted before a target path was located",
                step=step,
            )
        return session.target_path
