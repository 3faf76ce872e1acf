"""Client for the Gotenberg document conversion gateway.

Reference: https://gotenberg.dev/docs/routes#office-documents-into-pdfs-route
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path

from docgen.core.errors import GatewayError
from docgen.services.transfer import TransferClient, TransferError

logger = logging.getLogger(__name__)

DEFAULT_CONVERT_PATH = "/forms/libreoffice/convert"

# Keep log lines and exception messages bounded when the gateway returns HTML
MAX_ERROR_BODY_CHARS = 500


class ConversionGatewayClient:
    """Converts office documents to PDF through the gateway's LibreOffice route.

    No retries happen here; the job processor owns the failure policy.
    """

    def __init__(
        self,
        transfer: TransferClient,
        base_url: str,
        convert_path: str = DEFAULT_CONVERT_PATH,
    ) -> None:
        self._transfer = transfer
        self.convert_url = f"{base_url.rstrip('/')}{convert_path}"

    async def convert(self, input_path: Path, original_filename: str) -> bytes:
        """Upload a document and return the converted PDF bytes.

        Args:
            input_path: Local file holding the source document.
            original_filename: Filename sent in the multipart part; the
                gateway detects the input format from its extension.

        Returns:
            Raw PDF bytes.

        Raises:
            GatewayError: Gateway unreachable or status other than 200.
        """
        content_type = mimetypes.guess_type(original_filename)[0] or "application/octet-stream"
        logger.debug("Sending %s (%s) to %s", original_filename, content_type, self.convert_url)

        try:
            with input_path.open("rb") as fh:
                response = await self._transfer.post(
                    self.convert_url,
                    files={"files": (original_filename, fh, content_type)},
                )
        except TransferError as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e

        if response.status_code != 200:
            body = response.text[:MAX_ERROR_BODY_CHARS]
            raise GatewayError(
                f"Gateway error: HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        return response.content
