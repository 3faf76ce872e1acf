"""Outbound HTTP transfers for the worker.

All worker traffic (source downloads, gateway conversions, callback uploads)
goes through one TransferClient so every call shares the same connection
pool and the same time budget.

httpx applies its timeout per phase (connect, read, write, pool). A slow
server trickling bytes could keep a call alive far longer than that, so each
call is additionally wrapped in ``asyncio.timeout`` with the same value as a
total budget.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import httpx

from docgen.core.errors import DownloadError

logger = logging.getLogger(__name__)

# Default total budget for a single HTTP call (seconds)
DEFAULT_TIMEOUT = 300.0

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class TransferError(Exception):
    """An outbound request failed before a response was received."""

    pass


class TransferClient:
    """Async HTTP client for streamed downloads and form/multipart uploads.

    Example usage:
        async with TransferClient(timeout=300) as transfer:
            size = await transfer.download("http://h/reports/q1.docx", path)
            response = await transfer.post(url, data={"upload": "where"})
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transfer client.

        Args:
            timeout: Total budget in seconds for each call.
            transport: Optional httpx transport (tests inject httpx.MockTransport).
        """
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TransferClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, raising if not in context."""
        if self._client is None:
            msg = "TransferClient must be used as async context manager"
            raise RuntimeError(msg)
        return self._client

    async def download(self, url: str, destination: Path) -> int:
        """Stream a remote file into ``destination``.

        Args:
            url: Source URL.
            destination: Local path; truncated and overwritten.

        Returns:
            Number of bytes written.

        Raises:
            DownloadError: Invalid URL, network failure, timeout, or non-2xx response.
        """
        client = self._get_client()
        written = 0
        try:
            async with asyncio.timeout(self.timeout):
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise DownloadError(
                            f"Download failed: HTTP {response.status_code} for {url}",
                            status_code=response.status_code,
                        )
                    with destination.open("wb") as fh:
                        async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            fh.write(chunk)
                            written += len(chunk)
        except TimeoutError as e:
            raise DownloadError(f"Download timed out after {self.timeout:g}s: {url}") from e
        except httpx.InvalidURL as e:
            raise DownloadError(f"Download failed: invalid URL {url!r}: {e}") from e
        except httpx.HTTPError as e:
            raise DownloadError(f"Download failed: {e!r}") from e

        logger.debug("Downloaded %d bytes from %s to %s", written, url, destination)
        return written

    async def post(
        self,
        url: str,
        *,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """POST form fields, optionally as multipart with files.

        The response is returned whatever its status; callers decide what
        counts as failure for their protocol.

        Args:
            url: Target URL.
            data: Form fields.
            files: httpx multipart files mapping (name -> (filename, content, type)).

        Returns:
            The fully read response.

        Raises:
            TransferError: Invalid URL, network failure, or timeout.
        """
        client = self._get_client()
        try:
            async with asyncio.timeout(self.timeout):
                return await client.post(url, data=data, files=files)
        except TimeoutError as e:
            raise TransferError(f"Request timed out after {self.timeout:g}s: POST {url}") from e
        except httpx.InvalidURL as e:
            raise TransferError(f"Request failed: invalid URL {url!r}: {e}") from e
        except httpx.HTTPError as e:
            raise TransferError(f"Request failed: POST {url}: {e!r}") from e
