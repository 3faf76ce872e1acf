"""Process-wide logging setup.

Each component logs through ``logging.getLogger(__name__)``; the logger name
is the component tag shown in every line.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the current process.

    Args:
        level: Logging level name (case-insensitive). Unknown names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    # httpx logs every request at INFO; the worker logs its own steps.
    logging.getLogger("httpx").setLevel(logging.WARNING)
