"""docgen intake API entry point.

Provides the application instance for ASGI servers
(``uvicorn docgen.api.main:app``) and run() for the docgen-api console
script.
"""

import logging

import uvicorn

from docgen.api import create_app
from docgen.core.logging import configure_logging
from docgen.core.settings import get_settings

logger = logging.getLogger(__name__)

app = create_app()


def run() -> None:
    """Run the intake API with uvicorn on the configured host and port."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting docgen intake API on %s:%d", settings.api.host, settings.api.port)

    uvicorn.run(
        "docgen.api.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
