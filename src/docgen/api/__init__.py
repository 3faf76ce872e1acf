"""docgen intake API.

FastAPI application providing:
- ``POST /``: validate a conversion request and publish it to the job queue
- ``GET /health``: liveness probe

The app factory builds configured instances for tests and production.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from docgen import __version__
from docgen.api.middleware import (
    ErrorHandlerMiddleware,
    RequestIDMiddleware,
    http_exception_handler,
    request_validation_handler,
)
from docgen.api.routers import intake_router
from docgen.core.settings import get_settings
from docgen.services.job_queue import JobQueueClient

if TYPE_CHECKING:
    from docgen.api.routers.intake import QueueFactory
    from docgen.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "docgen intake API"
API_DESCRIPTION = """
Queues documents for conversion to PDF.

POST a job (`file`, optional `back_url`) to `/`, either as JSON or
form-encoded, directly or wrapped in `params`.
"""


def create_app(
    settings: Settings | None = None,
    queue_factory: QueueFactory | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Settings to use. Loaded from the environment when None.
        queue_factory: Builds a queue client from broker settings. Defaults
            to JobQueueClient; tests pass a fake.

    Returns:
        Configured FastAPI application.

    Example:
        app = create_app()

        # For testing
        app = create_app(Settings(), queue_factory=lambda broker: fake_queue)
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=settings.app_version or __version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings
    app.state.queue_factory = queue_factory or JobQueueClient

    # Last added is outermost: the request ID must wrap error rendering
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(intake_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy"}

    if settings.api.security_token is None:
        logger.warning("Intake token not configured; POST / accepts any caller")

    logger.info("docgen intake API created (version=%s)", app.version)
    return app
