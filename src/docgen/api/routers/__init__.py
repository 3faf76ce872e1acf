"""Intake API routers."""

from docgen.api.routers.intake import router as intake_router

__all__ = ["intake_router"]
