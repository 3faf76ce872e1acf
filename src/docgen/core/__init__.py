"""docgen core module.

Shared components used across the worker and the intake API:
- Configuration management
- Logging setup
- Error taxonomy
"""

from docgen.core.config import (
    APISettings,
    BrokerSettings,
    ConfigValidationError,
    Environment,
    GatewaySettings,
    Settings,
    WorkerSettings,
)
from docgen.core.errors import (
    AlreadyAcknowledgedError,
    BrokerConnectionError,
    CallbackError,
    DownloadError,
    GatewayError,
    JobError,
    JobStep,
    ValidationError,
)
from docgen.core.settings import (
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "APISettings",
    "AlreadyAcknowledgedError",
    "BrokerConnectionError",
    "BrokerSettings",
    "CallbackError",
    "ConfigValidationError",
    "DownloadError",
    "Environment",
    "GatewayError",
    "GatewaySettings",
    "JobError",
    "JobStep",
    "Settings",
    "ValidationError",
    "WorkerSettings",
    "clear_settings_cache",
    "get_settings",
]
