"""Configuration subsystem for acmeflow.

Public API::

    from acmeflow.config import get_config, AcmeflowConfig

    # At startup (CLI only):
    AcmeflowConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    timeout = cfg.settings.polling.timeout_seconds   # typed access
    webroot = cfg.get("challenges.publisher_config.webroot")
"""

from acmeflow.config.acmeflow_config import (
    AcmeflowConfig,
    ConfigValidationError,
    get_config,
)
from acmeflow.config.settings import (
    AcmeflowSettings,
    ChallengeSettings,
    LoggingSettings,
    OrderSettings,
    PollingSettings,
    build_settings,
)

__all__ = [
    "AcmeflowConfig",
    "AcmeflowSettings",
    "ChallengeSettings",
    "ConfigValidationError",
    "LoggingSettings",
    "OrderSettings",
    "PollingSettings",
    "build_settings",
    "get_config",
]
