"""Logging subsystem for acmeflow.

Public API::

    from acmeflow.logging import configure_logging, resolution_context

    configure_logging(settings.logging)
"""

from acmeflow.logging.setup import configure_logging, resolution_context

__all__ = ["configure_logging", "resolution_context"]
