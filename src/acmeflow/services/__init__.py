"""Issuance services.

Each service owns one stage of the ACME flow and talks to the server
only through the transport interface.
"""

from acmeflow.services.authorization import AuthorizationOutcome, AuthorizationResolver
from acmeflow.services.certificate import CertificateFinalizer
from acmeflow.services.order import OrderCoordinator, OrderResolution
from acmeflow.services.polling import PollingScheduler

__all__ = [
    "AuthorizationOutcome",
    "AuthorizationResolver",
    "CertificateFinalizer",
    "OrderCoordinator",
    "OrderResolution",
    "PollingScheduler",
]
