"""Resource snapshots exchanged with the ACME transport.

All models are frozen dataclasses.  A refresh returns a new snapshot;
use :func:`dataclasses.replace` for modifications (copy-on-write).
"""

from acmeflow.models.authorization import Authorization
from acmeflow.models.certificate import Certificate, CertificateChain
from acmeflow.models.challenge import Challenge
from acmeflow.models.order import Order

__all__ = [
    "Authorization",
    "Certificate",
    "CertificateChain",
    "Challenge",
    "Order",
]
