"""ACME transport interface.

The transport owns account sessions and the signed-request wire
format; the core only sees resource snapshots.
"""

from acmeflow.transport.base import AcmeTransport

__all__ = ["AcmeTransport"]
