"""Abstract base class for ACME transports.

A transport issues authenticated requests against an ACME server and
returns resource snapshots (:class:`~acmeflow.models.Order`,
:class:`~acmeflow.models.Authorization`,
:class:`~acmeflow.models.Challenge`).  Account registration, nonces and
JWS signing live behind this interface.

Every method raises :class:`~acmeflow.errors.ProtocolError` when the
server rejects the request.  Implementations must be safe to share
across threads for concurrent authorization resolution.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from acmeflow.models import Authorization, CertificateChain, Challenge, Order


class AcmeTransport(abc.ABC):
    """Base class for all ACME transport implementations."""

    @abc.abstractmethod
    def create_order(
        self,
        csr: bytes,
        not_before: datetime,
        not_after: datetime,
    ) -> Order:
        """Request issuance for the domains named in *csr*.

        Parameters
        ----------
        csr:
            PEM or DER encoded PKCS#10 certificate signing request.
        not_before:
            Requested validity start.
        not_after:
            Requested validity end.

        Returns
        -------
        Order
            The new order with its authorizations populated.

        """

    @abc.abstractmethod
    def update_order(self, order: Order) -> Order:
        """Re-fetch *order* (including its authorizations)."""

    @abc.abstractmethod
    def update_authorization(self, authorization: Authorization) -> Authorization:
        """Re-fetch *authorization* and its challenges."""

    @abc.abstractmethod
    def trigger_challenge(self, challenge: Challenge) -> Challenge:
        """Tell the server the proof for *challenge* is ready to be checked.

        Must be idempotent: repeating the request has no effect beyond
        the first.
        """

    @abc.abstractmethod
    def finalize_order(self, order: Order) -> Order:
        """Ask the server to issue the certificate for a ready *order*."""

    @abc.abstractmethod
    def fetch_certificate(self, order: Order) -> CertificateChain:
        """Download the issued chain of a valid *order*, leaf first, DER."""
