"""Certificate finalizer -- retrieval of the issued chain.

Only a valid order has a certificate.  The leaf is parsed once and the
resulting :class:`~acmeflow.models.Certificate` is read-only.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from acmeflow.core.types import OrderStatus
from acmeflow.errors import FinalizationError, ProtocolError
from acmeflow.models import Certificate

if TYPE_CHECKING:
    from acmeflow.models import Order
    from acmeflow.transport import AcmeTransport

log = logging.getLogger(__name__)


def subject_for(domain: str) -> str:
    """Distinguished name of a single-domain certificate."""
    return f"CN={domain}"


class CertificateFinalizer:
    """Fetches and validates the certificate of a finalized order."""

    def __init__(self, transport: AcmeTransport) -> None:
        self._transport = transport

    def retrieve(self, order: Order, *, expected_subject: str | None = None) -> Certificate:
        """Download and parse the chain of a valid *order*.

        Parameters
        ----------
        order:
            An order whose status is ``valid``.
        expected_subject:
            When given, the leaf's RFC 4514 subject must equal it.

        Raises
        ------
        FinalizationError
            If the order is not valid yet.
        ProtocolError
            If the chain is empty, unparsable or has the wrong subject.

        """
        if order.status != OrderStatus.VALID:
            msg = f"Order {order.url} is {order.status.value}; no certificate to retrieve"
            raise FinalizationError(msg)

        chain = tuple(self._transport.fetch_certificate(order))
        if not chain:
            msg = f"Server returned an empty certificate chain for {order.url}"
            raise ProtocolError(msg)

        certificate = parse_chain(chain)
        if expected_subject is not None and certificate.subject_name != expected_subject:
            msg = (
                f"Issued certificate subject {certificate.subject_name!r} does not "
                f"match requested {expected_subject!r}"
            )
            raise ProtocolError(msg)

        log.info(
            "Retrieved certificate %s for %s (valid until %s)",
            certificate.serial_number,
            certificate.subject_name,
            certificate.not_after.isoformat(),
        )
        return certificate


def parse_chain(chain: tuple[bytes, ...]) -> Certificate:
    """Build a :class:`Certificate` from DER certificates, leaf first."""
    try:
        leaf = x509.load_der_x509_certificate(chain[0])
        for der in chain[1:]:
            x509.load_der_x509_certificate(der)
    except ValueError as exc:
        msg = f"Certificate chain is not valid DER: {exc}"
        raise ProtocolError(msg) from exc

    return Certificate(
        chain=chain,
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
        subject_name=leaf.subject.rfc4514_string(),
        serial_number=format(leaf.serial_number, "x"),
        fingerprint=leaf.fingerprint(hashes.SHA256()).hex(),
    )
