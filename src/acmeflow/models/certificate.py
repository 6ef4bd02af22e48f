"""Certificate entity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

if TYPE_CHECKING:
    from datetime import datetime

CertificateChain = tuple[bytes, ...]
"""DER-encoded certificates, leaf first, as returned by the transport."""


@dataclass(frozen=True)
class Certificate:
    """An issued certificate chain and its leaf metadata.

    Attributes
    ----------
    chain:
        DER certificates, leaf first.
    not_before:
        Leaf validity start.
    not_after:
        Leaf validity end.
    subject_name:
        RFC 4514 distinguished name of the leaf, e.g. ``CN=example.com``.
    serial_number:
        Hex-encoded leaf serial.
    fingerprint:
        SHA-256 hex digest of the leaf's DER encoding.

    """

    chain: CertificateChain
    not_before: datetime
    not_after: datetime
    subject_name: str
    serial_number: str
    fingerprint: str

    @property
    def leaf(self) -> bytes:
        return self.chain[0]

    @property
    def pem_chain(self) -> str:
        """The chain as concatenated PEM blocks."""
        return "".join(
            x509.load_der_x509_certificate(der).public_bytes(Encoding.PEM).decode("ascii")
            for der in self.chain
        )
