"""Self-signed certificates for the tls-sni-02 challenge.

The verifier connects with SNI equal to the proof's subject name and
compares the presented SAN entries.  Serial number and validity window
are derived from the inputs rather than from the clock or a random
source, so with a deterministic signature scheme (RSA PKCS#1 v1.5,
Ed25519) the DER output is identical for identical inputs.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.x509.oid import NameOID

_DEFAULT_NOT_BEFORE = datetime(2000, 1, 1, tzinfo=UTC)
_DEFAULT_NOT_AFTER = datetime(2099, 12, 31, 23, 59, 59, tzinfo=UTC)

# Both challenge names exceed the 64-character X.520 limit on commonName
_SUBJECT_COMMON_NAME = "acme.invalid"


def _derived_serial(subject_name: str, san_b: str) -> int:
    digest = hashlib.sha256(f"{subject_name}|{san_b}".encode("ascii")).digest()
    # 19 bytes keeps the serial positive and within the RFC 5280 20-octet limit
    return int.from_bytes(digest[:19], "big") or 1


def _signature_hash(private_key: Any) -> hashes.HashAlgorithm | None:  # noqa: ANN401
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def create_tls_sni_certificate(
    private_key: Any,  # noqa: ANN401
    subject_name: str,
    san_b: str,
    *,
    not_before: datetime = _DEFAULT_NOT_BEFORE,
    not_after: datetime = _DEFAULT_NOT_AFTER,
) -> x509.Certificate:
    """Build the tls-sni-02 proof certificate.

    Subject and issuer are ``CN=acme.invalid``; the SAN carries SAN A and
    SAN B, which is what the verifier checks.

    Parameters
    ----------
    private_key:
        Key the proof server will present the certificate with.
    subject_name:
        SAN A, the SNI the verifier sends.
    san_b:
        SAN B, derived from the key authorization.
    not_before, not_after:
        Validity window; fixed defaults keep the encoding reproducible.

    """
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, _SUBJECT_COMMON_NAME)])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(_derived_serial(subject_name, san_b))
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName(subject_name), x509.DNSName(san_b)],
            ),
            critical=False,
        )
        .sign(private_key, _signature_hash(private_key))
    )


def certificate_san_names(certificate: x509.Certificate) -> list[str]:
    """Return the DNS SAN entries of *certificate*."""
    try:
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)
