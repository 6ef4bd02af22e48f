"""Read-only helpers for the opaque CSR blob.

The core never builds CSRs; it only parses them to learn which domains
an order must cover and which subject the issued certificate carries.
"""

from __future__ import annotations

from cryptography import x509
from cryptography.x509.oid import NameOID

_MAX_LABEL_LENGTH = 63
_WILDCARD_PREFIX = "*."


def load_csr(data: bytes) -> x509.CertificateSigningRequest:
    """Parse a PEM or DER encoded CSR.

    Raises
    ------
    ValueError
        If *data* is not a CSR.

    """
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_csr(data)
    return x509.load_der_x509_csr(data)


def normalize_domain(value: str) -> str:
    """Normalize a domain name to lowercase A-label (punycode) form.

    Raises
    ------
    ValueError
        If a label cannot be IDNA-encoded or exceeds 63 octets.

    """
    encoded_parts: list[str] = []
    for part in value.strip().rstrip(".").split("."):
        if part == "*":
            encoded_parts.append(part)
            continue
        try:
            part.encode("ascii")
            encoded = part
        except UnicodeEncodeError:
            try:
                encoded = part.encode("idna").decode("ascii")
            except UnicodeError as err:
                msg = f"Invalid internationalized domain label '{part}' in '{value}'"
                raise ValueError(msg) from err
        # RFC 1035 §2.3.4: each label must be 63 octets or less
        if len(encoded) > _MAX_LABEL_LENGTH:
            msg = f"Domain label '{part}' exceeds {_MAX_LABEL_LENGTH}-byte limit"
            raise ValueError(msg)
        encoded_parts.append(encoded.lower())
    return ".".join(encoded_parts)


def csr_domains(csr: x509.CertificateSigningRequest) -> tuple[str, ...]:
    """Domains named in *csr*: subject CN first, then DNS SANs, deduplicated."""
    names = [
        str(attr.value) for attr in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    ]
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        pass
    else:
        names.extend(san.value.get_values_for_type(x509.DNSName))

    seen: dict[str, None] = {}
    for name in names:
        seen.setdefault(normalize_domain(name), None)
    return tuple(seen)


def csr_subject(csr: x509.CertificateSigningRequest) -> str | None:
    """RFC 4514 subject of *csr*, or ``None`` when the subject is empty."""
    if len(csr.subject) == 0:
        return None
    return csr.subject.rfc4514_string()


def identifier_for(domain: str, *, wildcard: bool) -> str:
    """The requested identifier an authorization stands for."""
    return f"{_WILDCARD_PREFIX}{domain}" if wildcard else domain
