"""Proof artifacts for each challenge type.

Each ``compute_*`` function is a pure derivation from the challenge
token and the account key.  The external verifier recomputes the same
values, so every encoding here must be stable.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmeflow.core.keys import b64url_encode

if TYPE_CHECKING:
    from acmeflow.core.keys import AccountKey
    from acmeflow.models import Challenge

HTTP_CHALLENGE_PATH = "/.well-known/acme-challenge/"
DNS_RECORD_PREFIX = "_acme-challenge."

_TOKEN_SUFFIX = ".token.acme.invalid"
_KA_SUFFIX = ".ka.acme.invalid"


@dataclass(frozen=True)
class HttpProof:
    """http-01: serve :attr:`key_authorization` at :attr:`path`."""

    token: str
    key_authorization: str

    @property
    def path(self) -> str:
        return f"{HTTP_CHALLENGE_PATH}{self.token}"


@dataclass(frozen=True)
class DnsProof:
    """dns-01: publish :attr:`digest` as a TXT record at :attr:`record_name`."""

    record_name: str
    digest: str


@dataclass(frozen=True)
class TlsHandshakeProof:
    """tls-sni-02: present a self-signed certificate for :attr:`subject_name`.

    The certificate's SAN must contain both :attr:`subject_name` (SAN A)
    and :attr:`san_b`; see
    :func:`acmeflow.challenge.tls_sni.create_tls_sni_certificate`.
    """

    subject_name: str
    san_b: str


def _two_label_name(value: str, suffix: str) -> str:
    """Hex SHA-256 of *value* split into two 32-char labels plus *suffix*."""
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"{digest[:32]}.{digest[32:]}{suffix}"


def dns_record_name(domain: str) -> str:
    """TXT record name for *domain*; a wildcard prefix is stripped."""
    return DNS_RECORD_PREFIX + domain.removeprefix("*.")


def compute_http_proof(
    challenge: Challenge,
    account_key: AccountKey,
    domain: str,  # noqa: ARG001
) -> HttpProof:
    return HttpProof(
        token=challenge.token,
        key_authorization=account_key.key_authorization(challenge.token),
    )


def compute_dns_proof(
    challenge: Challenge,
    account_key: AccountKey,
    domain: str,
) -> DnsProof:
    key_authz = account_key.key_authorization(challenge.token)
    digest = hashlib.sha256(key_authz.encode("ascii")).digest()
    return DnsProof(record_name=dns_record_name(domain), digest=b64url_encode(digest))


def compute_tls_sni_proof(
    challenge: Challenge,
    account_key: AccountKey,
    domain: str,  # noqa: ARG001
) -> TlsHandshakeProof:
    key_authz = account_key.key_authorization(challenge.token)
    return TlsHandshakeProof(
        subject_name=_two_label_name(challenge.token, _TOKEN_SUFFIX),
        san_b=_two_label_name(key_authz, _KA_SUFFIX),
    )
