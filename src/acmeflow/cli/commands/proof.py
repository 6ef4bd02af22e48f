"""``proof`` subcommand: print proof material for manual publication."""

from __future__ import annotations

import logging
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import ec

from acmeflow.challenge.registry import ChallengeRegistry
from acmeflow.challenge.tls_sni import certificate_san_names, create_tls_sni_certificate
from acmeflow.core.csr import normalize_domain
from acmeflow.core.keys import AccountKey
from acmeflow.core.types import ChallengeStatus, ChallengeType
from acmeflow.models import Challenge

log = logging.getLogger(__name__)


def run_proof(config, args) -> None:
    """Compute and print the proof for ``args.challenge_type``."""
    account_key = AccountKey.from_pem(Path(args.account_key).read_bytes())
    registry = ChallengeRegistry(config.settings.challenges.enabled)
    challenge_type = ChallengeType(args.challenge_type)
    if not registry.is_enabled(challenge_type):
        msg = f"challenge type {challenge_type.value} is not enabled in the configuration"
        raise ValueError(msg)

    domain = normalize_domain(args.domain)
    challenge = Challenge(
        url="urn:acmeflow:cli",
        type=challenge_type,
        token=args.token,
        status=ChallengeStatus.PENDING,
    )
    proof = registry.compute_proof(challenge, account_key, domain=domain)
    log.debug("Computed %s proof for %s with %r", challenge_type.value, domain, account_key)

    for line in format_proof(challenge_type, proof):
        print(line)  # noqa: T201


def format_proof(challenge_type: ChallengeType, proof) -> list[str]:
    """Human-readable lines describing *proof*."""
    if challenge_type is ChallengeType.HTTP_01:
        return [
            f"path:              {proof.path}",
            f"key authorization: {proof.key_authorization}",
        ]
    if challenge_type is ChallengeType.DNS_01:
        return [
            f"record: {proof.record_name}",
            "type:   TXT",
            f"value:  {proof.digest}",
        ]
    certificate = create_tls_sni_certificate(
        ec.generate_private_key(ec.SECP256R1()),
        proof.subject_name,
        proof.san_b,
    )
    return [
        f"sni:   {proof.subject_name}",
        f"san b: {proof.san_b}",
        f"certificate SANs: {', '.join(certificate_san_names(certificate))}",
    ]
