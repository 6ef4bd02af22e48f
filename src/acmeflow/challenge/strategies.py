"""Challenge strategies: choose a challenge and publish its proof.

A strategy is any callable ``strategy(authorization) -> Challenge``.  It
picks which offered challenge to satisfy, makes the proof observable to
the verifier, and returns the chosen challenge.  All publishing side
effects stay inside the strategy; the resolver only triggers and polls.

Strategies may also expose ``cleanup(authorization, challenge)``, which
the resolver calls once polling is over.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives.asymmetric import ec

from acmeflow.challenge.publishers import (
    DnsProofPublisher,
    HttpProofPublisher,
    TlsProofPublisher,
    load_publisher,
)
from acmeflow.challenge.tls_sni import create_tls_sni_certificate
from acmeflow.core.types import ChallengeType
from acmeflow.errors import ChallengeNotOffered

if TYPE_CHECKING:
    from acmeflow.challenge.registry import ChallengeRegistry
    from acmeflow.config.settings import ChallengeSettings
    from acmeflow.core.keys import AccountKey
    from acmeflow.models import Authorization, Challenge

log = logging.getLogger(__name__)

ChallengeStrategy = Callable[["Authorization"], "Challenge"]

_PUBLISHER_TYPES: dict[ChallengeType, type] = {
    ChallengeType.HTTP_01: HttpProofPublisher,
    ChallengeType.DNS_01: DnsProofPublisher,
    ChallengeType.TLS_SNI_02: TlsProofPublisher,
}


class PublishingStrategy:
    """Satisfy one challenge type through one publisher.

    Parameters
    ----------
    registry:
        Registry used to find the challenge and derive its proof.
    account_key:
        The account key the proofs are bound to.
    challenge_type:
        The type this strategy satisfies.
    publisher:
        A publisher matching *challenge_type*.
    tls_key_factory:
        Creates the key a tls-sni-02 proof certificate is signed with.

    """

    def __init__(
        self,
        registry: ChallengeRegistry,
        account_key: AccountKey,
        challenge_type: ChallengeType,
        publisher: Any,  # noqa: ANN401
        *,
        tls_key_factory: Callable[[], Any] | None = None,
    ) -> None:
        expected = _PUBLISHER_TYPES[challenge_type]
        if not isinstance(publisher, expected):
            msg = (
                f"{challenge_type.value} needs a {expected.__name__}, "
                f"got {type(publisher).__name__}"
            )
            raise TypeError(msg)
        self._registry = registry
        self._account_key = account_key
        self._type = challenge_type
        self._publisher = publisher
        self._tls_key_factory = tls_key_factory or _generate_tls_key

    @property
    def challenge_type(self) -> ChallengeType:
        return self._type

    def __call__(self, authorization: Authorization) -> Challenge:
        challenge = self._registry.get_challenge(authorization, self._type)
        proof = self._registry.compute_proof(
            challenge,
            self._account_key,
            domain=authorization.domain,
        )

        try:
            self._publish(authorization, proof)
        except Exception:
            # A publisher may fail after part of the proof is already out
            # (e.g. a DNS record created but never seen propagating).
            try:
                self._withdraw(authorization, proof)
            except Exception:  # noqa: BLE001
                log.warning(
                    "Withdrawing partially published %s proof for %s failed",
                    self._type.value,
                    authorization.domain,
                    exc_info=True,
                )
            raise

        log.info("Published %s proof for %s", self._type.value, authorization.domain)
        return challenge

    def cleanup(self, authorization: Authorization, challenge: Challenge) -> None:
        """Withdraw the proof published for *challenge*."""
        proof = self._registry.compute_proof(
            challenge,
            self._account_key,
            domain=authorization.domain,
        )
        self._withdraw(authorization, proof)

    def _publish(self, authorization: Authorization, proof: Any) -> None:  # noqa: ANN401
        if self._type is ChallengeType.HTTP_01:
            self._publisher.publish(authorization.domain, proof.token, proof.key_authorization)
        elif self._type is ChallengeType.DNS_01:
            self._publisher.publish_txt_record(proof.record_name, proof.digest)
        else:
            key = self._tls_key_factory()
            certificate = create_tls_sni_certificate(key, proof.subject_name, proof.san_b)
            self._publisher.publish_certificate(proof.subject_name, key, certificate)

    def _withdraw(self, authorization: Authorization, proof: Any) -> None:  # noqa: ANN401
        if self._type is ChallengeType.HTTP_01:
            self._publisher.remove(authorization.domain, proof.token)
        elif self._type is ChallengeType.DNS_01:
            self._publisher.remove_txt_record(proof.record_name)
        else:
            self._publisher.remove_certificate(proof.subject_name)


class FirstOfferedStrategy:
    """Try strategies in preference order and use the first type offered.

    Parameters
    ----------
    strategies:
        :class:`PublishingStrategy` instances, most preferred first.

    """

    def __init__(self, strategies: Sequence[PublishingStrategy]) -> None:
        if not strategies:
            msg = "At least one strategy is required"
            raise ValueError(msg)
        self._strategies = tuple(strategies)
        self._chosen: dict[str, PublishingStrategy] = {}

    def __call__(self, authorization: Authorization) -> Challenge:
        offered = set(authorization.offered_types)
        for strategy in self._strategies:
            if strategy.challenge_type in offered:
                challenge = strategy(authorization)
                self._chosen[authorization.url] = strategy
                return challenge
        raise ChallengeNotOffered(
            authorization.domain,
            "/".join(s.challenge_type.value for s in self._strategies),
        )

    def cleanup(self, authorization: Authorization, challenge: Challenge) -> None:
        strategy = self._chosen.pop(authorization.url, None)
        if strategy is not None:
            strategy.cleanup(authorization, challenge)


def strategy_from_settings(
    settings: ChallengeSettings,
    registry: ChallengeRegistry,
    account_key: AccountKey,
) -> PublishingStrategy:
    """Build the strategy configured in the ``challenges`` section."""
    publisher = load_publisher(settings.publisher, dict(settings.publisher_config))
    return PublishingStrategy(
        registry,
        account_key,
        ChallengeType(settings.preferred_type),
        publisher,
    )


def _generate_tls_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())
