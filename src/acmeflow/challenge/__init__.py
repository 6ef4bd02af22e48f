"""Challenge types, proof derivation and proof publishing.

Exports the registry, the proof artifacts and the strategy helpers.
"""

from acmeflow.challenge.proofs import DnsProof, HttpProof, TlsHandshakeProof
from acmeflow.challenge.registry import ChallengeRegistry
from acmeflow.challenge.strategies import (
    ChallengeStrategy,
    FirstOfferedStrategy,
    PublishingStrategy,
)

__all__ = [
    "ChallengeRegistry",
    "ChallengeStrategy",
    "DnsProof",
    "FirstOfferedStrategy",
    "HttpProof",
    "PublishingStrategy",
    "TlsHandshakeProof",
]
