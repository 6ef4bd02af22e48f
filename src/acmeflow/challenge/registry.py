"""Challenge registry.

Maps each challenge type tag to the function deriving its proof
material, and looks up the challenge of a given type among those an
authorization offers.  Dispatch is a table lookup on
:class:`~acmeflow.core.types.ChallengeType`; there is one
:class:`~acmeflow.models.Challenge` class for every type.

Extra types can be registered with ``ext:`` entries in
``challenges.enabled`` pointing at a proof function that carries a
``challenge_type`` attribute.

Usage::

    from acmeflow.challenge.registry import ChallengeRegistry

    registry = ChallengeRegistry()
    challenge = registry.get_challenge(authorization, ChallengeType.DNS_01)
    proof = registry.compute_proof(challenge, account_key, domain=authorization.domain)
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from acmeflow.challenge.proofs import (
    compute_dns_proof,
    compute_http_proof,
    compute_tls_sni_proof,
)
from acmeflow.core.types import ChallengeType
from acmeflow.errors import ChallengeNotOffered

if TYPE_CHECKING:
    from acmeflow.core.keys import AccountKey
    from acmeflow.models import Authorization, Challenge

log = logging.getLogger(__name__)

ProofFunction = Callable[["Challenge", "AccountKey", str], Any]

_BUILTIN_PROOFS: dict[ChallengeType, ProofFunction] = {
    ChallengeType.HTTP_01: compute_http_proof,
    ChallengeType.DNS_01: compute_dns_proof,
    ChallengeType.TLS_SNI_02: compute_tls_sni_proof,
}


class ChallengeRegistry:
    """Registry of the challenge types this client can satisfy.

    Parameters
    ----------
    enabled:
        Type tags (``"http-01"``, ``"dns-01"``, ``"tls-sni-02"``) or
        ``ext:package.module.function`` entries.  ``None`` enables every
        built-in type.

    """

    def __init__(self, enabled: Iterable[str] | None = None) -> None:
        self._proofs: dict[ChallengeType, ProofFunction] = {}
        if enabled is None:
            self._proofs.update(_BUILTIN_PROOFS)
        else:
            self._load(enabled)

    def _load(self, enabled: Iterable[str]) -> None:
        """Register every enabled type.

        Failures for individual entries are logged -- other types still
        load successfully.
        """
        for type_str in enabled:
            try:
                if type_str.startswith("ext:"):
                    self._load_external(type_str[4:])
                else:
                    challenge_type = ChallengeType(type_str)
                    self._proofs[challenge_type] = _BUILTIN_PROOFS[challenge_type]
            except ValueError:
                log.warning("Unknown challenge type '%s', skipping", type_str)
            except Exception:
                log.exception("Failed to load challenge type '%s', skipping", type_str)

    def _load_external(self, fqn: str) -> None:
        module_path, _, func_name = fqn.rpartition(".")
        if not module_path:
            msg = (
                f"Invalid external proof function '{fqn}': must be fully "
                "qualified (e.g. 'mypackage.module.compute_proof')"
            )
            raise ImportError(msg)

        func = getattr(importlib.import_module(module_path), func_name)
        challenge_type = getattr(func, "challenge_type", None)
        if not callable(func) or not isinstance(challenge_type, ChallengeType):
            msg = f"External proof function '{fqn}' needs a ChallengeType 'challenge_type' attribute"
            raise TypeError(msg)
        self.register(challenge_type, func)

    def register(self, challenge_type: ChallengeType, proof_function: ProofFunction) -> None:
        """Register (or replace) the proof function for *challenge_type*."""
        self._proofs[challenge_type] = proof_function
        log.info("Registered challenge type: %s", challenge_type.value)

    # -- lookup -------------------------------------------------------------

    def find_challenge(
        self,
        authorization: Authorization,
        challenge_type: ChallengeType,
    ) -> Challenge | None:
        """Return the offered challenge of *challenge_type*, or ``None``."""
        for challenge in authorization.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None

    def get_challenge(
        self,
        authorization: Authorization,
        challenge_type: ChallengeType,
    ) -> Challenge:
        """Return the offered challenge of *challenge_type*.

        Raises
        ------
        ChallengeNotOffered
            If the authorization does not offer that type.

        """
        challenge = self.find_challenge(authorization, challenge_type)
        if challenge is None:
            raise ChallengeNotOffered(authorization.domain, challenge_type)
        return challenge

    # -- proofs -------------------------------------------------------------

    def compute_proof(
        self,
        challenge: Challenge,
        account_key: AccountKey,
        *,
        domain: str,
    ) -> Any:  # noqa: ANN401
        """Derive the proof artifact the verifier must observe.

        Raises
        ------
        KeyError
            If the challenge type is not enabled.

        """
        try:
            proof_function = self._proofs[challenge.type]
        except KeyError:
            msg = f"No proof function registered for challenge type '{challenge.type}'"
            raise KeyError(msg) from None
        return proof_function(challenge, account_key, domain)

    def is_enabled(self, challenge_type: ChallengeType) -> bool:
        return challenge_type in self._proofs

    @property
    def supported_types(self) -> list[ChallengeType]:
        """Return the list of enabled challenge types."""
        return list(self._proofs)
