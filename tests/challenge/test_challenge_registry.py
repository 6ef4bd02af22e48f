"""Tests for acmeflow.challenge.registry."""

from __future__ import annotations

import logging
import sys
import types

import pytest

from acmeflow.challenge.proofs import HttpProof, TlsHandshakeProof
from acmeflow.challenge.registry import ChallengeRegistry
from acmeflow.core.types import AuthorizationStatus, ChallengeStatus, ChallengeType
from acmeflow.errors import ChallengeNotOffered
from acmeflow.models import Authorization, Challenge


def _authz(*types_offered: ChallengeType) -> Authorization:
    return Authorization(
        url="https://ca.test/authz/1",
        domain="example.com",
        status=AuthorizationStatus.PENDING,
        challenges=tuple(
            Challenge(
                url=f"https://ca.test/chall/{t.value}",
                type=t,
                token=f"tok-{t.value}",
                status=ChallengeStatus.PENDING,
            )
            for t in types_offered
        ),
    )


class TestConstruction:
    def test_default_enables_all_builtins(self):
        registry = ChallengeRegistry()
        assert set(registry.supported_types) == set(ChallengeType)

    def test_enabled_subset(self):
        registry = ChallengeRegistry(["dns-01"])
        assert registry.supported_types == [ChallengeType.DNS_01]
        assert not registry.is_enabled(ChallengeType.HTTP_01)

    def test_unknown_type_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="acmeflow.challenge.registry"):
            registry = ChallengeRegistry(["http-01", "tls-alpn-01"])
        assert registry.supported_types == [ChallengeType.HTTP_01]
        assert "Unknown challenge type 'tls-alpn-01'" in caplog.text

    def test_external_proof_function(self, monkeypatch):
        module = types.ModuleType("acmeflow_test_proofs")

        def custom(challenge, account_key, domain):
            return f"custom:{challenge.token}:{domain}"

        custom.challenge_type = ChallengeType.HTTP_01
        module.custom = custom
        monkeypatch.setitem(sys.modules, "acmeflow_test_proofs", module)

        registry = ChallengeRegistry(["ext:acmeflow_test_proofs.custom"])
        challenge = _authz(ChallengeType.HTTP_01).challenges[0]
        assert registry.compute_proof(challenge, None, domain="d") == "custom:tok-http-01:d"

    def test_external_without_type_is_skipped(self, monkeypatch, caplog):
        module = types.ModuleType("acmeflow_test_proofs")
        module.untyped = lambda c, k, d: None
        monkeypatch.setitem(sys.modules, "acmeflow_test_proofs", module)

        with caplog.at_level(logging.ERROR, logger="acmeflow.challenge.registry"):
            registry = ChallengeRegistry(["ext:acmeflow_test_proofs.untyped"])
        assert registry.supported_types == []
        assert "Failed to load challenge type" in caplog.text

    def test_external_missing_module_is_skipped(self):
        registry = ChallengeRegistry(["ext:does_not_exist_anywhere.fn", "dns-01"])
        assert registry.supported_types == [ChallengeType.DNS_01]


class TestLookup:
    def test_find_challenge(self):
        authz = _authz(ChallengeType.HTTP_01, ChallengeType.DNS_01)
        found = ChallengeRegistry().find_challenge(authz, ChallengeType.DNS_01)
        assert found is authz.challenges[1]

    def test_find_missing_returns_none(self):
        authz = _authz(ChallengeType.HTTP_01)
        assert ChallengeRegistry().find_challenge(authz, ChallengeType.TLS_SNI_02) is None

    def test_get_missing_raises(self):
        authz = _authz(ChallengeType.HTTP_01)
        with pytest.raises(ChallengeNotOffered, match="does not offer a dns-01") as exc_info:
            ChallengeRegistry().get_challenge(authz, ChallengeType.DNS_01)
        assert exc_info.value.domain == "example.com"
        assert isinstance(exc_info.value, LookupError)


class TestComputeProof:
    def test_dispatches_on_type(self, account_key):
        registry = ChallengeRegistry()
        authz = _authz(ChallengeType.HTTP_01, ChallengeType.TLS_SNI_02)
        http, tls = authz.challenges
        assert isinstance(registry.compute_proof(http, account_key, domain="e"), HttpProof)
        assert isinstance(
            registry.compute_proof(tls, account_key, domain="e"),
            TlsHandshakeProof,
        )

    def test_disabled_type_raises_key_error(self, account_key):
        registry = ChallengeRegistry(["http-01"])
        challenge = _authz(ChallengeType.DNS_01).challenges[0]
        with pytest.raises(KeyError, match="dns-01"):
            registry.compute_proof(challenge, account_key, domain="example.com")

    def test_register_replaces(self, account_key):
        registry = ChallengeRegistry()
        registry.register(ChallengeType.HTTP_01, lambda c, k, d: "replaced")
        challenge = _authz(ChallengeType.HTTP_01).challenges[0]
        assert registry.compute_proof(challenge, account_key, domain="e") == "replaced"
