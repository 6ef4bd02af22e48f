"""Tests for acmeflow.services.certificate."""

from __future__ import annotations

import dataclasses
import hashlib
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from acmeflow.core.types import OrderStatus
from acmeflow.errors import FinalizationError, ProtocolError
from acmeflow.services.certificate import CertificateFinalizer, parse_chain, subject_for
from acmeflow.services.polling import PollingScheduler


@pytest.fixture()
def valid_order(fake_ca, make_csr, window, fake_clock):
    """Drive an order on the fake CA to valid without the coordinator."""
    order = fake_ca.create_order(make_csr("example.com", "www.example.com"), *window)
    scheduler = PollingScheduler(3, 30, clock=fake_clock, sleep=fake_clock.sleep)
    for authz in order.authorizations:
        fake_ca.trigger_challenge(authz.challenges[0])
        state = {"authz": authz}
        scheduler.wait(
            lambda s=state: s["authz"].status.value == "valid",
            lambda s=state: s.update(authz=fake_ca.update_authorization(s["authz"])),
        )
    fake_ca.finalize_order(fake_ca.update_order(order))
    return fake_ca.update_order(order)


class TestRetrieve:
    def test_parses_leaf(self, fake_ca, valid_order):
        cert = CertificateFinalizer(fake_ca).retrieve(valid_order)

        assert cert.subject_name == subject_for("example.com")
        assert cert.not_before == valid_order.not_before
        assert cert.not_after == valid_order.not_after
        assert len(cert.chain) == 2
        assert cert.leaf == cert.chain[0]
        assert cert.fingerprint == hashlib.sha256(cert.leaf).hexdigest()
        assert cert.pem_chain.count("-----BEGIN CERTIFICATE-----") == 2

    def test_expected_subject_match(self, fake_ca, valid_order):
        cert = CertificateFinalizer(fake_ca).retrieve(
            valid_order,
            expected_subject="CN=example.com",
        )
        assert int(cert.serial_number, 16) > 0

    def test_expected_subject_mismatch(self, fake_ca, valid_order):
        with pytest.raises(ProtocolError, match="does not match"):
            CertificateFinalizer(fake_ca).retrieve(valid_order, expected_subject="CN=other.example")

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PENDING, OrderStatus.READY, OrderStatus.PROCESSING, OrderStatus.INVALID],
    )
    def test_requires_valid_order(self, fake_ca, valid_order, status):
        order = dataclasses.replace(valid_order, status=status)
        with pytest.raises(FinalizationError, match=status.value):
            CertificateFinalizer(fake_ca).retrieve(order)

    def test_empty_chain(self, valid_order):
        transport = MagicMock()
        transport.fetch_certificate.return_value = ()
        with pytest.raises(ProtocolError, match="empty certificate chain"):
            CertificateFinalizer(transport).retrieve(valid_order)


class TestParseChain:
    def test_garbage(self):
        with pytest.raises(ProtocolError, match="not valid DER"):
            parse_chain((b"\x30\x03junk",))

    def test_garbage_intermediate(self, fake_ca, valid_order):
        leaf = fake_ca.fetch_certificate(valid_order)[0]
        with pytest.raises(ProtocolError):
            parse_chain((leaf, b"nope"))

    def test_fingerprint_of_leaf_only(self, fake_ca, valid_order):
        leaf, intermediate = fake_ca.fetch_certificate(valid_order)
        cert = parse_chain((leaf, intermediate))
        expected = x509.load_der_x509_certificate(leaf).fingerprint(hashes.SHA256())
        assert cert.fingerprint == expected.hex()
        assert cert.fingerprint != parse_chain((intermediate,)).fingerprint
