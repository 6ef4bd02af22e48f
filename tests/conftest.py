"""Root conftest for the acmeflow test suite."""

from __future__ import annotations

import hashlib
import sys
import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec, rsa  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402

from acmeflow.core.csr import csr_domains, load_csr  # noqa: E402
from acmeflow.core.keys import AccountKey  # noqa: E402
from acmeflow.core.types import (  # noqa: E402
    AuthorizationStatus,
    ChallengeStatus,
    ChallengeType,
    OrderStatus,
)
from acmeflow.errors import INCORRECT_RESPONSE, ORDER_NOT_READY, ProtocolError  # noqa: E402
from acmeflow.models import Authorization, Challenge, Order  # noqa: E402
from acmeflow.services.polling import PollingScheduler  # noqa: E402
from acmeflow.transport import AcmeTransport  # noqa: E402

NOT_BEFORE = datetime(2030, 1, 1, tzinfo=UTC)
NOT_AFTER = datetime(2030, 4, 1, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Keys and CSRs
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def account_key(rsa_private_key) -> AccountKey:
    return AccountKey(rsa_private_key)


@pytest.fixture(scope="session")
def csr_key():
    return ec.generate_private_key(ec.SECP256R1())


def build_csr(key, domains, *, common_name=True, pem=True) -> bytes:
    """Build a CSR naming *domains*; the first becomes the CN."""
    builder = x509.CertificateSigningRequestBuilder()
    if common_name and domains:
        builder = builder.subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]),
        )
    else:
        builder = builder.subject_name(x509.Name([]))
    if domains:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
    csr = builder.sign(key, hashes.SHA256())
    encoding = serialization.Encoding.PEM if pem else serialization.Encoding.DER
    return csr.public_bytes(encoding)


@pytest.fixture()
def make_csr(csr_key):
    """Return ``make_csr(*domains, **kwargs) -> bytes``."""

    def _make(*domains, **kwargs):
        return build_csr(csr_key, list(domains), **kwargs)

    return _make


# ---------------------------------------------------------------------------
# Fake clock for PollingScheduler
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by :meth:`sleep`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float, event: threading.Event) -> bool:
        if event.is_set():
            return True
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds
        return False


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler(fake_clock) -> PollingScheduler:
    """A 3s/30s scheduler running on the fake clock."""
    return PollingScheduler(3, 30, clock=fake_clock, sleep=fake_clock.sleep)


# ---------------------------------------------------------------------------
# In-memory CA
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def ca_material():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "acmeflow test CA")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(datetime(2020, 1, 1, tzinfo=UTC))
        .not_valid_after(datetime(2040, 1, 1, tzinfo=UTC))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


class FakeCA(AcmeTransport):
    """In-memory ACME server implementing :class:`AcmeTransport`.

    Parameters
    ----------
    ca_material:
        ``(key, certificate)`` used to sign issued leaves.
    offered:
        Challenge types offered for every authorization.
    failing:
        Domains whose challenge validation fails.
    undecided:
        Domains whose authorization stays pending forever.
    reused:
        Domains whose authorization is already valid at order creation.
    decide_after:
        Number of authorization refreshes after a trigger before the
        server decides.
    verifier:
        Optional ``verifier(authorization, challenge) -> bool`` consulted
        instead of *failing* when deciding.

    """

    def __init__(  # noqa: PLR0913
        self,
        ca_material,
        *,
        offered=(ChallengeType.HTTP_01, ChallengeType.DNS_01, ChallengeType.TLS_SNI_02),
        failing=(),
        undecided=(),
        reused=(),
        decide_after=1,
        verifier=None,
    ) -> None:
        self._ca_key, self._ca_cert = ca_material
        self.offered = tuple(offered)
        self.failing = set(failing)
        self.undecided = set(undecided)
        self.reused = set(reused)
        self.decide_after = decide_after
        self.verifier = verifier

        self.orders: dict[str, Order] = {}
        self.authorizations: dict[str, Authorization] = {}
        self.certificates: dict[str, tuple[bytes, ...]] = {}
        self.triggered: list[Challenge] = []
        self.finalize_calls = 0
        self.calls: list[str] = []

        self._countdown: dict[str, int] = {}
        self._processing: set[str] = set()
        self._order_authz: dict[str, list[str]] = {}
        self._counter = 0
        self._lock = threading.RLock()

    # -- helpers ------------------------------------------------------------

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def _authz_for_challenge(self, challenge: Challenge) -> Authorization:
        for authz in self.authorizations.values():
            if any(c.url == challenge.url for c in authz.challenges):
                return authz
        msg = f"Unknown challenge {challenge.url}"
        raise ProtocolError(msg, status=404)

    def _current_order(self, url: str) -> Order:
        order = self.orders[url]
        authzs = tuple(self.authorizations[a] for a in self._order_authz[url])
        status = order.status
        if status in (OrderStatus.PENDING, OrderStatus.READY):
            statuses = {a.status for a in authzs}
            if statuses == {AuthorizationStatus.VALID}:
                status = OrderStatus.READY
            elif statuses - {AuthorizationStatus.PENDING, AuthorizationStatus.VALID}:
                status = OrderStatus.INVALID
            else:
                status = OrderStatus.PENDING
        order = Order(
            url=order.url,
            csr=order.csr,
            not_before=order.not_before,
            not_after=order.not_after,
            status=status,
            authorizations=authzs,
            certificate_url=order.certificate_url,
            error=order.error,
        )
        self.orders[url] = order
        return order

    def _decide(self, authz: Authorization) -> Authorization:
        chosen = next(c for c in authz.challenges if c.status == ChallengeStatus.PROCESSING)
        if self.verifier is not None:
            ok = self.verifier(authz, chosen)
        else:
            ok = authz.domain not in self.failing
        error = None
        if not ok:
            error = {
                "type": INCORRECT_RESPONSE,
                "detail": f"Proof for {authz.domain} did not match",
            }
        decided = Challenge(
            url=chosen.url,
            type=chosen.type,
            token=chosen.token,
            status=ChallengeStatus.VALID if ok else ChallengeStatus.INVALID,
            error=error,
        )
        return Authorization(
            url=authz.url,
            domain=authz.domain,
            status=AuthorizationStatus.VALID if ok else AuthorizationStatus.INVALID,
            challenges=tuple(decided if c.url == chosen.url else c for c in authz.challenges),
            wildcard=authz.wildcard,
        )

    def _issue(self, order: Order) -> tuple[bytes, ...]:
        csr = load_csr(order.csr)
        domains = csr_domains(csr)
        serial = int.from_bytes(hashlib.sha256(order.url.encode()).digest()[:8], "big")
        leaf = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self._ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(serial)
            .not_valid_before(order.not_before)
            .not_valid_after(order.not_after)
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
            .sign(self._ca_key, hashes.SHA256())
        )
        return (
            leaf.public_bytes(serialization.Encoding.DER),
            self._ca_cert.public_bytes(serialization.Encoding.DER),
        )

    # -- AcmeTransport ------------------------------------------------------

    def create_order(self, csr, not_before, not_after) -> Order:
        with self._lock:
            self.calls.append("create_order")
            order_url = f"https://ca.test/order/{self._next()}"
            authz_urls = []
            for identifier in csr_domains(load_csr(csr)):
                n = self._next()
                wildcard = identifier.startswith("*.")
                domain = identifier.removeprefix("*.")
                status = (
                    AuthorizationStatus.VALID
                    if identifier in self.reused
                    else AuthorizationStatus.PENDING
                )
                challenges = tuple(
                    Challenge(
                        url=f"https://ca.test/chall/{n}/{ct.value}",
                        type=ct,
                        token=f"token-{n}-{ct.value}",
                        status=(
                            ChallengeStatus.VALID
                            if status == AuthorizationStatus.VALID
                            else ChallengeStatus.PENDING
                        ),
                    )
                    for ct in self.offered
                )
                url = f"https://ca.test/authz/{n}"
                self.authorizations[url] = Authorization(
                    url=url,
                    domain=domain,
                    status=status,
                    challenges=challenges,
                    wildcard=wildcard,
                )
                authz_urls.append(url)
            self._order_authz[order_url] = authz_urls
            self.orders[order_url] = Order(
                url=order_url,
                csr=csr,
                not_before=not_before,
                not_after=not_after,
                status=OrderStatus.PENDING,
            )
            return self._current_order(order_url)

    def update_order(self, order: Order) -> Order:
        with self._lock:
            self.calls.append("update_order")
            if order.url in self._processing:
                self._processing.discard(order.url)
                current = self.orders[order.url]
                self.certificates[order.url] = self._issue(current)
                self.orders[order.url] = Order(
                    url=current.url,
                    csr=current.csr,
                    not_before=current.not_before,
                    not_after=current.not_after,
                    status=OrderStatus.VALID,
                    authorizations=current.authorizations,
                    certificate_url=f"{current.url}/cert",
                )
            return self._current_order(order.url)

    def update_authorization(self, authorization: Authorization) -> Authorization:
        with self._lock:
            self.calls.append("update_authorization")
            current = self.authorizations[authorization.url]
            remaining = self._countdown.get(current.url)
            if remaining is None or current.domain in self.undecided:
                return current
            if remaining > 1:
                self._countdown[current.url] = remaining - 1
                return current
            del self._countdown[current.url]
            decided = self._decide(current)
            self.authorizations[current.url] = decided
            return decided

    def trigger_challenge(self, challenge: Challenge) -> Challenge:
        with self._lock:
            self.calls.append("trigger_challenge")
            self.triggered.append(challenge)
            authz = self._authz_for_challenge(challenge)
            processing = Challenge(
                url=challenge.url,
                type=challenge.type,
                token=challenge.token,
                status=ChallengeStatus.PROCESSING,
            )
            self.authorizations[authz.url] = Authorization(
                url=authz.url,
                domain=authz.domain,
                status=authz.status,
                challenges=tuple(
                    processing if c.url == challenge.url else c for c in authz.challenges
                ),
                wildcard=authz.wildcard,
            )
            self._countdown[authz.url] = self.decide_after
            return processing

    def finalize_order(self, order: Order) -> Order:
        with self._lock:
            self.calls.append("finalize_order")
            self.finalize_calls += 1
            current = self._current_order(order.url)
            if current.status != OrderStatus.READY:
                msg = f"Order {order.url} is {current.status.value}"
                raise ProtocolError(msg, error_type=ORDER_NOT_READY, status=403)
            self._processing.add(order.url)
            processing = Order(
                url=current.url,
                csr=current.csr,
                not_before=current.not_before,
                not_after=current.not_after,
                status=OrderStatus.PROCESSING,
                authorizations=current.authorizations,
            )
            self.orders[order.url] = processing
            return processing

    def fetch_certificate(self, order: Order) -> tuple[bytes, ...]:
        with self._lock:
            self.calls.append("fetch_certificate")
            return self.certificates.get(order.url, ())


@pytest.fixture()
def fake_ca(ca_material) -> FakeCA:
    return FakeCA(ca_material)


@pytest.fixture()
def make_ca(ca_material):
    """Return ``make_ca(**kwargs) -> FakeCA``."""

    def _make(**kwargs):
        return FakeCA(ca_material, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class RecordingStrategy:
    """Picks the first offered challenge of a type and records calls."""

    def __init__(self, challenge_type=ChallengeType.HTTP_01) -> None:
        self.challenge_type = challenge_type
        self.selected: list[str] = []
        self.cleaned: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, authorization):
        challenge = next(c for c in authorization.challenges if c.type == self.challenge_type)
        with self._lock:
            self.selected.append(authorization.domain)
        return challenge

    def cleanup(self, authorization, challenge):
        with self._lock:
            self.cleaned.append(authorization.domain)


@pytest.fixture()
def strategy() -> RecordingStrategy:
    return RecordingStrategy()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a dict containing a complete, valid configuration."""
    return {
        "polling": {"interval_seconds": 3, "timeout_seconds": 30},
        "challenges": {
            "preferred_type": "http-01",
            "publisher": "webroot_http",
            "publisher_config": {"webroot": str(tmp_path / "www")},
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the AcmeflowConfig singleton before and after every test."""
    from acmeflow.config.acmeflow_config import AcmeflowConfig

    AcmeflowConfig.reset()
    yield
    AcmeflowConfig.reset()


@pytest.fixture()
def window() -> tuple[datetime, datetime]:
    return NOT_BEFORE, NOT_AFTER


