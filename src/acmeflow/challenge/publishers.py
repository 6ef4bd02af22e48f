"""Proof publishers used by challenge strategies.

A publisher makes proof material observable to the external verifier:
a token file under a webroot, a DNS TXT record, or a certificate for a
TLS proof server.  Publishers are only ever called from a challenge
strategy, never by the order/authorization state machine itself.

Built-in publishers:

- ``webroot_http``  -- write HTTP-01 tokens below ``<webroot>/.well-known/acme-challenge/``
- ``callback_http`` -- run deploy/cleanup scripts for HTTP-01 tokens
- ``callback_dns``  -- run create/delete scripts for DNS-01 TXT records
- ``file_tls``      -- write tls-sni-02 certificate and key PEM files

Custom publishers can be loaded via the ``ext:`` prefix
(e.g. ``ext:mypackage.publishers.MyPublisher``).
"""

from __future__ import annotations

import abc
import importlib
import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any

import dns.exception
import dns.resolver
from cryptography.hazmat.primitives import serialization

from acmeflow.challenge.proofs import HTTP_CHALLENGE_PATH
from acmeflow.errors import AcmeFlowError, ValidationTimeout
from acmeflow.services.polling import PollingScheduler

if TYPE_CHECKING:
    from cryptography import x509

log = logging.getLogger(__name__)


class PublisherError(AcmeFlowError):
    """Raised when a publisher is misconfigured or cannot publish."""


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class HttpProofPublisher(abc.ABC):
    """Serves ``key_authorization`` at ``/.well-known/acme-challenge/<token>``."""

    @abc.abstractmethod
    def publish(self, domain: str, token: str, key_authorization: str) -> None:
        """Make the key authorization fetchable for *token*."""

    def remove(self, domain: str, token: str) -> None:  # noqa: B027
        """Withdraw the token.  Default implementation is a no-op."""


class DnsProofPublisher(abc.ABC):
    """Answers TXT queries for ``_acme-challenge.<domain>``."""

    @abc.abstractmethod
    def publish_txt_record(self, name: str, digest: str) -> None:
        """Publish *digest* as a TXT record at *name*."""

    def remove_txt_record(self, name: str) -> None:  # noqa: B027
        """Withdraw the TXT record.  Default implementation is a no-op."""


class TlsProofPublisher(abc.ABC):
    """Presents a certificate when a verifier connects with SNI = subject name."""

    @abc.abstractmethod
    def publish_certificate(
        self,
        subject_name: str,
        private_key: Any,  # noqa: ANN401
        certificate: x509.Certificate,
    ) -> None:
        """Serve *certificate* (signed by *private_key*) for *subject_name*."""

    def remove_certificate(self, subject_name: str) -> None:  # noqa: B027
        """Stop serving the certificate.  Default implementation is a no-op."""


# ---------------------------------------------------------------------------
# Built-in implementations
# ---------------------------------------------------------------------------


def _run_script(script: str, args: list[str], timeout: int) -> None:
    try:
        subprocess.run(  # noqa: S603
            [script, *args],
            check=True,
            timeout=timeout,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        msg = f"Script '{script}' failed: {exc}"
        raise PublisherError(msg) from exc


class WebrootHttpPublisher(HttpProofPublisher):
    """Write tokens into a webroot served by an existing HTTP server.

    Required config keys:

    - ``webroot``: directory that contains ``.well-known/acme-challenge/``

    """

    def __init__(self, webroot: str | Path) -> None:
        self._dir = Path(webroot) / HTTP_CHALLENGE_PATH.strip("/")

    def publish(self, domain: str, token: str, key_authorization: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            (self._dir / token).write_text(key_authorization, encoding="ascii")
        except OSError as exc:
            msg = f"Cannot write token {token} below {self._dir}: {exc}"
            raise PublisherError(msg) from exc
        log.info("HTTP token %s published for %s", token, domain)

    def remove(self, domain: str, token: str) -> None:
        (self._dir / token).unlink(missing_ok=True)
        log.debug("HTTP token %s removed for %s", token, domain)


class CallbackHttpPublisher(HttpProofPublisher):
    """Deploy HTTP-01 tokens through external scripts.

    Required config keys:

    - ``deploy_script``: called as ``script <domain> <token> <key_authorization>``
    - ``cleanup_script``: called as ``script <domain> <token>``

    """

    def __init__(self, deploy_script: str, cleanup_script: str, script_timeout: int = 60) -> None:
        self._deploy = deploy_script
        self._cleanup = cleanup_script
        self._timeout = script_timeout

    def publish(self, domain: str, token: str, key_authorization: str) -> None:
        log.info("HTTP deploy: %s %s via %s", token, domain, self._deploy)
        _run_script(self._deploy, [domain, token, key_authorization], self._timeout)

    def remove(self, domain: str, token: str) -> None:
        log.info("HTTP cleanup: %s %s via %s", token, domain, self._cleanup)
        _run_script(self._cleanup, [domain, token], self._timeout)


class CallbackDnsPublisher(DnsProofPublisher):
    """Manage DNS-01 TXT records through external scripts.

    Required config keys:

    - ``create_script``: called as ``script <record_name> <digest>``
    - ``delete_script``: called as ``script <record_name>``

    Optional:

    - ``resolvers``: nameservers to query when checking propagation
    - ``propagation_timeout``: seconds to wait for the record to become
      visible (0 disables the check, default 0)
    - ``propagation_interval``: seconds between propagation queries (default 5)

    """

    def __init__(  # noqa: PLR0913
        self,
        create_script: str,
        delete_script: str,
        *,
        script_timeout: int = 60,
        resolvers: tuple[str, ...] = (),
        propagation_timeout: int = 0,
        propagation_interval: int = 5,
    ) -> None:
        self._create = create_script
        self._delete = delete_script
        self._timeout = script_timeout
        self._resolvers = tuple(resolvers)
        self._propagation_timeout = propagation_timeout
        self._propagation_interval = propagation_interval

    def publish_txt_record(self, name: str, digest: str) -> None:
        log.info("DNS create: %s via %s", name, self._create)
        _run_script(self._create, [name, digest], self._timeout)
        if self._propagation_timeout > 0:
            wait_for_txt_record(
                name,
                digest,
                resolvers=self._resolvers,
                timeout=self._propagation_timeout,
                interval=self._propagation_interval,
            )

    def remove_txt_record(self, name: str) -> None:
        log.info("DNS delete: %s via %s", name, self._delete)
        _run_script(self._delete, [name], self._timeout)


class FileTlsPublisher(TlsProofPublisher):
    """Write proof certificates for a TLS server that loads them by SNI.

    Required config keys:

    - ``directory``: files are written as ``<subject_name>.crt`` / ``.key``

    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    def publish_certificate(
        self,
        subject_name: str,
        private_key: Any,  # noqa: ANN401
        certificate: x509.Certificate,
    ) -> None:
        key_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            (self._dir / f"{subject_name}.key").write_bytes(key_pem)
            (self._dir / f"{subject_name}.crt").write_bytes(
                certificate.public_bytes(serialization.Encoding.PEM),
            )
        except OSError as exc:
            msg = f"Cannot write TLS proof for {subject_name} below {self._dir}: {exc}"
            raise PublisherError(msg) from exc
        log.info("TLS proof certificate published for %s", subject_name)

    def remove_certificate(self, subject_name: str) -> None:
        for suffix in (".crt", ".key"):
            (self._dir / f"{subject_name}{suffix}").unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# DNS propagation
# ---------------------------------------------------------------------------


def _query_txt(resolver: dns.resolver.Resolver, name: str) -> set[str]:
    try:
        answer = resolver.resolve(name, "TXT")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return set()
    values: set[str] = set()
    for rdata in answer:
        values.add(b"".join(rdata.strings).decode("ascii", errors="replace"))
    return values


def wait_for_txt_record(
    name: str,
    digest: str,
    *,
    resolvers: tuple[str, ...] = (),
    timeout: float = 60,
    interval: float = 5,
) -> None:
    """Block until *name* answers TXT queries with *digest*.

    Raises
    ------
    PublisherError
        If the record did not become visible within *timeout*, or a
        query failed outright.

    """
    resolver = dns.resolver.Resolver()
    if resolvers:
        resolver.nameservers = list(resolvers)
    resolver.lifetime = interval

    seen: set[str] = set()

    def refresh() -> None:
        nonlocal seen
        try:
            seen = _query_txt(resolver, name)
        except dns.exception.Timeout:
            seen = set()

    try:
        PollingScheduler(poll_interval=interval, timeout=timeout).wait(
            lambda: digest in seen,
            refresh,
            resource=name,
        )
    except ValidationTimeout as exc:
        msg = f"TXT record {name} not visible after {timeout:g}s"
        raise PublisherError(msg) from exc
    except AcmeFlowError as exc:
        msg = f"TXT lookup for {name} failed: {exc}"
        raise PublisherError(msg) from exc
    log.info("TXT record %s is visible", name)


# ---------------------------------------------------------------------------
# Loading from configuration
# ---------------------------------------------------------------------------


def _require(config: dict[str, Any], key: str, name: str) -> Any:  # noqa: ANN401
    value = config.get(key)
    if not value:
        msg = f"{name} publisher requires '{key}' in config"
        raise PublisherError(msg)
    return value


def _webroot_http(config: dict[str, Any]) -> WebrootHttpPublisher:
    return WebrootHttpPublisher(_require(config, "webroot", "webroot_http"))


def _callback_http(config: dict[str, Any]) -> CallbackHttpPublisher:
    return CallbackHttpPublisher(
        deploy_script=_require(config, "deploy_script", "callback_http"),
        cleanup_script=_require(config, "cleanup_script", "callback_http"),
        script_timeout=config.get("script_timeout", 60),
    )


def _callback_dns(config: dict[str, Any]) -> CallbackDnsPublisher:
    return CallbackDnsPublisher(
        create_script=_require(config, "create_script", "callback_dns"),
        delete_script=_require(config, "delete_script", "callback_dns"),
        script_timeout=config.get("script_timeout", 60),
        resolvers=tuple(config.get("resolvers", ())),
        propagation_timeout=config.get("propagation_timeout", 0),
        propagation_interval=config.get("propagation_interval", 5),
    )


def _file_tls(config: dict[str, Any]) -> FileTlsPublisher:
    return FileTlsPublisher(_require(config, "directory", "file_tls"))


_BUILTIN_PUBLISHERS = {
    "webroot_http": _webroot_http,
    "callback_http": _callback_http,
    "callback_dns": _callback_dns,
    "file_tls": _file_tls,
}

_PUBLISHER_BASES = (HttpProofPublisher, DnsProofPublisher, TlsProofPublisher)


def load_publisher(name: str, config: dict[str, Any]) -> Any:  # noqa: ANN401
    """Create a publisher by built-in name or ``ext:`` class path.

    Parameters
    ----------
    name:
        One of ``webroot_http``, ``callback_http``, ``callback_dns``,
        ``file_tls``, or ``ext:fully.qualified.PublisherClass``.  An
        external class is instantiated with the config dict as keyword
        arguments.
    config:
        The ``challenges.publisher_config`` dict from settings.

    Raises
    ------
    PublisherError
        If the publisher cannot be loaded or created.

    """
    if name in _BUILTIN_PUBLISHERS:
        return _BUILTIN_PUBLISHERS[name](config)

    if name.startswith("ext:"):
        return _load_external_publisher(name[4:], config)

    msg = (
        f"Unknown publisher '{name}'; built-in options: {sorted(_BUILTIN_PUBLISHERS)}. "
        "Use 'ext:mypackage.module.PublisherClass' for custom publishers."
    )
    raise PublisherError(msg)


def _load_external_publisher(fqn: str, config: dict[str, Any]) -> Any:  # noqa: ANN401
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = (
            f"Invalid external publisher '{fqn}': must be fully "
            "qualified (e.g. 'mypackage.module.PublisherClass')"
        )
        raise PublisherError(msg)
    try:
        cls = getattr(importlib.import_module(module_path), cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load external publisher '{fqn}': {exc}"
        raise PublisherError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, _PUBLISHER_BASES)):
        msg = f"External publisher '{fqn}' must subclass one of the proof publisher interfaces"
        raise PublisherError(msg)
    return cls(**config)
