"""Exception taxonomy for the acmeflow client core.

Every exception carries a human-readable :attr:`detail`.  The RFC 8555
error-type URNs below are what servers put in problem documents;
transports attach them to :class:`ProtocolError` so callers can branch
on the server's reason.

Usage::

    raise ProtocolError("CSR rejected", error_type=BAD_CSR, status=400)
"""

from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# RFC 8555 §6.7 -- ACME error-type URNs
# ---------------------------------------------------------------------------
_P = "urn:ietf:params:acme:error:"

BAD_CSR = _P + "badCSR"
BAD_NONCE = _P + "badNonce"
CAA = _P + "caa"
COMPOUND = _P + "compound"
CONNECTION = _P + "connection"
DNS = _P + "dns"
INCORRECT_RESPONSE = _P + "incorrectResponse"
MALFORMED = _P + "malformed"
ORDER_NOT_READY = _P + "orderNotReady"
RATE_LIMITED = _P + "rateLimited"
REJECTED_IDENTIFIER = _P + "rejectedIdentifier"
SERVER_INTERNAL = _P + "serverInternal"
TLS = _P + "tls"
UNAUTHORIZED = _P + "unauthorized"
UNSUPPORTED_IDENTIFIER = _P + "unsupportedIdentifier"


class AcmeFlowError(Exception):
    """Base class for every error raised by acmeflow.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ProtocolError(AcmeFlowError):
    """The transport or server rejected a request or answered inconsistently.

    Never retried by the core.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    error_type:
        RFC 8555 error URN from the server's problem document, if any.
    status:
        HTTP status code of the failed request, if any.
    retryable:
        Whether the caller may reasonably retry later (e.g. rate limits).

    """

    def __init__(
        self,
        detail: str,
        *,
        error_type: str | None = None,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.error_type = error_type
        self.status = status
        self.retryable = retryable
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Render in the RFC 7807 problem shape."""
        body: dict[str, Any] = {"detail": self.detail}
        if self.error_type is not None:
            body["type"] = self.error_type
        if self.status is not None:
            body["status"] = self.status
        return body


class RefreshFailure(AcmeFlowError):
    """Re-fetching a resource while polling failed.

    Distinguishes "the refresh itself broke" from "still pending".
    The original exception is available as :attr:`cause` and as
    ``__cause__``.
    """

    def __init__(self, resource: Any, cause: BaseException) -> None:  # noqa: ANN401
        self.resource = resource
        self.cause = cause
        super().__init__(f"Failed to refresh {_describe(resource)}: {cause}")


class ValidationTimeout(AcmeFlowError):
    """The polled condition did not hold within the configured bound."""

    def __init__(self, resource: Any, timeout: float, attempts: int) -> None:  # noqa: ANN401
        self.resource = resource
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Timed out after {timeout:g}s ({attempts} attempts) waiting for "
            f"{_describe(resource)}",
        )


class PollingCancelled(AcmeFlowError):
    """A poll was cancelled through its cancel event."""

    def __init__(self, resource: Any) -> None:  # noqa: ANN401
        self.resource = resource
        super().__init__(f"Polling cancelled for {_describe(resource)}")


class AuthorizationFailed(AcmeFlowError):
    """An authorization reached a terminal status other than valid.

    Parameters
    ----------
    domain:
        The domain whose authorization failed.
    status:
        The terminal status the server reported.
    error:
        The server's problem document for the failed challenge, if any.

    """

    def __init__(self, domain: str, status: Any, error: dict | None = None) -> None:  # noqa: ANN401
        self.domain = domain
        self.status = status
        self.error = error
        status_value = getattr(status, "value", status)
        detail = f"Authorization for {domain} is {status_value}"
        if error and error.get("detail"):
            detail += f": {error['detail']}"
        super().__init__(detail)


class ChallengeNotOffered(AcmeFlowError, LookupError):
    """The authorization does not offer the requested challenge type."""

    def __init__(self, domain: str, challenge_type: Any) -> None:  # noqa: ANN401
        self.domain = domain
        self.challenge_type = challenge_type
        type_value = getattr(challenge_type, "value", challenge_type)
        super().__init__(f"Authorization for {domain} does not offer a {type_value} challenge")


class FinalizationError(AcmeFlowError):
    """Finalize or certificate retrieval was attempted out of order.

    Parameters
    ----------
    detail:
        Human-readable description of the violation.
    domains:
        Domains whose authorizations are not valid, when that is the cause.

    """

    def __init__(self, detail: str, *, domains: tuple[str, ...] = ()) -> None:
        self.domains = tuple(domains)
        super().__init__(detail)


class OrderResolutionError(AcmeFlowError):
    """One or more authorizations of an order did not become valid.

    :attr:`failures` maps each failed domain to the exception that ended
    its resolution.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        body = "\n".join(f"  - {domain}: {exc}" for domain, exc in self.failures.items())
        super().__init__(
            f"{len(self.failures)} authorization(s) failed:\n{body}",
        )

    @property
    def domains(self) -> tuple[str, ...]:
        """Domains whose authorizations failed, in order-of-appearance."""
        return tuple(self.failures)


def _describe(resource: Any) -> str:  # noqa: ANN401
    """Return a short label for *resource* used in error messages."""
    if resource is None:
        return "resource"
    domain = getattr(resource, "domain", None)
    if domain:
        return f"authorization {domain}"
    url = getattr(resource, "url", None)
    if url:
        return f"{type(resource).__name__.lower()} {url}"
    return repr(resource)
