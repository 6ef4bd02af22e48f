"""Order coordinator -- the order lifecycle from CSR to certificate.

Creates the order, fans out to one resolver run per authorization,
aggregates every per-domain outcome, finalizes once all authorizations
are valid, and hands the valid order to the certificate finalizer.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from acmeflow.core.csr import csr_domains, csr_subject, identifier_for, load_csr
from acmeflow.core.state import ORDER_TRANSITIONS, check_observed, log_transition
from acmeflow.core.types import AuthorizationStatus, OrderStatus
from acmeflow.errors import (
    AcmeFlowError,
    FinalizationError,
    OrderResolutionError,
    ProtocolError,
)
from acmeflow.logging import resolution_context
from acmeflow.services.authorization import AuthorizationOutcome, AuthorizationResolver
from acmeflow.services.certificate import CertificateFinalizer
from acmeflow.services.polling import PollingScheduler

if TYPE_CHECKING:
    import threading
    from datetime import datetime

    from acmeflow.challenge.strategies import ChallengeStrategy
    from acmeflow.config.settings import AcmeflowSettings
    from acmeflow.models import Authorization, Certificate, Order
    from acmeflow.transport import AcmeTransport

log = logging.getLogger(__name__)

_FINALIZING_STATUSES = frozenset({OrderStatus.READY, OrderStatus.PROCESSING})


@dataclass(frozen=True)
class OrderResolution:
    """Aggregate of every authorization outcome of one order.

    Attributes
    ----------
    order:
        The order the authorizations belong to.
    outcomes:
        Domain -> outcome for every authorization that ended valid.
    failures:
        Domain -> exception for every authorization that did not.

    """

    order: Order
    outcomes: dict[str, AuthorizationOutcome] = field(default_factory=dict)
    failures: dict[str, AcmeFlowError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_domains(self) -> tuple[str, ...]:
        return tuple(self.failures)

    def raise_for_failures(self) -> None:
        """Raise :class:`OrderResolutionError` naming every failed domain."""
        if self.failures:
            raise OrderResolutionError(self.failures)


class OrderCoordinator:
    """Drive an order from creation to a retrievable certificate.

    Parameters
    ----------
    transport:
        Transport used for every order request.
    resolver:
        Resolver used for each authorization.
    finalizer:
        Certificate finalizer; one is built on *transport* when omitted.
    order_scheduler:
        Polling used while the server issues after finalize.
    parallel:
        Resolve authorizations concurrently, one task per domain.
    max_workers:
        Upper bound on concurrent resolutions when *parallel* is set.

    """

    def __init__(  # noqa: PLR0913
        self,
        transport: AcmeTransport,
        resolver: AuthorizationResolver,
        finalizer: CertificateFinalizer | None = None,
        *,
        order_scheduler: PollingScheduler | None = None,
        parallel: bool = False,
        max_workers: int = 4,
    ) -> None:
        self._transport = transport
        self._resolver = resolver
        self._finalizer = finalizer or CertificateFinalizer(transport)
        self._order_scheduler = order_scheduler or PollingScheduler()
        self._parallel = parallel
        self._max_workers = max(1, max_workers)

    @classmethod
    def from_settings(
        cls,
        transport: AcmeTransport,
        settings: AcmeflowSettings,
    ) -> OrderCoordinator:
        """Wire a coordinator from the ``polling`` and ``order`` sections."""
        resolver = AuthorizationResolver(
            transport,
            PollingScheduler.from_settings(settings.polling),
        )
        return cls(
            transport,
            resolver,
            order_scheduler=PollingScheduler(
                poll_interval=settings.order.finalize_interval_seconds,
                timeout=settings.order.finalize_timeout_seconds,
            ),
            parallel=settings.order.parallel_authorizations,
            max_workers=settings.order.max_workers,
        )

    # -- creation -----------------------------------------------------------

    def create_order(
        self,
        csr: bytes,
        not_before: datetime,
        not_after: datetime,
    ) -> Order:
        """Request issuance for the domains named in *csr*.

        Raises
        ------
        ValueError
            If the window is empty or *csr* is not a CSR naming a domain.
        ProtocolError
            If the server rejects the order or does not echo it faithfully.

        """
        if not_after <= not_before:
            msg = (
                f"not_after ({not_after.isoformat()}) must be later than "
                f"not_before ({not_before.isoformat()})"
            )
            raise ValueError(msg)
        domains = csr_domains(load_csr(csr))
        if not domains:
            msg = "CSR does not name any domain"
            raise ValueError(msg)

        log.info("Creating order for %d domain(s): %s", len(domains), ", ".join(domains))
        order = self._transport.create_order(csr, not_before, not_after)
        self._check_created(order, csr, not_before, not_after, domains)
        log.info("Order %s created with status %s", order.url, order.status.value)
        return order

    @staticmethod
    def _check_created(  # noqa: PLR0913
        order: Order,
        csr: bytes,
        not_before: datetime,
        not_after: datetime,
        domains: tuple[str, ...],
    ) -> None:
        problems: list[str] = []
        if order.csr != csr:
            problems.append("CSR differs from the submitted one")
        if order.not_before != not_before or order.not_after != not_after:
            problems.append(
                f"validity window {order.not_before} .. {order.not_after} differs "
                f"from requested {not_before} .. {not_after}",
            )

        identifiers = [
            identifier_for(a.domain.lower(), wildcard=a.wildcard) for a in order.authorizations
        ]
        if sorted(identifiers) != sorted(domains):
            problems.append(
                f"authorizations cover {sorted(identifiers)}, CSR names {sorted(domains)}",
            )

        statuses = {a.status for a in order.authorizations}
        all_reused = statuses == {AuthorizationStatus.VALID}
        if not statuses <= {AuthorizationStatus.PENDING, AuthorizationStatus.VALID}:
            problems.append(
                f"authorizations start in {sorted(s.value for s in statuses)}",
            )
        expected_status = {OrderStatus.PENDING}
        if all_reused:
            expected_status.add(OrderStatus.READY)
        if order.status not in expected_status:
            problems.append(f"order starts {order.status.value}")

        if problems:
            msg = f"Server returned an inconsistent order {order.url}: " + "; ".join(problems)
            raise ProtocolError(msg)

    # -- authorizations -----------------------------------------------------

    def resolve_authorizations(
        self,
        order: Order,
        strategy: ChallengeStrategy,
        *,
        cancel_event: threading.Event | None = None,
    ) -> OrderResolution:
        """Resolve every authorization of *order* and collect the outcomes.

        A failing authorization never stops its siblings; every failure
        is recorded under its domain.
        """
        with resolution_context(order_url=order.url):
            if self._parallel and len(order.authorizations) > 1:
                results = self._resolve_parallel(order, strategy, cancel_event)
            else:
                results = [
                    self._resolve_one(order.url, authz, strategy, cancel_event)
                    for authz in order.authorizations
                ]

        resolution = OrderResolution(order=order)
        for authz, result in zip(order.authorizations, results, strict=True):
            if isinstance(result, AuthorizationOutcome):
                resolution.outcomes[authz.domain] = result
            else:
                resolution.failures[authz.domain] = result

        if resolution.ok:
            log.info("All %d authorization(s) of %s are valid", len(resolution.outcomes), order.url)
        else:
            log.warning(
                "Authorization failed for %s on order %s",
                ", ".join(resolution.failed_domains),
                order.url,
            )
        return resolution

    def _resolve_parallel(
        self,
        order: Order,
        strategy: ChallengeStrategy,
        cancel_event: threading.Event | None,
    ) -> list[AuthorizationOutcome | AcmeFlowError]:
        workers = min(self._max_workers, len(order.authorizations))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="acmeflow-authz") as pool:
            futures = [
                pool.submit(self._resolve_one, order.url, authz, strategy, cancel_event)
                for authz in order.authorizations
            ]
        # Leaving the executor waits for every task, so unexpected errors
        # surface only after all siblings have finished.
        return [f.result() for f in futures]

    def _resolve_one(
        self,
        order_url: str,
        authorization: Authorization,
        strategy: ChallengeStrategy,
        cancel_event: threading.Event | None,
    ) -> AuthorizationOutcome | AcmeFlowError:
        with resolution_context(order_url=order_url):
            try:
                return self._resolver.resolve(
                    authorization,
                    strategy,
                    cancel_event=cancel_event,
                )
            except AcmeFlowError as exc:
                log.warning("Authorization for %s failed: %s", authorization.domain, exc)
                return exc

    # -- finalization -------------------------------------------------------

    def finalize(
        self,
        order: Order,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Order:
        """Finalize *order* once every authorization is valid.

        Returns the order once the server reports it valid.

        Raises
        ------
        FinalizationError
            If any authorization is not valid, the order is invalid, or
            the server invalidates it while issuing.
        ValidationTimeout
            If issuance did not complete within the finalize polling bound.

        """
        with resolution_context(order_url=order.url):
            latest = self._refresh(order)

            if latest.status == OrderStatus.INVALID:
                msg = f"Order {order.url} is invalid and cannot be finalized"
                raise FinalizationError(msg, domains=_not_valid(latest))
            not_valid = _not_valid(latest)
            if not_valid:
                msg = (
                    f"Cannot finalize order {order.url}: authorization not valid for "
                    f"{', '.join(not_valid)}"
                )
                raise FinalizationError(msg, domains=not_valid)
            if latest.status == OrderStatus.VALID:
                log.info("Order %s is already valid", order.url)
                return latest

            if latest.status == OrderStatus.PENDING:
                latest = self._wait(latest, {OrderStatus.PENDING}, cancel_event)
            if latest.status == OrderStatus.READY:
                log.info("Finalizing order %s", order.url)
                finalized = self._transport.finalize_order(latest)
                self._observe(latest, finalized)
                latest = finalized
            if latest.status in _FINALIZING_STATUSES:
                latest = self._wait(latest, _FINALIZING_STATUSES, cancel_event)

            if latest.status != OrderStatus.VALID:
                detail = (latest.error or {}).get("detail", "no detail given")
                msg = f"Order {order.url} became {latest.status.value} during finalization: {detail}"
                raise FinalizationError(msg)

            log.info("Order %s is valid", order.url)
            return latest

    def _wait(
        self,
        order: Order,
        waiting: set[OrderStatus] | frozenset[OrderStatus],
        cancel_event: threading.Event | None,
    ) -> Order:
        current = order

        def refresh() -> None:
            nonlocal current
            current = self._refresh(current)

        self._order_scheduler.wait(
            lambda: current.status not in waiting,
            refresh,
            resource=order,
            cancel_event=cancel_event,
        )
        return current

    def _refresh(self, order: Order) -> Order:
        refreshed = self._transport.update_order(order)
        self._observe(order, refreshed)
        return refreshed

    @staticmethod
    def _observe(previous: Order, refreshed: Order) -> None:
        if (
            refreshed.csr != previous.csr
            or refreshed.not_before != previous.not_before
            or refreshed.not_after != previous.not_after
        ):
            msg = f"Order {previous.url} changed its CSR or validity window"
            raise ProtocolError(msg)
        try:
            changed = check_observed(previous.status, refreshed.status, ORDER_TRANSITIONS)
        except ValueError as exc:
            msg = f"Order {previous.url}: {exc}"
            raise ProtocolError(msg) from exc
        if changed:
            log_transition("order", previous.url, previous.status, refreshed.status)

    # -- complete flow ------------------------------------------------------

    def issue(
        self,
        csr: bytes,
        not_before: datetime,
        not_after: datetime,
        strategy: ChallengeStrategy,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Certificate:
        """Run the whole flow and return the issued certificate.

        Raises
        ------
        OrderResolutionError
            Naming every domain whose authorization did not become valid.

        """
        order = self.create_order(csr, not_before, not_after)
        resolution = self.resolve_authorizations(order, strategy, cancel_event=cancel_event)
        resolution.raise_for_failures()
        order = self.finalize(order, cancel_event=cancel_event)
        return self._finalizer.retrieve(
            order,
            expected_subject=csr_subject(load_csr(csr)),
        )


def _not_valid(order: Order) -> tuple[str, ...]:
    return tuple(
        a.domain for a in order.authorizations if a.status != AuthorizationStatus.VALID
    )
