"""Authorization resolver -- one authorization's validation lifecycle.

Selects and publishes a challenge through the caller's strategy,
triggers it, then polls the authorization until the server reports a
terminal status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmeflow.core.state import (
    AUTHORIZATION_TRANSITIONS,
    TERMINAL_AUTHORIZATION_STATUSES,
    check_observed,
    log_transition,
)
from acmeflow.core.types import AuthorizationStatus, ChallengeStatus
from acmeflow.errors import AuthorizationFailed, ProtocolError
from acmeflow.logging import resolution_context

if TYPE_CHECKING:
    import threading

    from acmeflow.challenge.strategies import ChallengeStrategy
    from acmeflow.models import Authorization, Challenge
    from acmeflow.services.polling import PollingScheduler
    from acmeflow.transport import AcmeTransport

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationOutcome:
    """Result of resolving one authorization.

    Attributes
    ----------
    authorization:
        The last snapshot observed.
    challenge:
        The challenge that was triggered, or ``None`` when the
        authorization was already valid.
    attempts:
        Number of polling attempts made.

    """

    authorization: Authorization
    challenge: Challenge | None = None
    attempts: int = 0

    @property
    def domain(self) -> str:
        return self.authorization.domain

    @property
    def status(self) -> AuthorizationStatus:
        return self.authorization.status


class AuthorizationResolver:
    """Drive a single authorization to a terminal status.

    Parameters
    ----------
    transport:
        Transport used to trigger challenges and refresh authorizations.
    scheduler:
        Bounded polling primitive awaiting the server's decision.

    """

    def __init__(self, transport: AcmeTransport, scheduler: PollingScheduler) -> None:
        self._transport = transport
        self._scheduler = scheduler

    def resolve(
        self,
        authorization: Authorization,
        strategy: ChallengeStrategy,
        *,
        cancel_event: threading.Event | None = None,
    ) -> AuthorizationOutcome:
        """Validate *authorization* using the challenge *strategy* picks.

        Returns
        -------
        AuthorizationOutcome
            For an authorization that ended valid.

        Raises
        ------
        AuthorizationFailed
            If the authorization ended in any other terminal status.
        ValidationTimeout
            If the server did not decide within the polling bound.
        RefreshFailure
            If refreshing the authorization failed while polling; a
            snapshot with an impossible transition surfaces here with a
            :class:`ProtocolError` cause.
        ProtocolError
            If the server rejected the trigger.

        """
        with resolution_context(domain=authorization.domain):
            if authorization.status == AuthorizationStatus.VALID:
                log.info("Authorization for %s is already valid", authorization.domain)
                return AuthorizationOutcome(authorization=authorization)
            if authorization.status in TERMINAL_AUTHORIZATION_STATUSES:
                raise AuthorizationFailed(
                    authorization.domain,
                    authorization.status,
                    authorization.error,
                )

            challenge = strategy(authorization)
            if challenge not in authorization.challenges:
                msg = (
                    f"Strategy returned a challenge ({challenge.url}) that is not "
                    f"offered by the authorization for {authorization.domain}"
                )
                raise ValueError(msg)

            try:
                latest, attempts = self._trigger_and_wait(authorization, challenge, cancel_event)
            finally:
                self._cleanup(strategy, authorization, challenge)

            if latest.status != AuthorizationStatus.VALID:
                raise AuthorizationFailed(latest.domain, latest.status, latest.error)

            log.info(
                "Authorization for %s is valid after %d attempt(s)",
                latest.domain,
                attempts,
            )
            return AuthorizationOutcome(
                authorization=latest,
                challenge=challenge,
                attempts=attempts,
            )

    def _trigger_and_wait(
        self,
        authorization: Authorization,
        challenge: Challenge,
        cancel_event: threading.Event | None,
    ) -> tuple[Authorization, int]:
        self.trigger(challenge)

        current = authorization

        def refresh() -> None:
            nonlocal current
            refreshed = self._transport.update_authorization(current)
            self._observe(current, refreshed)
            current = refreshed

        attempts = self._scheduler.wait(
            lambda: current.status in TERMINAL_AUTHORIZATION_STATUSES,
            refresh,
            resource=authorization,
            cancel_event=cancel_event,
        )
        return current, attempts

    def trigger(self, challenge: Challenge) -> None:
        """Ask the server to validate *challenge*.

        A challenge the server is already processing (or has decided)
        is not triggered again.
        """
        if challenge.status != ChallengeStatus.PENDING:
            log.debug(
                "Challenge %s is %s, not triggering again",
                challenge.url,
                challenge.status.value,
            )
            return
        log.info("Triggering %s challenge %s", challenge.type.value, challenge.url)
        self._transport.trigger_challenge(challenge)

    @staticmethod
    def _observe(previous: Authorization, refreshed: Authorization) -> None:
        if refreshed.domain != previous.domain:
            msg = (
                f"Authorization {previous.url} changed domain from "
                f"{previous.domain} to {refreshed.domain}"
            )
            raise ProtocolError(msg)
        try:
            changed = check_observed(
                previous.status,
                refreshed.status,
                AUTHORIZATION_TRANSITIONS,
            )
        except ValueError as exc:
            msg = f"Authorization for {previous.domain}: {exc}"
            raise ProtocolError(msg) from exc
        if changed:
            log_transition("authorization", previous.domain, previous.status, refreshed.status)

    @staticmethod
    def _cleanup(
        strategy: ChallengeStrategy,
        authorization: Authorization,
        challenge: Challenge,
    ) -> None:
        cleanup = getattr(strategy, "cleanup", None)
        if cleanup is None:
            return
        try:
            cleanup(authorization, challenge)
        except Exception:  # noqa: BLE001
            log.warning(
                "Proof cleanup failed for %s",
                authorization.domain,
                exc_info=True,
            )
