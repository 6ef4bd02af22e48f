"""Bounded poll-until-condition primitive.

Each attempt sleeps for the poll interval, refreshes remote state and
evaluates the predicate.  A refresh error is wrapped in
:class:`~acmeflow.errors.RefreshFailure` so callers can tell "the
refresh broke" apart from "still pending"; running out of time raises
:class:`~acmeflow.errors.ValidationTimeout`.

Usage::

    scheduler = PollingScheduler(poll_interval=3, timeout=30)
    scheduler.wait(lambda: box[0].status != PENDING, refresh, resource=authz)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from acmeflow.errors import PollingCancelled, RefreshFailure, ValidationTimeout

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmeflow.config.settings import PollingSettings

log = logging.getLogger(__name__)


class PollingScheduler:
    """Repeatedly refresh and test a condition within a time bound.

    Parameters
    ----------
    poll_interval:
        Seconds to sleep before every attempt.
    timeout:
        Seconds after which the wait fails with :class:`ValidationTimeout`.
        The wait returns or raises within ``timeout + poll_interval``.
    clock:
        Monotonic clock, injectable for tests.
    sleep:
        ``sleep(seconds, cancel_event)`` returning ``True`` when the event
        was set during the sleep.  Defaults to :meth:`threading.Event.wait`.

    """

    def __init__(
        self,
        poll_interval: float = 3.0,
        timeout: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float, threading.Event], bool] | None = None,
    ) -> None:
        if poll_interval <= 0:
            msg = f"poll_interval must be positive, got {poll_interval}"
            raise ValueError(msg)
        if timeout < 0:
            msg = f"timeout must not be negative, got {timeout}"
            raise ValueError(msg)
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep or _event_sleep

    @classmethod
    def from_settings(cls, settings: PollingSettings) -> PollingScheduler:
        """Build a scheduler from the ``polling`` config section."""
        return cls(
            poll_interval=settings.interval_seconds,
            timeout=settings.timeout_seconds,
        )

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def timeout(self) -> float:
        return self._timeout

    def wait(
        self,
        predicate: Callable[[], bool],
        refresh: Callable[[], Any],
        *,
        resource: Any = None,  # noqa: ANN401
        cancel_event: threading.Event | None = None,
    ) -> int:
        """Poll until *predicate* holds.

        Parameters
        ----------
        predicate:
            Evaluated after every refresh; the wait ends when it returns
            ``True``.
        refresh:
            Re-fetches remote state into whatever *predicate* inspects.
        resource:
            The entity being polled, attached to raised errors.
        cancel_event:
            Setting this event aborts the wait with :class:`PollingCancelled`.

        Returns
        -------
        int
            Number of attempts made.

        Raises
        ------
        RefreshFailure
            If *refresh* raised.
        ValidationTimeout
            If the timeout elapsed before *predicate* held.
        PollingCancelled
            If *cancel_event* was set.

        """
        event = cancel_event or threading.Event()
        deadline = self._clock() + self._timeout
        attempts = 0

        while True:
            if self._sleep(self._poll_interval, event):
                raise PollingCancelled(resource)
            attempts += 1

            try:
                refresh()
            except Exception as exc:
                log.warning("Refresh failed on attempt %d: %s", attempts, exc)
                raise RefreshFailure(resource, exc) from exc

            if predicate():
                log.debug("Condition met after %d attempt(s)", attempts)
                return attempts

            if self._clock() >= deadline:
                log.info(
                    "Polling gave up after %d attempt(s) (timeout=%ss)",
                    attempts,
                    self._timeout,
                )
                raise ValidationTimeout(resource, self._timeout, attempts)


def _event_sleep(seconds: float, event: threading.Event) -> bool:
    return event.wait(seconds)
