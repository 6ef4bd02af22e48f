"""ACME resource state machines as observed by a polling client.

The client never drives a transition itself; it only observes snapshots
returned by the server.  Between two refreshes the server may have moved
through several states, so each table lists every status *reachable*
from a given status, not just the immediate successor.

Usage::

    from acmeflow.core.state import AUTHORIZATION_TRANSITIONS, check_observed

    check_observed(previous.status, refreshed.status, AUTHORIZATION_TRANSITIONS)
"""

from __future__ import annotations

import logging

from acmeflow.core.types import AuthorizationStatus, OrderStatus

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Order: pending -> ready -> processing -> valid, invalid from any
#        non-terminal state.  valid & invalid are terminal.
# ---------------------------------------------------------------------------

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.READY,
            OrderStatus.PROCESSING,
            OrderStatus.VALID,
            OrderStatus.INVALID,
        }
    ),
    OrderStatus.READY: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.VALID, OrderStatus.INVALID},
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.VALID, OrderStatus.INVALID}),
    OrderStatus.VALID: frozenset(),
    OrderStatus.INVALID: frozenset(),
}

# ---------------------------------------------------------------------------
# Authorization: pending -> valid/invalid/deactivated/expired,
#                valid -> deactivated/expired/revoked.
# ---------------------------------------------------------------------------

AUTHORIZATION_TRANSITIONS: dict[AuthorizationStatus, frozenset[AuthorizationStatus]] = {
    AuthorizationStatus.PENDING: frozenset(
        {
            AuthorizationStatus.VALID,
            AuthorizationStatus.INVALID,
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
        }
    ),
    AuthorizationStatus.VALID: frozenset(
        {
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
            AuthorizationStatus.REVOKED,
        }
    ),
    AuthorizationStatus.INVALID: frozenset(),
    AuthorizationStatus.DEACTIVATED: frozenset(),
    AuthorizationStatus.EXPIRED: frozenset(),
    AuthorizationStatus.REVOKED: frozenset(),
}

TERMINAL_AUTHORIZATION_STATUSES = frozenset(AuthorizationStatus) - {AuthorizationStatus.PENDING}
"""Statuses from which an authorization never returns to pending."""


def assert_transition(
    current: OrderStatus | AuthorizationStatus,
    target: OrderStatus | AuthorizationStatus,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* -> *target* is not allowed.

    Parameters
    ----------
    current:
        The last observed status of the resource.
    target:
        The newly observed status.
    table:
        :data:`ORDER_TRANSITIONS` or :data:`AUTHORIZATION_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown status {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def check_observed(current, observed, table: dict) -> bool:
    """Validate a refreshed status against the previous snapshot.

    Returns ``True`` when the status changed, ``False`` when it is
    unchanged.  Raises :class:`ValueError` for a transition the state
    machine does not allow (e.g. a terminal status reverting).
    """
    if observed == current:
        return False
    assert_transition(current, observed, table)
    return True


def log_transition(
    resource_type: str,
    resource_id,
    from_status,
    to_status,
) -> None:
    """Emit a structured log entry for an observed state transition.

    Parameters
    ----------
    resource_type:
        ``"order"`` or ``"authorization"``.
    resource_id:
        The resource URL (or domain for authorizations).
    from_status:
        The previous status value.
    to_status:
        The new status value.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    log.info(
        "%s %s: %s -> %s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        extra=extra,
    )
