"""Unit tests for acmeflow.core.state -- observed resource state machines."""

from __future__ import annotations

import logging

import pytest

from acmeflow.core.state import (
    AUTHORIZATION_TRANSITIONS,
    ORDER_TRANSITIONS,
    TERMINAL_AUTHORIZATION_STATUSES,
    assert_transition,
    check_observed,
    log_transition,
)
from acmeflow.core.types import (
    AuthorizationStatus,
    OrderStatus,
)

# ---------------------------------------------------------------------------
# TestOrderTransitions
# ---------------------------------------------------------------------------


class TestOrderTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.READY),
            (OrderStatus.PENDING, OrderStatus.INVALID),
            (OrderStatus.PENDING, OrderStatus.VALID),
            (OrderStatus.READY, OrderStatus.PROCESSING),
            (OrderStatus.READY, OrderStatus.VALID),
            (OrderStatus.PROCESSING, OrderStatus.VALID),
            (OrderStatus.PROCESSING, OrderStatus.INVALID),
        ],
    )
    def test_reachable_transitions(self, current, target):
        assert_transition(current, target, ORDER_TRANSITIONS)  # no exception

    @pytest.mark.parametrize("terminal", [OrderStatus.VALID, OrderStatus.INVALID])
    def test_terminal_states_reject_everything(self, terminal):
        for target in OrderStatus:
            if target == terminal:
                continue
            with pytest.raises(ValueError, match="Invalid transition"):
                assert_transition(terminal, target, ORDER_TRANSITIONS)

    def test_processing_cannot_go_back_to_ready(self):
        with pytest.raises(ValueError, match="Invalid transition"):
            assert_transition(OrderStatus.PROCESSING, OrderStatus.READY, ORDER_TRANSITIONS)

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Unknown status"):
            assert_transition("bogus", OrderStatus.VALID, ORDER_TRANSITIONS)


# ---------------------------------------------------------------------------
# TestAuthorizationTransitions
# ---------------------------------------------------------------------------


class TestAuthorizationTransitions:
    @pytest.mark.parametrize(
        "target",
        [
            AuthorizationStatus.VALID,
            AuthorizationStatus.INVALID,
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
        ],
    )
    def test_pending_reaches(self, target):
        assert_transition(AuthorizationStatus.PENDING, target, AUTHORIZATION_TRANSITIONS)

    def test_pending_cannot_be_revoked(self):
        with pytest.raises(ValueError):
            assert_transition(
                AuthorizationStatus.PENDING,
                AuthorizationStatus.REVOKED,
                AUTHORIZATION_TRANSITIONS,
            )

    def test_valid_never_returns_to_pending(self):
        with pytest.raises(ValueError, match="Invalid transition"):
            assert_transition(
                AuthorizationStatus.VALID,
                AuthorizationStatus.PENDING,
                AUTHORIZATION_TRANSITIONS,
            )

    def test_terminal_set_excludes_only_pending(self):
        assert AuthorizationStatus.PENDING not in TERMINAL_AUTHORIZATION_STATUSES
        assert len(TERMINAL_AUTHORIZATION_STATUSES) == len(AuthorizationStatus) - 1


# ---------------------------------------------------------------------------
# check_observed / log_transition
# ---------------------------------------------------------------------------


class TestCheckObserved:
    def test_unchanged_returns_false(self):
        assert not check_observed(
            AuthorizationStatus.PENDING,
            AuthorizationStatus.PENDING,
            AUTHORIZATION_TRANSITIONS,
        )

    def test_terminal_unchanged_is_allowed(self):
        assert not check_observed(OrderStatus.VALID, OrderStatus.VALID, ORDER_TRANSITIONS)

    def test_changed_returns_true(self):
        assert check_observed(OrderStatus.READY, OrderStatus.VALID, ORDER_TRANSITIONS)

    def test_regression_raises(self):
        with pytest.raises(ValueError):
            check_observed(
                AuthorizationStatus.INVALID,
                AuthorizationStatus.PENDING,
                AUTHORIZATION_TRANSITIONS,
            )


class TestLogTransition:
    def test_emits_structured_record(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmeflow.core.state"):
            log_transition(
                "order",
                "https://ca.test/order/1",
                OrderStatus.READY,
                OrderStatus.PROCESSING,
            )
        record = caplog.records[-1]
        assert record.event == "state_transition"
        assert record.resource_type == "order"
        assert record.from_status == "ready"
        assert record.to_status == "processing"
        assert record.getMessage() == "order https://ca.test/order/1: ready -> processing"

    def test_plain_strings_accepted(self, caplog):
        with caplog.at_level(logging.INFO, logger="acmeflow.core.state"):
            log_transition("authorization", "example.com", "pending", "valid")
        assert caplog.records[-1].to_status == "valid"
