"""Tests for booking, route order and route stop state machines."""

import pytest

from app.core.errors import ConflictError
from app.core.scheduling.state import (
    OCCUPYING_STATUSES,
    BookingStatus,
    RouteOrderStatus,
    RouteStopStatus,
    can_transition,
    ensure_transition,
    is_terminal_state,
)


class TestBookingStatus:
    """Test booking state transitions."""

    def test_valid_transitions(self):
        assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        assert can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)

    def test_cannot_skip_confirmation(self):
        assert not can_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_terminal_states(self):
        """Test COMPLETED and CANCELLED are terminal."""
        assert is_terminal_state(BookingStatus.COMPLETED)
        assert is_terminal_state(BookingStatus.CANCELLED)
        assert not can_transition(BookingStatus.CANCELLED, BookingStatus.PENDING)
        assert not can_transition(BookingStatus.COMPLETED, BookingStatus.CANCELLED)

    def test_cancelled_does_not_occupy(self):
        assert BookingStatus.CANCELLED not in OCCUPYING_STATUSES
        assert BookingStatus.COMPLETED in OCCUPYING_STATUSES


class TestRouteOrderStatus:
    """Test route order state transitions."""

    def test_route_flow(self):
        # PENDING -> CONFIRMED -> IN_PROGRESS -> COMPLETED
        assert can_transition(RouteOrderStatus.PENDING, RouteOrderStatus.CONFIRMED)
        assert can_transition(RouteOrderStatus.CONFIRMED, RouteOrderStatus.IN_PROGRESS)
        assert can_transition(RouteOrderStatus.IN_PROGRESS, RouteOrderStatus.COMPLETED)

    @pytest.mark.parametrize(
        "status",
        [RouteOrderStatus.PENDING, RouteOrderStatus.CONFIRMED, RouteOrderStatus.IN_PROGRESS],
    )
    def test_cancel_from_any_active_state(self, status):
        assert can_transition(status, RouteOrderStatus.CANCELLED)

    def test_cannot_start_unconfirmed(self):
        assert not can_transition(RouteOrderStatus.PENDING, RouteOrderStatus.IN_PROGRESS)

    def test_terminal_states(self):
        assert is_terminal_state(RouteOrderStatus.COMPLETED)
        assert is_terminal_state(RouteOrderStatus.CANCELLED)


class TestRouteStopStatus:
    """Test route stop state transitions."""

    @pytest.mark.parametrize(
        "outcome",
        [RouteStopStatus.COMPLETED, RouteStopStatus.SKIPPED, RouteStopStatus.PROBLEM],
    )
    def test_pending_to_outcome(self, outcome):
        assert can_transition(RouteStopStatus.PENDING, outcome)
        assert is_terminal_state(outcome)

    def test_outcome_is_final(self):
        assert not can_transition(RouteStopStatus.SKIPPED, RouteStopStatus.COMPLETED)


class TestEnsureTransition:
    """Test ensure_transition."""

    def test_allowed(self):
        ensure_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, "booking b1")

    def test_rejected_with_details(self):
        with pytest.raises(ConflictError) as exc_info:
            ensure_transition(BookingStatus.CANCELLED, BookingStatus.CONFIRMED, "booking b1")

        error = exc_info.value
        assert error.status_code == 409
        assert error.details["from"] == "cancelled"
        assert error.details["allowed"] == []

    def test_mixed_machines_rejected(self):
        """A booking status is never a valid target for a route order."""
        assert not can_transition(RouteOrderStatus.PENDING, BookingStatus.CONFIRMED)
