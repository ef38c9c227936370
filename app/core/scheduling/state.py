"""Booking, route order and route stop state machines."""

from enum import Enum
from typing import Set, TypeVar

from app.core.errors import ConflictError


class BookingStatus(str, Enum):
    """Lifecycle of a customer booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RouteOrderStatus(str, Enum):
    """Lifecycle of a day's multi-stop route."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RouteOrderType(str, Enum):
    """Who initiated the route."""

    CUSTOMER_REQUESTED = "customer_requested"
    PROVIDER_ANNOUNCED = "provider_announced"


class RouteStopStatus(str, Enum):
    """Outcome of a single stop."""

    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    PROBLEM = "problem"


# Bookings in these states block a time slot
OCCUPYING_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
})


BOOKING_TRANSITIONS: dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.COMPLETED: set(),  # Terminal
    BookingStatus.CANCELLED: set(),  # Terminal
}

ROUTE_ORDER_TRANSITIONS: dict[RouteOrderStatus, Set[RouteOrderStatus]] = {
    RouteOrderStatus.PENDING: {
        RouteOrderStatus.CONFIRMED,
        RouteOrderStatus.CANCELLED,
    },
    RouteOrderStatus.CONFIRMED: {
        RouteOrderStatus.IN_PROGRESS,
        RouteOrderStatus.CANCELLED,
    },
    RouteOrderStatus.IN_PROGRESS: {
        RouteOrderStatus.COMPLETED,
        RouteOrderStatus.CANCELLED,
    },
    RouteOrderStatus.COMPLETED: set(),
    RouteOrderStatus.CANCELLED: set(),
}

ROUTE_STOP_TRANSITIONS: dict[RouteStopStatus, Set[RouteStopStatus]] = {
    RouteStopStatus.PENDING: {
        RouteStopStatus.COMPLETED,
        RouteStopStatus.SKIPPED,
        RouteStopStatus.PROBLEM,
    },
    RouteStopStatus.COMPLETED: set(),
    RouteStopStatus.SKIPPED: set(),
    RouteStopStatus.PROBLEM: set(),
}

_TRANSITION_TABLES: dict[type, dict] = {
    BookingStatus: BOOKING_TRANSITIONS,
    RouteOrderStatus: ROUTE_ORDER_TRANSITIONS,
    RouteStopStatus: ROUTE_STOP_TRANSITIONS,
}

StatusT = TypeVar("StatusT", BookingStatus, RouteOrderStatus, RouteStopStatus)


def get_valid_transitions(state: StatusT) -> Set[StatusT]:
    """Get all valid transitions from a state."""
    return _TRANSITION_TABLES[type(state)].get(state, set())


def can_transition(from_state: StatusT, to_state: StatusT) -> bool:
    """Check if a state transition is valid."""
    if type(from_state) is not type(to_state):
        return False
    return to_state in get_valid_transitions(from_state)


def is_terminal_state(state: StatusT) -> bool:
    """Check if state is terminal (no further transitions)."""
    return not get_valid_transitions(state)


def ensure_transition(from_state: StatusT, to_state: StatusT, entity: str) -> None:
    """Raise ConflictError unless from_state -> to_state is allowed."""
    if can_transition(from_state, to_state):
        return

    allowed = sorted(s.value for s in get_valid_transitions(from_state))
    raise ConflictError(
        f"Cannot move {entity} from {from_state.value} to {to_state.value}",
        details={
            "from": from_state.value,
            "to": to_state.value,
            "allowed": allowed,
        },
    )
