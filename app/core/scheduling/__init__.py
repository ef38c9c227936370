"""
Scheduling Module

Provides the availability pipeline (schedule resolution, slot generation,
conflict and travel-feasibility filtering), route sequencing and the
booking/route state machines.

The engine, repository and lifecycle services depend on the ORM and are
imported from their own modules:

    from app.core.scheduling.engine import AvailabilityEngine
    from app.core.scheduling.service import BookingService, RouteService

Usage:
    from app.core.scheduling import resolve_day, generate_slots, apply_conflicts

    resolved = resolve_day(day, calendar.templates, calendar.exception_on(day))
    slots = apply_conflicts(generate_slots(resolved, 60), bookings, day, now)
"""

# State machines
from app.core.scheduling.state import (
    BookingStatus,
    RouteOrderStatus,
    RouteOrderType,
    RouteStopStatus,
    OCCUPYING_STATUSES,
    can_transition,
    ensure_transition,
    get_valid_transitions,
    is_terminal_state,
)

# Value types
from app.core.scheduling.models import (
    AvailabilitySummary,
    BookingSnapshot,
    CandidateSlot,
    DateException,
    DayAvailability,
    Location,
    ProviderCalendar,
    ResolvedDay,
    RouteStopInput,
    ScheduleSource,
    SequencedRoute,
    SequencedStop,
    SlotAvailability,
    UnavailableReason,
    WeeklyTemplate,
)

# Availability pipeline
from app.core.scheduling.schedule import resolve_day
from app.core.scheduling.slots import apply_conflicts, generate_slots
from app.core.scheduling.travel import (
    EstimateSource,
    TravelEstimate,
    TravelTimeEstimator,
    get_travel_estimator,
)
from app.core.scheduling.feasibility import FeasibilityReport, TravelFeasibilityFilter

# Route sequencing
from app.core.scheduling.sequencer import RouteSequencer

__all__ = [
    # State machines
    "BookingStatus",
    "RouteOrderStatus",
    "RouteOrderType",
    "RouteStopStatus",
    "OCCUPYING_STATUSES",
    "can_transition",
    "ensure_transition",
    "get_valid_transitions",
    "is_terminal_state",
    # Value types
    "AvailabilitySummary",
    "BookingSnapshot",
    "CandidateSlot",
    "DateException",
    "DayAvailability",
    "Location",
    "ProviderCalendar",
    "ResolvedDay",
    "RouteStopInput",
    "ScheduleSource",
    "SequencedRoute",
    "SequencedStop",
    "SlotAvailability",
    "UnavailableReason",
    "WeeklyTemplate",
    # Availability pipeline
    "resolve_day",
    "generate_slots",
    "apply_conflicts",
    "EstimateSource",
    "TravelEstimate",
    "TravelTimeEstimator",
    "get_travel_estimator",
    "FeasibilityReport",
    "TravelFeasibilityFilter",
    # Route sequencing
    "RouteSequencer",
]
