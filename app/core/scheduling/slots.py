"""
Slot generation and conflict filtering.

Both steps are local, deterministic and side-effect free.
"""

from datetime import date, datetime
from typing import Iterable, Optional

from app.core.errors import ValidationError
from app.core.scheduling.models import (
    BookingSnapshot,
    CandidateSlot,
    ResolvedDay,
    SlotAvailability,
    UnavailableReason,
    from_minutes,
    to_minutes,
)


def generate_slots(
    resolved: ResolvedDay,
    duration_minutes: int,
    granularity_minutes: int = 15,
) -> list[CandidateSlot]:
    """Produce candidate slots for a resolved day.

    Starts at open_start, steps by granularity and stops once a slot would
    end after open_end.

    Args:
        resolved: Effective open interval
        duration_minutes: Service duration
        granularity_minutes: Step between consecutive starts

    Returns:
        Ordered list of candidate slots (empty when closed or too short)
    """
    if duration_minutes <= 0:
        raise ValidationError("Service duration must be positive")
    if granularity_minutes <= 0:
        raise ValidationError("Slot granularity must be positive")

    if resolved.is_closed or resolved.open_start is None or resolved.open_end is None:
        return []

    open_start = to_minutes(resolved.open_start)
    open_end = to_minutes(resolved.open_end)

    slots: list[CandidateSlot] = []
    start = open_start
    while start + duration_minutes <= open_end:
        slots.append(
            CandidateSlot(
                start_time=from_minutes(start),
                end_time=from_minutes(start + duration_minutes),
            )
        )
        start += granularity_minutes

    return slots


def occupying_bookings(bookings: Iterable[BookingSnapshot]) -> list[BookingSnapshot]:
    """Occupying bookings sorted by start (then end) time."""
    return sorted(
        (b for b in bookings if b.is_occupying),
        key=lambda b: (b.start_minutes, b.end_minutes, b.id),
    )


def overlaps(start: int, end: int, booking: BookingSnapshot) -> bool:
    """Half-open interval overlap. Touching intervals do not overlap."""
    return start < booking.end_minutes and end > booking.start_minutes


def apply_conflicts(
    candidates: list[CandidateSlot],
    bookings: Iterable[BookingSnapshot],
    day: date,
    now_local: Optional[datetime] = None,
) -> list[SlotAvailability]:
    """Mark candidates that are in the past or overlap an occupying booking.

    Args:
        candidates: Output of generate_slots
        bookings: The provider's bookings on this date (any status)
        day: The queried date
        now_local: Current wall-clock time in the provider's time zone.
            When None, past-slot exclusion is skipped.

    Returns:
        One SlotAvailability per candidate, in the same order
    """
    occupying = occupying_bookings(bookings)

    past_cutoff: Optional[int] = None
    all_past = False
    if now_local is not None:
        today = now_local.date()
        if day < today:
            all_past = True
        elif day == today:
            past_cutoff = now_local.hour * 60 + now_local.minute

    results: list[SlotAvailability] = []
    for candidate in candidates:
        slot = SlotAvailability.from_candidate(candidate)
        start, end = candidate.start_minutes, candidate.end_minutes

        if all_past or (past_cutoff is not None and start <= past_cutoff):
            slot.mark_unavailable(UnavailableReason.PAST)
        elif any(overlaps(start, end, b) for b in occupying):
            slot.mark_unavailable(UnavailableReason.BOOKED)

        results.append(slot)

    return results
