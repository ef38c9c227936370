"""
Travel-feasibility filtering.

For each still-available slot, looks up the provider's commitment just
before and just after it and checks that the gap covers the driving time to
or from the customer plus a safety buffer. Routing failures fail closed for
the affected slot and are reported, never raised.
"""

import asyncio
import bisect
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import get_settings
from app.core.scheduling.models import (
    BookingSnapshot,
    Location,
    ResolvedDay,
    SlotAvailability,
    UnavailableReason,
    to_minutes,
)
from app.core.scheduling.slots import occupying_bookings
from app.core.scheduling.travel import (
    TravelEstimate,
    TravelTimeEstimator,
    get_travel_estimator,
    pair_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Commitment:
    """Something the provider must travel from or to."""

    start_minutes: int
    end_minutes: int
    location: Optional[Location]
    label: str


@dataclass
class FeasibilityReport:
    """What the filter did to a day's slots."""

    checked_slots: int = 0
    rejected_slots: int = 0
    degraded_slots: int = 0
    failed_pairs: int = 0

    @property
    def routing_degraded(self) -> bool:
        return self.failed_pairs > 0


class CommitmentIndex:
    """Sorted view of a day's commitments for neighbor lookup."""

    def __init__(self, bookings: Iterable[BookingSnapshot], resolved: ResolvedDay):
        occupying = occupying_bookings(bookings)
        commitments = [
            Commitment(
                start_minutes=b.start_minutes,
                end_minutes=b.end_minutes,
                location=b.location,
                label=f"booking:{b.id}",
            )
            for b in occupying
        ]

        self._by_end = sorted(commitments, key=lambda c: (c.end_minutes, c.start_minutes))
        self._ends = [c.end_minutes for c in self._by_end]
        self._by_start = sorted(commitments, key=lambda c: (c.start_minutes, c.end_minutes))
        self._starts = [c.start_minutes for c in self._by_start]

        self._opening_anchor: Optional[Commitment] = None
        self._closing_anchor: Optional[Commitment] = None
        if resolved.work_location is not None and not resolved.is_closed:
            open_start = to_minutes(resolved.open_start)
            open_end = to_minutes(resolved.open_end)
            self._opening_anchor = Commitment(
                open_start, open_start, resolved.work_location, "work_location"
            )
            self._closing_anchor = Commitment(
                open_end, open_end, resolved.work_location, "work_location"
            )

    def previous(self, start_minutes: int) -> Optional[Commitment]:
        """Latest commitment ending at or before start_minutes."""
        idx = bisect.bisect_right(self._ends, start_minutes)
        if idx > 0:
            return self._by_end[idx - 1]
        return self._opening_anchor

    def next(self, end_minutes: int) -> Optional[Commitment]:
        """Earliest commitment starting at or after end_minutes."""
        idx = bisect.bisect_left(self._starts, end_minutes)
        if idx < len(self._by_start):
            return self._by_start[idx]
        return self._closing_anchor


class TravelFeasibilityFilter:
    """Rejects slots the provider cannot physically reach in time."""

    def __init__(
        self,
        estimator: Optional[TravelTimeEstimator] = None,
        buffer_minutes: Optional[int] = None,
    ):
        self._estimator = estimator
        self.buffer_minutes = (
            buffer_minutes
            if buffer_minutes is not None
            else get_settings().travel_buffer_minutes
        )

    def _get_estimator(self) -> TravelTimeEstimator:
        """Get travel estimator."""
        if self._estimator is None:
            self._estimator = get_travel_estimator()
        return self._estimator

    async def apply(
        self,
        slots: list[SlotAvailability],
        bookings: Iterable[BookingSnapshot],
        resolved: ResolvedDay,
        customer_location: Location,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> FeasibilityReport:
        """Mark infeasible slots with reason travel-time, in place.

        Args:
            slots: Output of the conflict filter
            bookings: The provider's bookings on this date
            resolved: Effective open interval (for the work-location anchor)
            customer_location: Where the new service would take place
            limiter: Semaphore bounding concurrent routing calls

        Returns:
            FeasibilityReport with counts of rejected and degraded slots
        """
        report = FeasibilityReport()
        index = CommitmentIndex(bookings, resolved)

        neighbors: list[tuple[SlotAvailability, Optional[Commitment], Optional[Commitment]]] = []
        pairs: list[tuple[Location, Location]] = []

        for slot in slots:
            if not slot.is_available:
                continue
            before = index.previous(slot.start_minutes)
            after = index.next(slot.end_minutes)
            if before is not None and before.location is not None:
                pairs.append((before.location, customer_location))
            if after is not None and after.location is not None:
                pairs.append((customer_location, after.location))
            neighbors.append((slot, before, after))

        if not pairs:
            report.checked_slots = len(neighbors)
            return report

        estimator = self._get_estimator()
        estimates = await estimator.estimate_many(pairs, fallback=False, limiter=limiter)
        report.failed_pairs = sum(1 for e in estimates.values() if not e.ok)

        for slot, before, after in neighbors:
            report.checked_slots += 1
            infeasible = False
            degraded = False

            if before is not None and before.location is not None:
                estimate = estimates[pair_key(before.location, customer_location)]
                gap = slot.start_minutes - before.end_minutes
                verdict = self._check_gap(estimate, gap)
                infeasible = infeasible or verdict is False
                degraded = degraded or verdict is None

            if after is not None and after.location is not None:
                estimate = estimates[pair_key(customer_location, after.location)]
                gap = after.start_minutes - slot.end_minutes
                verdict = self._check_gap(estimate, gap)
                infeasible = infeasible or verdict is False
                degraded = degraded or verdict is None

            if infeasible or degraded:
                slot.mark_unavailable(UnavailableReason.TRAVEL_TIME)
                report.rejected_slots += 1
                if degraded and not infeasible:
                    report.degraded_slots += 1

        if report.routing_degraded:
            logger.warning(
                f"Routing degraded: {report.failed_pairs} pair(s) failed, "
                f"{report.degraded_slots} slot(s) failed closed"
            )

        return report

    def _check_gap(self, estimate: TravelEstimate, gap_minutes: int) -> Optional[bool]:
        """True if the gap suffices, False if not, None if unknown."""
        if not estimate.ok:
            return None
        required = estimate.minutes + self.buffer_minutes
        return gap_minutes >= required
