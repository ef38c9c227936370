"""
Route sequencing.

Orders a day's stops with a nearest-neighbor heuristic over routed driving
durations and stamps each stop with an ETA. When routing is unavailable a
leg falls back to a straight-line estimate and the route is flagged as
estimated.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from app.core.errors import ValidationError
from app.core.scheduling.models import (
    Location,
    RouteStopInput,
    SequencedRoute,
    SequencedStop,
)
from app.core.scheduling.travel import (
    TravelEstimate,
    TravelTimeEstimator,
    get_travel_estimator,
    pair_key,
)

logger = logging.getLogger(__name__)


class RouteSequencer:
    """
    Nearest-neighbor route builder.

    Each step estimates every remaining candidate from the current position
    concurrently, then picks the shortest drive. Ties go to the stop created
    first.
    """

    def __init__(self, estimator: Optional[TravelTimeEstimator] = None):
        self._estimator = estimator

    def _get_estimator(self) -> TravelTimeEstimator:
        """Get travel estimator."""
        if self._estimator is None:
            self._estimator = get_travel_estimator()
        return self._estimator

    @staticmethod
    def _check_unique(stops: Sequence[RouteStopInput]) -> None:
        seen: set[str] = set()
        for stop in stops:
            if stop.id in seen:
                raise ValidationError(f"Duplicate stop id {stop.id}")
            seen.add(stop.id)

    async def sequence(
        self,
        stops: Sequence[RouteStopInput],
        start_location: Location,
        start_time: datetime,
        fixed_first_stop_id: Optional[str] = None,
    ) -> SequencedRoute:
        """Order stops and compute ETAs.

        Args:
            stops: Stops to visit (any order)
            start_location: Where the provider starts the day
            start_time: Departure time from start_location
            fixed_first_stop_id: Stop that must be visited first, if any

        Returns:
            SequencedRoute with contiguous stop_order 0..n-1
        """
        self._check_unique(stops)
        if not stops:
            return SequencedRoute(stops=[], start_time=start_time)

        estimator = self._get_estimator()
        limiter = estimator.new_limiter()

        # Creation rank, then input position
        remaining = sorted(
            enumerate(stops), key=lambda item: (item[1].sequence, item[0])
        )
        ordered: list[tuple[RouteStopInput, TravelEstimate]] = []
        current = start_location

        if fixed_first_stop_id is not None:
            index = next(
                (i for i, (_, s) in enumerate(remaining) if s.id == fixed_first_stop_id),
                None,
            )
            if index is None:
                raise ValidationError(
                    f"Fixed first stop {fixed_first_stop_id} is not part of the route"
                )
            _, first = remaining.pop(index)
            leg = await estimator.estimate(
                current, first.location, fallback=True, limiter=limiter
            )
            ordered.append((first, leg))
            current = first.location

        while remaining:
            estimates = await estimator.estimate_many(
                [(current, s.location) for _, s in remaining],
                fallback=True,
                limiter=limiter,
            )

            best_index = 0
            best_key: Optional[tuple[float, int, int]] = None
            for i, (position, stop) in enumerate(remaining):
                leg = estimates[pair_key(current, stop.location)]
                key = (leg.duration_seconds or 0.0, stop.sequence, position)
                if best_key is None or key < best_key:
                    best_key = key
                    best_index = i

            _, chosen = remaining.pop(best_index)
            ordered.append((chosen, estimates[pair_key(current, chosen.location)]))
            current = chosen.location

        route = self._build(ordered, start_time)
        logger.info(
            f"Sequenced {len(route.stops)} stops, "
            f"{route.total_distance_meters / 1000:.1f} km"
            f"{' (estimated)' if route.is_estimated else ''}"
        )
        return route

    async def recompute(
        self,
        stops_in_order: Sequence[RouteStopInput],
        start_location: Location,
        start_time: datetime,
    ) -> SequencedRoute:
        """Recompute ETAs for a fixed stop order."""
        self._check_unique(stops_in_order)
        if not stops_in_order:
            return SequencedRoute(stops=[], start_time=start_time)

        legs: list[tuple[Location, Location]] = []
        current = start_location
        for stop in stops_in_order:
            legs.append((current, stop.location))
            current = stop.location

        estimates = await self._get_estimator().estimate_many(legs, fallback=True)
        ordered = [
            (stop, estimates[pair_key(origin, destination)])
            for stop, (origin, destination) in zip(stops_in_order, legs)
        ]
        return self._build(ordered, start_time)

    @staticmethod
    def _build(
        ordered: list[tuple[RouteStopInput, TravelEstimate]],
        start_time: datetime,
    ) -> SequencedRoute:
        clock = start_time
        sequenced: list[SequencedStop] = []
        for position, (stop, leg) in enumerate(ordered):
            travel_seconds = leg.duration_seconds or 0.0
            arrival = clock + timedelta(seconds=travel_seconds)
            departure = arrival + timedelta(minutes=stop.estimated_duration_min)
            sequenced.append(
                SequencedStop(
                    stop_id=stop.id,
                    stop_order=position,
                    estimated_arrival=arrival,
                    estimated_departure=departure,
                    travel_seconds=travel_seconds,
                    distance_meters=leg.distance_meters or 0.0,
                    is_estimated=leg.is_fallback,
                )
            )
            clock = departure

        return SequencedRoute(
            stops=sequenced,
            start_time=start_time,
            is_estimated=any(s.is_estimated for s in sequenced),
        )
