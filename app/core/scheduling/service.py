"""
Lifecycle services.

Apply state-machine transitions to bookings, route orders and route stops,
keep stop ordering dense, and guard booking writes against double booking.
All methods run inside the caller's transaction.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Sequence

from app.core.errors import ConflictError, ValidationError
from app.core.scheduling.models import Location, SequencedRoute, parse_time
from app.core.scheduling.repository import (
    SchedulingRepository,
    parse_uuid,
    provider_base,
    to_stop_inputs,
)
from app.core.scheduling.sequencer import RouteSequencer
from app.core.scheduling.state import (
    BookingStatus,
    RouteOrderStatus,
    RouteStopStatus,
    ensure_transition,
    is_terminal_state,
)
from app.models.database import Booking, RouteOrder, RouteStop

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class BookingService:
    """Creates bookings and moves them through their lifecycle."""

    def __init__(
        self,
        repository: SchedulingRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repository = repository
        self._clock = clock or _utcnow

    async def _ensure_free(
        self,
        provider_id,
        day: date,
        start: time,
        end: time,
        exclude_id=None,
    ) -> None:
        """Lock the provider row and reject overlapping occupying bookings."""
        await self._repository.get_provider(provider_id, lock=True)
        clashes = await self._repository.find_overlapping_bookings(
            provider_id, day, start, end, exclude_id=exclude_id
        )
        if clashes:
            raise ConflictError(
                "Requested time overlaps an existing booking",
                details={"conflicting_booking_ids": [str(b.id) for b in clashes]},
            )

    async def create_booking(
        self,
        provider_id: str,
        service_id: str,
        customer_id: str,
        day: date,
        start_time: str | time,
        location: Optional[Location] = None,
        is_manual_booking: bool = False,
        customer_notes: Optional[str] = None,
    ) -> Booking:
        """Create a booking after a write-time overlap check.

        Manual bookings entered by the provider start confirmed; customer
        requests start pending.

        Raises:
            ValidationError: Bad input or service not offered by provider
            NotFoundError: Unknown provider or service
            ConflictError: Time overlaps an occupying booking
        """
        pid = parse_uuid(provider_id, "provider id")
        start = parse_time(start_time)

        service = await self._repository.get_service(service_id)
        if service.provider_id != pid:
            raise ValidationError("Service is not offered by this provider")

        start_dt = datetime.combine(day, start)
        end_dt = start_dt + timedelta(minutes=service.duration_minutes)
        if end_dt.date() != day:
            raise ValidationError("Booking cannot cross midnight")
        end = end_dt.time()

        await self._ensure_free(pid, day, start, end)

        now = self._clock()
        booking = Booking(
            provider_id=pid,
            service_id=service.id,
            customer_id=parse_uuid(customer_id, "customer id"),
            booking_date=day,
            start_time=start,
            end_time=end,
            status=BookingStatus.CONFIRMED if is_manual_booking else BookingStatus.PENDING,
            is_manual_booking=is_manual_booking,
            customer_notes=customer_notes,
            address=location.address if location else None,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            confirmed_at=now if is_manual_booking else None,
        )
        await self._repository.add(booking)

        logger.info(
            f"Created booking {booking.id} for provider {pid} on {day} "
            f"{start:%H:%M}-{end:%H:%M} ({booking.status.value})"
        )
        return booking

    async def transition_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        reason: Optional[str] = None,
    ) -> Booking:
        """Move a booking to a new status.

        Raises:
            ConflictError: Transition not allowed, or confirming would
                double-book the provider
        """
        booking = await self._repository.get_booking(booking_id, lock=True)
        ensure_transition(booking.status, new_status, "booking")

        now = self._clock()
        if new_status == BookingStatus.CONFIRMED:
            await self._ensure_free(
                booking.provider_id,
                booking.booking_date,
                booking.start_time,
                booking.end_time,
                exclude_id=booking.id,
            )
            booking.confirmed_at = now
        elif new_status == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif new_status == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancellation_reason = reason

        previous = booking.status
        booking.status = new_status
        await self._repository.session.flush()

        logger.info(f"Booking {booking.id}: {previous.value} -> {new_status.value}")
        return booking


class RouteService:
    """Sequencing, reordering and status changes for route orders."""

    def __init__(
        self,
        repository: SchedulingRepository,
        sequencer: Optional[RouteSequencer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repository = repository
        self._sequencer = sequencer or RouteSequencer()
        self._clock = clock or _utcnow

    async def _start_location(self, route: RouteOrder) -> Location:
        """Route start coordinates, defaulting to the provider's base."""
        start = Location.from_optional(
            route.start_latitude,
            route.start_longitude,
            address=route.start_address,
        )
        if start is not None:
            return start

        provider = await self._repository.get_provider(route.provider_id)
        base = provider_base(provider)
        if base is None:
            raise ValidationError(
                "Route has no start location and provider has no base address"
            )
        return base

    @staticmethod
    def _ensure_editable(route: RouteOrder) -> None:
        if is_terminal_state(route.status):
            raise ConflictError(
                f"Route is {route.status.value} and can no longer be changed",
                details={"status": route.status.value},
            )

    async def _apply(
        self,
        route: RouteOrder,
        result: SequencedRoute,
    ) -> SequencedRoute:
        """Persist order, ETAs and totals from a sequencing result."""
        by_id = {str(stop.id): stop for stop in route.stops}
        ordered = [by_id[s.stop_id] for s in result.stops]

        await self._repository.renumber_stops(ordered)
        for row, sequenced in zip(ordered, result.stops):
            row.estimated_arrival = sequenced.estimated_arrival

        route.is_estimated = result.is_estimated
        route.total_distance_meters = result.total_distance_meters
        route.total_duration_minutes = result.total_duration_minutes
        await self._repository.session.flush()
        return result

    async def sequence_route(
        self,
        route_id: str,
        fixed_first_stop_id: Optional[str] = None,
    ) -> SequencedRoute:
        """Order a route's stops by nearest neighbor and store ETAs."""
        if fixed_first_stop_id is not None:
            fixed_first_stop_id = str(parse_uuid(fixed_first_stop_id, "stop id"))
        route = await self._repository.get_route(route_id, lock=True)
        self._ensure_editable(route)

        result = await self._sequencer.sequence(
            to_stop_inputs(route.stops),
            await self._start_location(route),
            route.start_time,
            fixed_first_stop_id=fixed_first_stop_id,
        )
        return await self._apply(route, result)

    async def reorder_stops(self, route_id: str, stop_ids: Sequence[str]) -> SequencedRoute:
        """Apply a manual stop order and recompute ETAs.

        Raises:
            ValidationError: stop_ids is not a permutation of the route's stops
        """
        route = await self._repository.get_route(route_id, lock=True)
        self._ensure_editable(route)

        current = {str(stop.id) for stop in route.stops}
        requested = [str(parse_uuid(s, "stop id")) for s in stop_ids]
        if len(requested) != len(set(requested)) or set(requested) != current:
            raise ValidationError(
                "Stop order must list every stop of the route exactly once",
                details={"expected": sorted(current), "received": requested},
            )

        inputs = {s.id: s for s in to_stop_inputs(route.stops)}
        result = await self._sequencer.recompute(
            [inputs[sid] for sid in requested],
            await self._start_location(route),
            route.start_time,
        )
        return await self._apply(route, result)

    async def remove_stop(self, route_id: str, stop_id: str) -> SequencedRoute:
        """Delete a stop, close the gap in stop_order and recompute ETAs."""
        route = await self._repository.get_route(route_id, lock=True)
        self._ensure_editable(route)

        stop = self._repository.find_stop(route, stop_id)
        await self._repository.delete_stop(route, stop)

        remaining = sorted(route.stops, key=lambda s: s.stop_order)
        inputs = {s.id: s for s in to_stop_inputs(remaining)}
        result = await self._sequencer.recompute(
            [inputs[str(s.id)] for s in remaining],
            await self._start_location(route),
            route.start_time,
        )
        logger.info(f"Removed stop {stop_id} from route {route.id}")
        return await self._apply(route, result)

    async def transition_status(
        self,
        route_id: str,
        new_status: RouteOrderStatus,
    ) -> RouteOrder:
        """Move a route order to a new status. Bookings are never touched."""
        route = await self._repository.get_route(route_id, lock=True)
        ensure_transition(route.status, new_status, "route")

        previous = route.status
        route.status = new_status
        await self._repository.session.flush()

        logger.info(f"Route {route.id}: {previous.value} -> {new_status.value}")
        return route

    async def transition_stop_status(
        self,
        route_id: str,
        stop_id: str,
        new_status: RouteStopStatus,
        problem_note: Optional[str] = None,
    ) -> RouteStop:
        """Record the outcome of a stop.

        Raises:
            ValidationError: problem status without a note
            ConflictError: Transition not allowed
        """
        if new_status == RouteStopStatus.PROBLEM and not (problem_note or "").strip():
            raise ValidationError("A problem note is required when reporting a problem")

        route = await self._repository.get_route(route_id)
        stop = self._repository.find_stop(route, stop_id)
        ensure_transition(stop.status, new_status, "stop")

        stop.status = new_status
        if new_status == RouteStopStatus.PROBLEM:
            stop.problem_note = problem_note.strip()
        elif new_status == RouteStopStatus.COMPLETED:
            stop.actual_departure = self._clock()
        await self._repository.session.flush()

        return stop
