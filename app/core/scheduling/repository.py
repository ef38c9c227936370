"""
Persistence adapter for the scheduling engine.

Translates ORM rows into the immutable read models the engine works on and
provides the few locked reads and writes the lifecycle services need.
"""

import logging
import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import NotFoundError, ValidationError
from app.core.scheduling.models import (
    BookingSnapshot,
    DateException,
    Location,
    ProviderCalendar,
    RouteStopInput,
    WeeklyTemplate,
)
from app.core.scheduling.state import OCCUPYING_STATUSES
from app.models.database import (
    AvailabilityException,
    Booking,
    Provider,
    RouteOrder,
    RouteStop,
    Service,
    WeeklyAvailability,
)

logger = logging.getLogger(__name__)


def parse_uuid(value: str | uuid.UUID, label: str = "id") -> uuid.UUID:
    """Parse an identifier, raising ValidationError when malformed."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid {label}: {value!r}") from e


# === Row -> read model ===


def to_weekly_template(row: WeeklyAvailability) -> WeeklyTemplate:
    return WeeklyTemplate(
        day_of_week=row.day_of_week,
        is_closed=row.is_closed,
        start_time=row.start_time,
        end_time=row.end_time,
    )


def to_date_exception(row: AvailabilityException) -> DateException:
    return DateException(
        day=row.exception_date,
        is_closed=row.is_closed,
        start_time=row.start_time,
        end_time=row.end_time,
        reason=row.reason,
        work_location=Location.from_optional(
            row.latitude,
            row.longitude,
            name=row.location_name,
            address=row.address,
        ),
    )


def to_booking_snapshot(row: Booking) -> BookingSnapshot:
    return BookingSnapshot(
        id=str(row.id),
        day=row.booking_date,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        location=Location.from_optional(row.latitude, row.longitude, address=row.address),
    )


def to_stop_inputs(rows: Sequence[RouteStop]) -> list[RouteStopInput]:
    """Convert stops, ranking by creation time for tie-breaking."""
    ranked = sorted(rows, key=lambda s: (s.created_at is None, s.created_at, str(s.id)))
    rank = {row.id: i for i, row in enumerate(ranked)}
    return [
        RouteStopInput(
            id=str(row.id),
            location=Location(
                latitude=row.latitude,
                longitude=row.longitude,
                name=row.location_name,
                address=row.address,
            ),
            estimated_duration_min=row.estimated_duration_min,
            sequence=rank[row.id],
            location_name=row.location_name,
            address=row.address,
        )
        for row in rows
    ]


def provider_base(provider: Provider) -> Optional[Location]:
    return Location.from_optional(
        provider.latitude,
        provider.longitude,
        name=provider.name,
        address=provider.address,
    )


class SchedulingRepository:
    """Async SQLAlchemy access for one unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Providers & services ---

    async def get_provider(self, provider_id: str | uuid.UUID, lock: bool = False) -> Provider:
        """Get provider, optionally locking the row (SELECT ... FOR UPDATE).

        Raises:
            NotFoundError: Unknown provider
        """
        stmt = select(Provider).where(Provider.id == parse_uuid(provider_id, "provider id"))
        if lock:
            stmt = stmt.with_for_update()
        provider = (await self.session.execute(stmt)).scalar_one_or_none()
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    async def get_service(self, service_id: str | uuid.UUID) -> Service:
        service = await self.session.get(Service, parse_uuid(service_id, "service id"))
        if service is None:
            raise NotFoundError(f"Service {service_id} not found")
        return service

    async def load_calendar(
        self,
        provider_id: str | uuid.UUID,
        start: date,
        end: date,
    ) -> ProviderCalendar:
        """Load templates, exceptions and bookings for [start, end].

        Occupancy is read fresh on every call. Rows that fail validation are
        logged and loaded as closed so one bad row cannot fail the request.
        """
        provider = await self.get_provider(provider_id)
        pid = provider.id

        templates_result = await self.session.execute(
            select(WeeklyAvailability).where(WeeklyAvailability.provider_id == pid)
        )
        exceptions_result = await self.session.execute(
            select(AvailabilityException).where(
                AvailabilityException.provider_id == pid,
                AvailabilityException.exception_date >= start,
                AvailabilityException.exception_date <= end,
            )
        )
        bookings_result = await self.session.execute(
            select(Booking)
            .where(
                Booking.provider_id == pid,
                Booking.booking_date >= start,
                Booking.booking_date <= end,
                Booking.status.in_(list(OCCUPYING_STATUSES)),
            )
            .order_by(Booking.booking_date, Booking.start_time)
        )

        calendar = ProviderCalendar(
            provider_id=str(pid),
            timezone=provider.timezone,
            base_location=provider_base(provider),
        )
        for row in templates_result.scalars().all():
            try:
                calendar.templates[row.day_of_week] = to_weekly_template(row)
            except ValidationError as e:
                logger.warning(
                    f"Provider {pid}: invalid weekly hours for day {row.day_of_week} "
                    f"({e.message}), treating the day as closed"
                )
                if 0 <= row.day_of_week <= 6:
                    calendar.templates[row.day_of_week] = WeeklyTemplate(
                        day_of_week=row.day_of_week, is_closed=True
                    )
        for row in exceptions_result.scalars().all():
            try:
                calendar.exceptions[row.exception_date] = to_date_exception(row)
            except ValidationError as e:
                logger.warning(
                    f"Provider {pid}: invalid exception on {row.exception_date} "
                    f"({e.message}), treating the date as closed"
                )
                calendar.exceptions[row.exception_date] = DateException(
                    day=row.exception_date, is_closed=True, reason=row.reason
                )
        for row in bookings_result.scalars().all():
            calendar.bookings.setdefault(row.booking_date, []).append(
                to_booking_snapshot(row)
            )

        logger.debug(
            f"Loaded calendar for provider {pid} {start}..{end}: "
            f"{len(calendar.templates)} templates, {len(calendar.exceptions)} exceptions, "
            f"{sum(len(b) for b in calendar.bookings.values())} bookings"
        )
        return calendar

    # --- Bookings ---

    async def get_booking(self, booking_id: str | uuid.UUID, lock: bool = False) -> Booking:
        stmt = select(Booking).where(Booking.id == parse_uuid(booking_id, "booking id"))
        if lock:
            stmt = stmt.with_for_update()
        booking = (await self.session.execute(stmt)).scalar_one_or_none()
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def find_overlapping_bookings(
        self,
        provider_id: uuid.UUID,
        day: date,
        start_time,
        end_time,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> list[Booking]:
        """Occupying bookings whose [start, end) intersects the given interval."""
        stmt = select(Booking).where(
            Booking.provider_id == provider_id,
            Booking.booking_date == day,
            Booking.status.in_(list(OCCUPYING_STATUSES)),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        if exclude_id is not None:
            stmt = stmt.where(Booking.id != exclude_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add(self, obj) -> None:
        self.session.add(obj)
        await self.session.flush()

    # --- Routes ---

    async def get_route(self, route_id: str | uuid.UUID, lock: bool = False) -> RouteOrder:
        """Get route order with its stops loaded (ordered by stop_order)."""
        stmt = (
            select(RouteOrder)
            .where(RouteOrder.id == parse_uuid(route_id, "route id"))
            .options(selectinload(RouteOrder.stops))
        )
        if lock:
            stmt = stmt.with_for_update()
        route = (await self.session.execute(stmt)).scalar_one_or_none()
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    @staticmethod
    def find_stop(route: RouteOrder, stop_id: str | uuid.UUID) -> RouteStop:
        sid = parse_uuid(stop_id, "stop id")
        for stop in route.stops:
            if stop.id == sid:
                return stop
        raise NotFoundError(f"Stop {stop_id} not found on route {route.id}")

    async def renumber_stops(self, ordered: Sequence[RouteStop]) -> None:
        """Re-pack stop_order to 0..n-1 following `ordered`.

        Two phases so the (route_order_id, stop_order) unique constraint never
        sees a duplicate: first move every stop to a distinct negative value,
        then to its final position.
        """
        for i, stop in enumerate(ordered):
            stop.stop_order = -(i + 1)
        await self.session.flush()

        for i, stop in enumerate(ordered):
            stop.stop_order = i
        await self.session.flush()

    async def delete_stop(self, route: RouteOrder, stop: RouteStop) -> None:
        route.stops.remove(stop)
        await self.session.delete(stop)
        await self.session.flush()
