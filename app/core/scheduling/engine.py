"""
Availability Engine - Main Orchestrator.

Coordinates the pipeline that answers "when can this provider come to me":
schedule resolution, slot generation, conflict filtering and travel
feasibility. Calendar data is loaded once per request through the
repository; per-day computation is pure apart from routing calls.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import get_settings
from app.core.errors import ValidationError
from app.core.scheduling.feasibility import TravelFeasibilityFilter
from app.core.scheduling.models import (
    DayAvailability,
    Location,
    ProviderCalendar,
)
from app.core.scheduling.repository import SchedulingRepository
from app.core.scheduling.schedule import resolve_day
from app.core.scheduling.slots import apply_conflicts, generate_slots
from app.core.scheduling.travel import TravelTimeEstimator, get_travel_estimator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def provider_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve a provider's IANA time zone, falling back to the default."""
    default = get_settings().default_timezone
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {name!r}, using {default}")
        return ZoneInfo(default)


class AvailabilityEngine:
    """
    Computes bookable slots for one provider.

    Coordinates:
    - Schedule resolution (template + exception)
    - Slot generation
    - Conflict and past-slot filtering
    - Travel feasibility (when the customer location is known)
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        estimator: Optional[TravelTimeEstimator] = None,
        feasibility: Optional[TravelFeasibilityFilter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            repository: Read access to provider calendars
            estimator: Travel-time estimator shared with the feasibility filter
            feasibility: Travel-feasibility filter
            clock: Returns the current aware datetime (UTC by default)
        """
        self._repository = repository
        self._estimator = estimator
        self._feasibility = feasibility
        self._clock = clock or _utcnow

    def _get_estimator(self) -> TravelTimeEstimator:
        """Get travel estimator."""
        if self._estimator is None:
            self._estimator = get_travel_estimator()
        return self._estimator

    def _get_feasibility(self) -> TravelFeasibilityFilter:
        """Get feasibility filter."""
        if self._feasibility is None:
            self._feasibility = TravelFeasibilityFilter(estimator=self._get_estimator())
        return self._feasibility

    def _validate_duration(self, duration_minutes: int) -> None:
        settings = get_settings()
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError(f"Invalid service duration: {duration_minutes!r}")
        if not (
            settings.min_service_duration_minutes
            <= duration_minutes
            <= settings.max_service_duration_minutes
        ):
            raise ValidationError(
                f"Service duration must be between "
                f"{settings.min_service_duration_minutes} and "
                f"{settings.max_service_duration_minutes} minutes",
                details={"duration_minutes": duration_minutes},
            )

    def now_for(self, calendar: ProviderCalendar) -> datetime:
        """Current wall-clock time in the provider's time zone."""
        return self._clock().astimezone(provider_zone(calendar.timezone))

    async def get_day_availability(
        self,
        provider_id: str,
        day: date,
        customer_location: Optional[Location],
        service_duration_minutes: int,
    ) -> DayAvailability:
        """Get availability for one provider on one date.

        Args:
            provider_id: Provider identifier
            day: Provider-local calendar date
            customer_location: Where the service would happen, if known
            service_duration_minutes: Length of the requested service

        Returns:
            DayAvailability

        Raises:
            ValidationError: Bad duration
            NotFoundError: Unknown provider
        """
        self._validate_duration(service_duration_minutes)

        calendar = await self._repository.load_calendar(provider_id, day, day)
        return await self.compute_day(
            calendar,
            day,
            customer_location,
            service_duration_minutes,
            now_local=self.now_for(calendar),
        )

    async def get_week_availability(
        self,
        provider_id: str,
        start: date,
        days: int,
        customer_location: Optional[Location],
        service_duration_minutes: int,
    ) -> list[DayAvailability]:
        """Get availability for consecutive days starting at `start`.

        The calendar is loaded once; days are computed concurrently and
        share one routing limiter.
        """
        max_days = get_settings().max_week_days
        if days < 1 or days > max_days:
            raise ValidationError(
                f"days must be between 1 and {max_days}",
                details={"days": days},
            )
        self._validate_duration(service_duration_minutes)

        end = start + timedelta(days=days - 1)
        calendar = await self._repository.load_calendar(provider_id, start, end)
        now_local = self.now_for(calendar)
        limiter = self._get_estimator().new_limiter()

        results = await asyncio.gather(
            *(
                self.compute_day(
                    calendar,
                    start + timedelta(days=offset),
                    customer_location,
                    service_duration_minutes,
                    now_local=now_local,
                    limiter=limiter,
                )
                for offset in range(days)
            )
        )
        return list(results)

    async def compute_day(
        self,
        calendar: ProviderCalendar,
        day: date,
        customer_location: Optional[Location],
        service_duration_minutes: int,
        now_local: Optional[datetime] = None,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> DayAvailability:
        """Run the availability pipeline against a loaded calendar."""
        resolved = resolve_day(
            day,
            calendar.templates,
            calendar.exception_on(day),
            calendar.base_location,
        )

        if resolved.is_closed:
            return DayAvailability(
                day=day,
                is_closed=True,
                closed_reason=resolved.closed_reason,
            )

        candidates = generate_slots(
            resolved,
            service_duration_minutes,
            get_settings().slot_granularity_minutes,
        )
        bookings = calendar.bookings_on(day)
        slots = apply_conflicts(candidates, bookings, day, now_local)

        availability = DayAvailability(
            day=day,
            is_closed=False,
            open_start=resolved.open_start,
            open_end=resolved.open_end,
            slots=slots,
        )

        if customer_location is None or not availability.available_slots:
            return availability

        report = await self._get_feasibility().apply(
            slots,
            bookings,
            resolved,
            customer_location,
            limiter=limiter,
        )
        availability.routing_degraded = report.routing_degraded
        availability.degraded_slots = report.degraded_slots

        logger.debug(
            f"Provider {calendar.provider_id} on {day}: "
            f"{len(availability.available_slots)}/{len(slots)} slots available"
        )
        return availability
