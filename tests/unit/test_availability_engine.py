"""Tests for the availability engine (day and week views)."""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.config import get_settings
from app.core.errors import NotFoundError, ValidationError
from app.core.scheduling.engine import AvailabilityEngine, provider_zone
from app.core.scheduling.models import (
    AvailabilitySummary,
    BookingSnapshot,
    DateException,
    Location,
    ProviderCalendar,
    UnavailableReason,
    WeeklyTemplate,
)
from app.core.scheduling.state import BookingStatus
from app.infra.routing import RoutingError

from routing_fakes import fixed_route

MONDAY = date(2025, 3, 10)
CUSTOMER = Location(59.50, 18.00, name="Customer")
JOB = Location(59.40, 18.00, name="Earlier job")


def make_calendar(bookings=None, exceptions=None) -> ProviderCalendar:
    templates = {
        d: WeeklyTemplate(day_of_week=d, is_closed=False, start_time=time(9), end_time=time(17))
        for d in range(5)
    }
    return ProviderCalendar(
        provider_id="prov-1",
        timezone="Europe/Stockholm",
        templates=templates,
        exceptions=exceptions or {},
        bookings=bookings or {},
    )


def confirmed(start, end, location=None, booking_id="b1", day=MONDAY):
    return BookingSnapshot(
        id=booking_id,
        day=day,
        start_time=start,
        end_time=end,
        status=BookingStatus.CONFIRMED,
        location=location,
    )


def fixed_clock(dt: datetime):
    return lambda: dt


# A week before the queried Monday, so nothing is in the past
EARLIER = fixed_clock(datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc))


class TestAvailabilityEngine:
    """Test AvailabilityEngine."""

    @pytest.fixture
    def repository(self):
        repo = MagicMock()
        repo.load_calendar = AsyncMock(return_value=make_calendar())
        return repo

    @pytest.fixture
    def engine(self, repository, estimator):
        return AvailabilityEngine(repository, estimator=estimator, clock=EARLIER)

    @pytest.mark.asyncio
    async def test_open_day(self, engine, repository):
        """09:00-17:00 with a 60 min service yields 29 available slots."""
        result = await engine.get_day_availability("prov-1", MONDAY, None, 60)

        assert not result.is_closed
        assert len(result.slots) == 29
        assert len(result.available_slots) == 29
        assert result.summary == AvailabilitySummary.AVAILABLE
        repository.load_calendar.assert_called_once_with("prov-1", MONDAY, MONDAY)

    @pytest.mark.asyncio
    async def test_booking_blocks_overlapping_starts(self, engine, repository):
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(10), time(11))]})
        )

        result = await engine.get_day_availability("prov-1", MONDAY, None, 60)

        booked = [s.start_time for s in result.slots if not s.is_available]
        assert booked[0] == time(9, 15)
        assert booked[-1] == time(10, 45)
        assert len(booked) == 7
        assert all(
            s.is_available for s in result.slots if s.start_time >= time(11)
        )

    @pytest.mark.asyncio
    async def test_closed_exception(self, engine, repository):
        exception = DateException(day=MONDAY, is_closed=True, reason="Clinic course")
        repository.load_calendar = AsyncMock(
            return_value=make_calendar(exceptions={MONDAY: exception})
        )

        result = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        assert result.is_closed
        assert result.slots == []
        assert result.closed_reason == "Clinic course"
        assert result.summary == AvailabilitySummary.CLOSED

    @pytest.mark.asyncio
    async def test_closed_weekend(self, engine):
        result = await engine.get_day_availability("prov-1", date(2025, 3, 16), None, 60)

        assert result.is_closed
        assert result.to_dict()["summary"] == "closed"

    @pytest.mark.asyncio
    async def test_travel_time_rejects_slot(
        self, repository, estimator, routing_client, monkeypatch
    ):
        """45 minutes of driving after a job ending 10:00 rules out 10:10."""
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(9), time(10), JOB)]})
        )
        routing_client.route = AsyncMock(
            side_effect=fixed_route({(JOB.coordinates, CUSTOMER.coordinates): 45 * 60})
        )
        engine = AvailabilityEngine(repository, estimator=estimator, clock=EARLIER)

        fine_grained = get_settings().model_copy(update={"slot_granularity_minutes": 5})
        monkeypatch.setattr("app.core.scheduling.engine.get_settings", lambda: fine_grained)

        result = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        by_start = {s.start_time: s for s in result.slots}
        assert by_start[time(10, 10)].unavailable_reason == UnavailableReason.TRAVEL_TIME
        assert by_start[time(10, 55)].is_available
        assert not result.routing_degraded

    @pytest.mark.asyncio
    async def test_routing_timeout_degrades_only_affected_slots(
        self, repository, estimator, routing_client
    ):
        """A routing failure fails closed but the rest of the day is returned."""
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(12), time(13), JOB)]})
        )
        routing_client.route = AsyncMock(
            side_effect=fixed_route({
                (CUSTOMER.coordinates, JOB.coordinates): 10 * 60,
                (JOB.coordinates, CUSTOMER.coordinates): RoutingError("timed out"),
            })
        )
        engine = AvailabilityEngine(repository, estimator=estimator, clock=EARLIER)

        result = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        available = [s.start_time for s in result.available_slots]
        assert available[0] == time(9)
        assert available[-1] == time(10, 30)
        after_job = [s for s in result.slots if s.start_time >= time(13)]
        assert len(after_job) == 13
        assert all(s.unavailable_reason == UnavailableReason.TRAVEL_TIME for s in after_job)
        assert result.routing_degraded
        assert result.degraded_slots == 13
        assert result.summary == AvailabilitySummary.AVAILABLE

    @pytest.mark.asyncio
    async def test_all_degraded_summary(self, repository, estimator, routing_client):
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(8), time(9), JOB)]})
        )
        routing_client.route = AsyncMock(side_effect=RoutingError("down"))
        engine = AvailabilityEngine(repository, estimator=estimator, clock=EARLIER)

        result = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        assert result.available_slots == []
        assert result.summary == AvailabilitySummary.DEGRADED

    @pytest.mark.asyncio
    async def test_no_customer_location_skips_routing(self, engine, repository, routing_client):
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(9), time(10), JOB)]})
        )

        await engine.get_day_availability("prov-1", MONDAY, None, 60)

        routing_client.route.assert_not_called()

    @pytest.mark.asyncio
    async def test_past_slots_in_provider_timezone(self, repository, estimator):
        """09:07 UTC is 10:07 in Stockholm in March."""
        clock = fixed_clock(datetime(2025, 3, 10, 9, 7, tzinfo=timezone.utc))
        engine = AvailabilityEngine(repository, estimator=estimator, clock=clock)

        result = await engine.get_day_availability("prov-1", MONDAY, None, 60)

        past = [s.start_time for s in result.slots if s.unavailable_reason == UnavailableReason.PAST]
        assert past == [time(9), time(9, 15), time(9, 30), time(9, 45), time(10)]

    @pytest.mark.asyncio
    async def test_fully_booked(self, engine, repository):
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(9), time(17))]})
        )

        result = await engine.get_day_availability("prov-1", MONDAY, None, 60)

        assert result.summary == AvailabilitySummary.FULLY_BOOKED

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, repository):
        repository.load_calendar = AsyncMock(
            return_value=make_calendar({MONDAY: [confirmed(time(10), time(11), JOB)]})
        )

        first = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)
        second = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_adding_booking_never_frees_a_slot(self, engine, repository):
        one = make_calendar({MONDAY: [confirmed(time(10), time(11), JOB)]})
        two = make_calendar({
            MONDAY: [
                confirmed(time(10), time(11), JOB),
                confirmed(time(14), time(15), JOB, booking_id="b2"),
            ]
        })
        repository.load_calendar = AsyncMock(side_effect=[one, two])

        before = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)
        after = await engine.get_day_availability("prov-1", MONDAY, CUSTOMER, 60)

        for b, a in zip(before.slots, after.slots):
            if not b.is_available:
                assert not a.is_available

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, 5, 481])
    async def test_invalid_duration(self, engine, repository, duration):
        with pytest.raises(ValidationError):
            await engine.get_day_availability("prov-1", MONDAY, None, duration)

        repository.load_calendar.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_provider(self, engine, repository):
        repository.load_calendar = AsyncMock(side_effect=NotFoundError("Provider x not found"))

        with pytest.raises(NotFoundError):
            await engine.get_day_availability("x", MONDAY, None, 60)

    @pytest.mark.asyncio
    async def test_week_loads_calendar_once(self, engine, repository):
        result = await engine.get_week_availability("prov-1", MONDAY, 7, None, 60)

        assert [d.day for d in result] == [MONDAY + timedelta(days=i) for i in range(7)]
        assert [d.is_closed for d in result] == [False] * 5 + [True] * 2
        repository.load_calendar.assert_called_once_with(
            "prov-1", MONDAY, MONDAY + timedelta(days=6)
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 15])
    async def test_week_day_bounds(self, engine, days):
        with pytest.raises(ValidationError):
            await engine.get_week_availability("prov-1", MONDAY, days, None, 60)


class TestProviderZone:
    """Test time zone resolution."""

    def test_known_zone(self):
        assert provider_zone("America/New_York").key == "America/New_York"

    def test_unknown_zone_falls_back(self):
        assert provider_zone("Mars/Olympus").key == "Europe/Stockholm"

    def test_missing_zone_uses_default(self):
        assert provider_zone(None).key == "Europe/Stockholm"
